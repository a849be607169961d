"""
HTTP endpoint integration tests for casino-settlement.

These tests verify that FastAPI endpoints:
- Return correct HTTP status codes
- Accept camelCase request payloads
- Render settlement errors as {"error", "type", ...context}
- Enforce player identity and admin token checks

Uses FastAPI TestClient for in-memory HTTP testing.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from casino_settlement.services.games import coinflip as coinflip_module


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def stocked_players(two_players, knife, gun, give_items):
    """alice holds one knife, bob holds two guns."""
    give_items("alice", knife, 1)
    give_items("bob", gun, 2)
    return knife, gun


@pytest.fixture
def open_coinflip(test_client: TestClient, stocked_players, as_player):
    knife, _ = stocked_players
    response = test_client.post(
        "/api/v1/coinflip/create",
        json={"items": [{"itemId": knife.id, "quantity": 1}], "side": "heads"},
        headers=as_player("alice"),
    )
    assert response.status_code == 200
    return response.json()["game"]["id"]


# =============================================================================
# ROOT AND HEALTH
# =============================================================================

class TestRootAndHealthEndpoints:

    def test_root_endpoint(self, test_client: TestClient):
        response = test_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert "coinflip" in data["endpoints"]["games"]

    def test_health_endpoint(self, test_client: TestClient):
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# =============================================================================
# PLAYER IDENTITY
# =============================================================================

class TestPlayerIdentity:

    def test_missing_user_id(self, test_client: TestClient):
        response = test_client.get("/api/v1/accounts/me")

        assert response.status_code == 401

    def test_account_summary(self, test_client: TestClient, two_players, as_player):
        response = test_client.get("/api/v1/accounts/me", headers=as_player("alice"))

        assert response.status_code == 200
        account = response.json()["account"]
        assert account["id"] == "alice"
        assert account["balance"] == "100.00"
        assert account["level"] == 1

    def test_unknown_account(self, test_client: TestClient, as_player):
        response = test_client.get("/api/v1/accounts/me", headers=as_player("ghost"))

        assert response.status_code == 404
        assert response.json()["type"] == "not_found"

    def test_inventory(self, test_client: TestClient, stocked_players, as_player):
        response = test_client.get("/api/v1/accounts/me/inventory", headers=as_player("bob"))

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["items"][0]["quantity"] == 2


# =============================================================================
# COINFLIP
# =============================================================================

class TestCoinflipEndpoints:

    def test_create_and_join(self, test_client: TestClient, open_coinflip, stocked_players, as_player, monkeypatch):
        _, gun = stocked_players
        monkeypatch.setattr(coinflip_module, "flip_coin", lambda rng=None: "heads")

        response = test_client.post(
            "/api/v1/coinflip/join",
            json={"gameId": open_coinflip, "joinerItems": [{"itemId": gun.id, "quantity": 2}]},
            headers=as_player("bob"),
        )

        assert response.status_code == 200
        assert response.json() == {"result": "heads", "winnerId": "alice", "totalValue": "20.00"}

    def test_join_settled_game_conflicts(self, test_client: TestClient, open_coinflip, stocked_players, as_player,
                                         make_account, give_items):
        _, gun = stocked_players
        payload = {"gameId": open_coinflip, "joinerItems": [{"itemId": gun.id, "quantity": 2}]}
        assert test_client.post("/api/v1/coinflip/join", json=payload, headers=as_player("bob")).status_code == 200

        make_account("carol")
        give_items("carol", gun, 2)
        response = test_client.post("/api/v1/coinflip/join", json=payload, headers=as_player("carol"))

        assert response.status_code == 409
        assert response.json()["type"] == "state_conflict"

    def test_stake_outside_tolerance(self, test_client: TestClient, open_coinflip, stocked_players, as_player):
        _, gun = stocked_players

        response = test_client.post(
            "/api/v1/coinflip/join",
            json={"gameId": open_coinflip, "joinerItems": [{"itemId": gun.id, "quantity": 1}]},
            headers=as_player("bob"),
        )

        assert response.status_code == 400
        data = response.json()
        assert data["type"] == "validation_error"
        assert data["min_amount"] == "9.00"
        assert data["max_amount"] == "11.00"

    def test_bad_side(self, test_client: TestClient, stocked_players, as_player):
        knife, _ = stocked_players

        response = test_client.post(
            "/api/v1/coinflip/create",
            json={"items": [{"itemId": knife.id}], "side": "edge"},
            headers=as_player("alice"),
        )

        assert response.status_code == 400

    def test_missing_items_rejected_by_schema(self, test_client: TestClient, two_players, as_player):
        response = test_client.post("/api/v1/coinflip/create", json={"side": "heads"}, headers=as_player("alice"))

        assert response.status_code == 422

    def test_unknown_game(self, test_client: TestClient, two_players, as_player):
        response = test_client.get("/api/v1/coinflip/missing", headers=as_player("alice"))

        assert response.status_code == 404

    def test_list_open_games(self, test_client: TestClient, open_coinflip, as_player):
        response = test_client.get("/api/v1/coinflip", headers=as_player("bob"))

        assert response.status_code == 200
        assert [game["id"] for game in response.json()["games"]] == [open_coinflip]


# =============================================================================
# CRASH
# =============================================================================

class TestCrashEndpoints:

    def test_explicit_crash_point_needs_admin(self, test_client: TestClient, admin_headers):
        game_id = test_client.post("/api/v1/crash/create").json()["game"]["id"]
        test_client.post("/api/v1/crash/launch", json={"gameId": game_id})

        response = test_client.post("/api/v1/crash/resolve", json={"gameId": game_id, "crashPoint": "5.00"})
        assert response.status_code == 403

        response = test_client.post(
            "/api/v1/crash/resolve",
            json={"gameId": game_id, "crashPoint": "5.00"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["crashPoint"] == "5.00"

    def test_drawn_crash_point_without_admin(self, test_client: TestClient):
        game_id = test_client.post("/api/v1/crash/create").json()["game"]["id"]
        test_client.post("/api/v1/crash/launch", json={"gameId": game_id})

        response = test_client.post("/api/v1/crash/resolve", json={"gameId": game_id})

        assert response.status_code == 200
        assert Decimal(response.json()["crashPoint"]) >= Decimal("1.00")


# =============================================================================
# ITEMS
# =============================================================================

class TestItemEndpoints:

    def test_list_sorted_by_value(self, test_client: TestClient, knife, gun, make_item):
        make_item("Candy", "1.00")

        response = test_client.get("/api/v1/items")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert [item["name"] for item in data["items"]] == ["Knife", "Gun", "Candy"]

    def test_upsert_requires_admin(self, test_client: TestClient):
        response = test_client.post("/api/v1/items", json={"name": "Axe", "rarity": "rare", "value": "7.50"})

        assert response.status_code == 403

    def test_upsert_creates_and_updates(self, test_client: TestClient, admin_headers):
        created = test_client.post(
            "/api/v1/items",
            json={"name": "Axe", "rarity": "rare", "value": "7.50"},
            headers=admin_headers,
        ).json()["item"]

        updated = test_client.post(
            "/api/v1/items",
            json={"itemId": created["id"], "name": "Axe", "rarity": "rare", "value": "9.00"},
            headers=admin_headers,
        ).json()["item"]

        assert updated["id"] == created["id"]
        assert updated["value"] == "9.00"
        listing = test_client.get("/api/v1/items").json()
        assert [item["value"] for item in listing["items"]] == ["9.00"]


# =============================================================================
# ADMIN
# =============================================================================

class TestAdminEndpoints:

    def test_requires_token(self, test_client: TestClient):
        response = test_client.post("/api/v1/admin/deposit", json={"userId": "alice", "amount": "10.00"})

        assert response.status_code == 403

    def test_wrong_token(self, test_client: TestClient):
        response = test_client.post(
            "/api/v1/admin/sweeps/run",
            headers={"X-Admin-Token": "nope"},
        )

        assert response.status_code == 403

    def test_deposit(self, test_client: TestClient, two_players, admin_headers):
        response = test_client.post(
            "/api/v1/admin/deposit",
            json={"userId": "alice", "amount": "25.50"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["account"]["balance"] == "125.50"

    def test_deposit_must_be_positive(self, test_client: TestClient, two_players, admin_headers):
        response = test_client.post(
            "/api/v1/admin/deposit",
            json={"userId": "alice", "amount": "0"},
            headers=admin_headers,
        )

        assert response.status_code == 422

    def test_grant_items(self, test_client: TestClient, two_players, knife, admin_headers, quantity_of):
        response = test_client.post(
            "/api/v1/admin/inventory/grant",
            json={"userId": "bob", "items": [{"itemId": knife.id, "quantity": 3}]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["totalValue"] == "30.00"
        assert quantity_of("bob", knife) == 3

    def test_run_sweeps(self, test_client: TestClient, admin_headers):
        response = test_client.post("/api/v1/admin/sweeps/run", headers=admin_headers)

        assert response.status_code == 200
        assert set(response.json()) == {"coinflip", "giveaway", "case_battle", "blackjack"}

    def test_scheduler_stopped_in_tests(self, test_client: TestClient, admin_headers):
        response = test_client.get("/api/v1/admin/scheduler/status", headers=admin_headers)

        assert response.json() == {"status": "stopped", "jobs": []}
