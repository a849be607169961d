"""Shared pytest fixtures for casino-settlement tests."""
import os
import random
import sys
from decimal import Decimal
from pathlib import Path
from typing import Generator, List, Optional

# Settings are read at import time, so the test environment is set first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["API_KEY"] = ""
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


class ScriptedRandom(random.Random):
    """random.Random whose random() replays a fixed script (cycled)."""

    def __init__(self, values: List[float]):
        super().__init__(0)
        self._values = list(values)
        self._index = 0

    def random(self) -> float:
        value = self._values[self._index % len(self._values)]
        self._index += 1
        return value


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Fresh in-memory database per test.

    StaticPool keeps one connection so the TestClient and the test body see
    the same data.
    """
    from casino_settlement.core.database import enable_sqlite_savepoints
    from casino_settlement.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    enable_sqlite_savepoints(engine)

    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def fresh_item_catalog():
    """The catalog cache is process-wide; never let one test see another's items."""
    from casino_settlement.services.item_catalog import item_catalog

    item_catalog.invalidate()
    yield item_catalog
    item_catalog.invalidate()


@pytest.fixture
def rng() -> random.Random:
    """Seeded generator for reproducible outcomes."""
    return random.Random(1337)


@pytest.fixture
def scripted_rng():
    """Factory for a ScriptedRandom replaying the given random() values."""
    return ScriptedRandom


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_account(db_session: Session):
    """Create an account with an optional starting balance."""
    from casino_settlement.models import Account

    def _make(user_id: str, balance: Decimal = Decimal("0.00"), username: Optional[str] = None):
        account = Account(id=user_id, username=username or user_id, balance=Decimal(balance))
        db_session.add(account)
        db_session.commit()
        return account

    return _make


@pytest.fixture
def make_item(db_session: Session):
    """Create a catalog item."""
    from casino_settlement.models import Item

    def _make(name: str, value: str, rarity: str = "common", item_id: Optional[str] = None):
        item = Item(name=name, value=Decimal(value), rarity=rarity)
        if item_id:
            item.id = item_id
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture
def give_items(db_session: Session):
    """Put `quantity` units of an item into a player's inventory."""
    from casino_settlement.models import InventoryEntry

    def _give(user_id: str, item, quantity: int = 1):
        db_session.add(InventoryEntry(user_id=user_id, item_id=item.id, quantity=quantity))
        db_session.commit()

    return _give


@pytest.fixture
def quantity_of(db_session: Session):
    """Current quantity of an item held by a player (0 when no row exists)."""
    from casino_settlement.repositories import InventoryRepository

    def _quantity(user_id: str, item) -> int:
        db_session.expire_all()
        return InventoryRepository(db_session).quantity_of(user_id, item.id)

    return _quantity


@pytest.fixture
def balance_of(db_session: Session):
    from casino_settlement.models import Account

    def _balance(user_id: str) -> Decimal:
        db_session.expire_all()
        return Decimal(db_session.get(Account, user_id).balance)

    return _balance


@pytest.fixture
def transactions_of(db_session: Session):
    """Ledger rows for a player, oldest first."""
    from casino_settlement.models import Transaction

    def _rows(user_id: str, game_id: Optional[str] = None):
        db_session.expire_all()
        query = db_session.query(Transaction).filter(Transaction.user_id == user_id)
        if game_id is not None:
            query = query.filter(Transaction.game_id == game_id)
        return query.order_by(Transaction.created_at).all()

    return _rows


@pytest.fixture
def knife(make_item):
    return make_item("Knife", "10.00", "legendary")


@pytest.fixture
def gun(make_item):
    return make_item("Gun", "5.00", "rare")


@pytest.fixture
def two_players(make_account):
    """alice and bob, each with $100 of balance."""
    make_account("alice", Decimal("100.00"))
    make_account("bob", Decimal("100.00"))
    return "alice", "bob"


# =============================================================================
# HTTP TEST CLIENT
# =============================================================================

@pytest.fixture(scope="function")
def test_client(db_session):
    """
    FastAPI TestClient bound to the test database.

    Note: We don't use the client as a context manager, so the lifespan
    (table creation against the configured DATABASE_URL, scheduler start)
    never runs during tests.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/health")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from casino_settlement.main import app
    from casino_settlement.core.database import get_db

    test_db_session = db_session

    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def as_player():
    """Headers the identity gateway forwards for a player call."""
    def _headers(user_id: str) -> dict:
        return {"X-User-Id": user_id}
    return _headers


@pytest.fixture
def admin_headers() -> dict:
    return dict(ADMIN_HEADERS)
