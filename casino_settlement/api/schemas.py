"""
Request models shared across game routes.

Clients send camelCase keys; handlers read the snake_case attributes.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts both the camelCase alias and the field name."""
    model_config = ConfigDict(populate_by_name=True)


class StakeItem(CamelModel):
    """One staked item line. Only the id and quantity are trusted."""
    item_id: str = Field(..., alias="itemId", min_length=1)
    quantity: int = Field(1, ge=1)


def stake_lines(items: List[StakeItem]) -> List[dict]:
    """Plain dicts for the ledger's stake capture."""
    return [{"item_id": item.item_id, "quantity": item.quantity} for item in items]


class GameRef(CamelModel):
    game_id: str = Field(..., alias="gameId")
