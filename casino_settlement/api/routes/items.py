"""
Item catalog routes.

Base path: /api/v1/items
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel
from casino_settlement.core.auth import get_api_key, require_admin
from casino_settlement.core.database import get_db
from casino_settlement.services.item_catalog import ItemCatalogCache, get_item_catalog, upsert_item

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/items", tags=["items"])


class UpsertItemRequest(CamelModel):
    item_id: Optional[str] = Field(None, alias="itemId", description="Omit to create a new item")
    name: str = Field(..., min_length=1, max_length=255)
    rarity: str = Field(..., min_length=1, max_length=20)
    value: Decimal = Field(..., ge=0)
    image_url: Optional[str] = Field(None, alias="imageUrl", max_length=500)


def _snapshot_to_dict(snapshot) -> dict:
    return {
        "id": snapshot.id,
        "name": snapshot.name,
        "rarity": snapshot.rarity,
        "value": str(snapshot.value),
        "image_url": snapshot.image_url,
    }


@router.get("")
def list_items(
    api_key: str = Depends(get_api_key),
    catalog: ItemCatalogCache = Depends(get_item_catalog),
    db: Session = Depends(get_db),
):
    """The full catalog, served from the TTL cache."""
    items = sorted(catalog.all_items(db), key=lambda s: (-s.value, s.name))
    return {"items": [_snapshot_to_dict(s) for s in items], "count": len(items)}


@router.post("")
def save_item(
    request: UpsertItemRequest,
    admin: bool = Depends(require_admin),
    catalog: ItemCatalogCache = Depends(get_item_catalog),
    db: Session = Depends(get_db),
):
    snapshot = upsert_item(
        db,
        name=request.name,
        rarity=request.rarity,
        value=request.value,
        image_url=request.image_url,
        item_id=request.item_id,
        catalog=catalog,
    )
    return {"item": _snapshot_to_dict(snapshot)}
