"""
Listing API routes.

Endpoints:
- GET /items - Browse listings (verified by default)
- GET /items/pending - Moderation queue for members
- POST /items - Create a listing
- GET /items/{id} - Listing details
- PATCH /items/{id}/status - Member moderation
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from srm_swap.api.deps import CurrentUser, MemberUser
from srm_swap.db.session import get_db
from srm_swap.models.item import ItemStatus
from srm_swap.schemas.item import (
    ItemCreate,
    ItemModerationRequest,
    ItemResponse,
    build_item_response,
)
from srm_swap.services.items import ItemService

router = APIRouter()


@router.get("", response_model=list[ItemResponse])
async def list_items(
    current_user: CurrentUser,
    status_filter: ItemStatus = Query(ItemStatus.VERIFIED, alias="status"),
    category: str | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Browse listings."""
    items = await ItemService(db).list_items(status_filter, category, limit, offset)
    return [build_item_response(i) for i in items]


@router.get("/pending", response_model=list[ItemResponse])
async def list_pending_items(
    current_user: MemberUser,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Listings awaiting verification."""
    items = await ItemService(db).list_pending(limit, offset)
    return [build_item_response(i) for i in items]


@router.post("", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    request: ItemCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Create a listing; it awaits moderation."""
    item = await ItemService(db).create_item(current_user, request)
    return build_item_response(item)


@router.get("/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    item = await ItemService(db).get_item_or_raise(item_id)
    return build_item_response(item)


@router.patch("/{item_id}/status", response_model=ItemResponse)
async def moderate_item(
    item_id: int,
    request: ItemModerationRequest,
    current_user: MemberUser,
    db: AsyncSession = Depends(get_db),
):
    """Verify or remove a listing."""
    item = await ItemService(db).moderate_item(item_id, current_user, request.status)
    return build_item_response(item)
