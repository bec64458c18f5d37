"""
Rating API routes.

Endpoints:
- POST /ratings - Rate the other party of a completed trade
- GET /ratings/user/{user_id} - Ratings a user received
"""
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from srm_swap.api.deps import CurrentUser
from srm_swap.db.session import get_db
from srm_swap.schemas.rating import RatingCreate, RatingResponse, build_rating_response
from srm_swap.services.ratings import RatingService

router = APIRouter()


class RatingListResponse(BaseModel):
    """Ratings received by a user."""
    ratings: list[RatingResponse]
    total: int


@router.post("", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
async def submit_rating(
    request: RatingCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Rate the other party; their trust score grows by the rounded mean."""
    rating = await RatingService(db).submit_rating(current_user, request)
    return build_rating_response(rating)


@router.get("/user/{user_id}", response_model=RatingListResponse)
async def list_user_ratings(
    user_id: int,
    current_user: CurrentUser,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    ratings, total = await RatingService(db).get_ratings_for_user(user_id, limit, offset)
    return RatingListResponse(
        ratings=[build_rating_response(r) for r in ratings],
        total=total,
    )
