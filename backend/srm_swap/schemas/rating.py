"""
Rating schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from srm_swap.schemas.common import UserBrief, build_user_brief


class RatingCreate(BaseModel):
    """Review of the other party after a completed trade."""
    trade_id: int
    reviewee_id: int
    accuracy: int = Field(..., ge=1, le=5)
    honesty: int = Field(..., ge=1, le=5)
    experience: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class RatingResponse(BaseModel):
    id: int
    trade_id: int
    reviewer: UserBrief
    reviewee_id: int
    accuracy: int
    honesty: int
    experience: int
    comment: Optional[str] = None
    created_at: datetime


def build_rating_response(rating) -> RatingResponse:
    return RatingResponse(
        id=rating.id,
        trade_id=rating.trade_id,
        reviewer=build_user_brief(rating.reviewer),
        reviewee_id=rating.reviewee_id,
        accuracy=rating.accuracy,
        honesty=rating.honesty,
        experience=rating.experience,
        comment=rating.comment,
        created_at=rating.created_at,
    )
