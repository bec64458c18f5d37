"""
Shared response fragments.
"""
from typing import Optional

from pydantic import BaseModel


class UserBrief(BaseModel):
    """Brief user info embedded in trade, message and issue payloads."""
    id: int
    full_name: Optional[str] = None
    role: str
    trust_score: int


def build_user_brief(user) -> Optional[UserBrief]:
    if user is None:
        return None
    return UserBrief(
        id=user.id,
        full_name=user.full_name,
        role=user.role.value,
        trust_score=user.trust_score,
    )
