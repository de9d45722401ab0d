"""
Authentication-related Pydantic schemas.
"""

from pydantic import BaseModel
from typing import Optional


class TokenData(BaseModel):
    """Token payload data: who is calling and which tier they belong to."""
    user_id: str
    tier: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
