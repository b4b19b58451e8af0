from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    """Public view of an account; never carries the password hash."""
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str] = None
    is_premium: bool = False
    created_at: Optional[datetime] = None

    @staticmethod
    def normalized_email(email: str) -> str:
        return email.strip().lower()

    @staticmethod
    def normalized_name(email: str, name: Optional[str] = None) -> str:
        if name and name.strip():
            return name.strip()
        # Fall back to the local part of the address
        return email.split("@", 1)[0]


class AuthenticatedUser(BaseModel):
    """Identity resolved from a verified bearer token.

    Passed explicitly into every operation that acts on behalf of a user.
    """
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
