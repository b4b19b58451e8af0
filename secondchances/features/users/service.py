"""
User domain service (credential store).
- register_user(email, password, name)
- authenticate_user(email, password)
- get_user(user_id)

Never writes is_premium / subscription_id; those belong to the billing ledger.
"""

from typing import Optional
import bcrypt
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from secondchances.core.database import get_db_session, users
from secondchances.core.errors import ConflictError, ValidationError
from secondchances.models.user import User

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify password against stored hash."""
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Malformed hash in storage
        return False


def _to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        is_premium=bool(row.is_premium),
        created_at=row.created_at,
    )


def get_user(user_id: int) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.id == user_id)).first()
        if not row:
            return None
        return _to_user(row)


def register_user(email: str, password: str, name: Optional[str] = None) -> User:
    """
    Create an account.

    Raises:
        ValidationError: empty email or short password
        ConflictError: email already registered
    """
    email = User.normalized_email(email or "")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    password_hash = hash_password(password)
    try:
        with get_db_session() as session:
            result = session.execute(
                insert(users).values(
                    email=email,
                    password_hash=password_hash,
                    name=User.normalized_name(email, name),
                )
            )
            user_id = result.inserted_primary_key[0]
    except IntegrityError:
        raise ConflictError("Email already registered")

    return get_user(user_id)


def authenticate_user(email: str, password: str) -> Optional[User]:
    """Return the user for valid credentials, None otherwise."""
    with get_db_session() as session:
        row = session.execute(
            select(users).where(users.c.email == User.normalized_email(email or ""))
        ).first()
    if not row or not verify_password(password or "", row.password_hash):
        return None
    return _to_user(row)
