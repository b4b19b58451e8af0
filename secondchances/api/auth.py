"""
Auth API routes.

- POST /api/auth/register
- POST /api/auth/login
- GET  /api/auth/me
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from secondchances.core.auth import create_access_token, get_current_user
from secondchances.core.errors import AuthenticationError, NotFoundError
from secondchances.features.users.service import (
    MIN_PASSWORD_LENGTH,
    authenticate_user,
    get_user,
    register_user,
)
from secondchances.models.user import AuthenticatedUser, User

router = APIRouter()


class RegisterIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    name: Optional[str] = Field(default=None, max_length=200)


class LoginIn(BaseModel):
    email: str
    password: str


class AuthOut(BaseModel):
    token: str
    user: User


@router.post("/register", response_model=AuthOut, status_code=201)
async def register(data: RegisterIn):
    user = register_user(data.email, data.password, data.name)
    return {"token": create_access_token(user.id, user.email), "user": user}


@router.post("/login", response_model=AuthOut)
async def login(data: LoginIn):
    user = authenticate_user(data.email, data.password)
    if not user:
        raise AuthenticationError("Invalid email or password", code="invalid_credentials")
    return {"token": create_access_token(user.id, user.email), "user": user}


@router.get("/me", response_model=User)
async def me(current: AuthenticatedUser = Depends(get_current_user)):
    user = get_user(current.user_id)
    if not user:
        # Token outlived its account
        raise NotFoundError("User not found")
    return user
