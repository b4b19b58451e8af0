from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from secondchances.core.auth import get_current_user
from secondchances.features.posts.service import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    PostFilters,
    create_post,
    create_response,
    list_posts,
    list_responses,
)
from secondchances.models.user import AuthenticatedUser

router = APIRouter()


class PostIn(BaseModel):
    location: str = Field(min_length=1, max_length=255)
    encounter_date: date
    encounter_time: Optional[str] = Field(default=None, max_length=20)
    your_description: Optional[str] = None
    their_description: Optional[str] = None
    story: str = Field(min_length=1)


class ResponseIn(BaseModel):
    message: str = Field(min_length=1)


@router.get("")
async def get_posts(
    location: Optional[str] = None,
    encounter_date: Optional[date] = Query(None, alias="date", description="Exact encounter date (YYYY-MM-DD)"),
    keywords: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
):
    return list_posts(
        PostFilters(location=location, encounter_date=encounter_date, keywords=keywords, page=page, limit=limit)
    )


@router.post("", status_code=201)
async def publish_post(data: PostIn, user: AuthenticatedUser = Depends(get_current_user)):
    return create_post(
        user,
        location=data.location,
        encounter_date=data.encounter_date,
        story=data.story,
        encounter_time=data.encounter_time,
        your_description=data.your_description,
        their_description=data.their_description,
    )


@router.post("/{post_id}/respond", status_code=201)
async def respond(post_id: int, data: ResponseIn, user: AuthenticatedUser = Depends(get_current_user)):
    return create_response(user, post_id, data.message)


@router.get("/{post_id}/responses")
async def get_responses(post_id: int, user: AuthenticatedUser = Depends(get_current_user)):
    """Post owner or premium subscribers only."""
    return {"responses": list_responses(user, post_id)}
