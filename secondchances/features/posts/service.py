"""
Posts domain service.

Missed-connection posts and the responses other users leave on them.
Reading responses is a premium feature unless the reader owns the post;
the premium check goes through the billing ledger.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, func, or_, and_
from sqlalchemy.sql import true

from secondchances.core.database import get_db_session, posts, post_responses, users
from secondchances.core.errors import NotFoundError, PremiumRequiredError, ValidationError
from secondchances.core.logging import log_event
from secondchances.features.billing import ledger
from secondchances.models.user import AuthenticatedUser

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


@dataclass(frozen=True)
class PostFilters:
    location: Optional[str] = None
    encounter_date: Optional[date] = None
    keywords: Optional[str] = None
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _post_to_dict(row) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "author_name": row.author_name,
        "location": row.location,
        "encounter_date": row.encounter_date.isoformat() if row.encounter_date else None,
        "encounter_time": row.encounter_time,
        "your_description": row.your_description,
        "their_description": row.their_description,
        "story": row.story,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "response_count": int(row.response_count or 0),
    }


def _post_query():
    response_count = (
        select(func.count(post_responses.c.id))
        .where(post_responses.c.post_id == posts.c.id)
        .correlate(posts)
        .scalar_subquery()
        .label("response_count")
    )
    return (
        select(posts, users.c.name.label("author_name"), response_count)
        .select_from(posts.join(users, users.c.id == posts.c.user_id))
        .where(posts.c.is_active == true())
    )


def list_posts(filters: PostFilters) -> Dict[str, Any]:
    """
    Active posts, newest first, with author name and response count.

    Returns:
        {"posts": [...], "page": int, "limit": int, "total": int}
    """
    if filters.page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= filters.limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")

    conditions = []
    if filters.location:
        conditions.append(posts.c.location.ilike(f"%{filters.location}%"))
    if filters.encounter_date:
        conditions.append(posts.c.encounter_date == filters.encounter_date)
    if filters.keywords:
        pattern = f"%{filters.keywords}%"
        conditions.append(or_(posts.c.story.ilike(pattern), posts.c.their_description.ilike(pattern)))

    query = _post_query()
    if conditions:
        query = query.where(and_(*conditions))

    count_query = select(func.count()).select_from(
        query.with_only_columns(posts.c.id).subquery()
    )

    with get_db_session() as session:
        total = session.execute(count_query).scalar() or 0
        rows = session.execute(
            query.order_by(posts.c.created_at.desc(), posts.c.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        ).fetchall()

    return {
        "posts": [_post_to_dict(r) for r in rows],
        "page": filters.page,
        "limit": filters.limit,
        "total": int(total),
    }


def get_post(post_id: int) -> Optional[Dict[str, Any]]:
    with get_db_session() as session:
        row = session.execute(_post_query().where(posts.c.id == post_id)).first()
    return _post_to_dict(row) if row else None


def create_post(
    user: AuthenticatedUser,
    location: str,
    encounter_date: date,
    story: str,
    encounter_time: Optional[str] = None,
    your_description: Optional[str] = None,
    their_description: Optional[str] = None,
) -> Dict[str, Any]:
    """Publish a post as the caller."""
    if not (location or "").strip():
        raise ValidationError("location is required")
    if not (story or "").strip():
        raise ValidationError("story is required")

    with get_db_session() as session:
        result = session.execute(
            insert(posts).values(
                user_id=user.user_id,
                location=location.strip(),
                encounter_date=encounter_date,
                encounter_time=encounter_time,
                your_description=your_description,
                their_description=their_description,
                story=story.strip(),
                is_active=True,
            )
        )
        post_id = result.inserted_primary_key[0]

    log_event("info", "posts.created", user_id=user.user_id, extra={"post_id": post_id})
    return get_post(post_id)


def _active_post_owner(session, post_id: int) -> Optional[int]:
    row = session.execute(
        select(posts.c.user_id).where(posts.c.id == post_id).where(posts.c.is_active == true())
    ).first()
    return row.user_id if row else None


def create_response(user: AuthenticatedUser, post_id: int, message: str) -> Dict[str, Any]:
    """
    Respond to a post.

    Raises:
        NotFoundError: post missing or inactive
        ValidationError: empty message
    """
    if not (message or "").strip():
        raise ValidationError("message is required")

    with get_db_session() as session:
        if _active_post_owner(session, post_id) is None:
            raise NotFoundError("Post not found")
        result = session.execute(
            insert(post_responses).values(post_id=post_id, user_id=user.user_id, message=message.strip())
        )
        response_id = result.inserted_primary_key[0]
        row = session.execute(
            select(post_responses).where(post_responses.c.id == response_id)
        ).first()

    log_event("info", "posts.response_created", user_id=user.user_id, extra={"post_id": post_id})
    return {
        "id": row.id,
        "post_id": row.post_id,
        "user_id": row.user_id,
        "message": row.message,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def list_responses(user: AuthenticatedUser, post_id: int) -> List[Dict[str, Any]]:
    """
    Responses to a post, newest first.

    Visible to the post owner and to premium users.

    Raises:
        NotFoundError: post missing or inactive
        PremiumRequiredError: caller is neither owner nor premium
    """
    with get_db_session() as session:
        owner_id = _active_post_owner(session, post_id)
    if owner_id is None:
        raise NotFoundError("Post not found")

    if owner_id != user.user_id and not ledger.is_premium(user.user_id):
        log_event("info", "posts.responses_gated", user_id=user.user_id, extra={"post_id": post_id})
        raise PremiumRequiredError("Premium subscription required")

    with get_db_session() as session:
        rows = session.execute(
            select(
                post_responses,
                users.c.name.label("responder_name"),
                users.c.email.label("responder_email"),
            )
            .select_from(post_responses.join(users, users.c.id == post_responses.c.user_id))
            .where(post_responses.c.post_id == post_id)
            .order_by(post_responses.c.created_at.desc(), post_responses.c.id.desc())
        ).fetchall()

    return [
        {
            "id": r.id,
            "post_id": r.post_id,
            "user_id": r.user_id,
            "responder_name": r.responder_name,
            "responder_email": r.responder_email,
            "message": r.message,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
