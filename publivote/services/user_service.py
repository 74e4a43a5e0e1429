"""
User service: listing, detail views and profile edits.

Functions take the request's AsyncSession and run inside its
transaction (``get_db``); uniqueness of username/email is enforced by
the schema and surfaced by the router as 409.
"""
import math
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from publivote.cache import CacheManager
from publivote.exceptions import InvalidUpdate, NotFound
from publivote.models import User
from publivote.schemas import PaginatedResponse, UserCreate, UserPrivate, UserPublic

NON_EDITABLE_FIELDS = ("token", "email_verified", "password", "email", "username")
EDITABLE_FIELDS = ("first_name", "last_name", "code_phone", "phone", "interests")


def _user_to_dict(user: User, private: bool = False) -> dict:
    fields = {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "created_at": user.created_at,
    }
    if not private:
        return UserPublic(**fields).model_dump(mode="json")
    return UserPrivate(
        **fields,
        email=user.email,
        code_phone=user.code_phone,
        phone=user.phone,
        interests=user.interests,
        role_id=user.role_id,
    ).model_dump(mode="json")


async def get_users(db: AsyncSession, page: int = 1, page_size: int = 10) -> PaginatedResponse:
    """Public view of all users, newest first."""
    total: int = (await db.execute(select(func.count()).select_from(User))).scalar_one()
    result = await db.execute(
        select(User)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaginatedResponse(
        items=[_user_to_dict(u) for u in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def get_user(db: AsyncSession, user_id: int, private: bool = False) -> dict:
    """
    Return *user_id*; contact details are included only when *private*
    (the user themselves or an admin is asking).
    """
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return _user_to_dict(user, private=private)


async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    user = User(**data.model_dump())
    db.add(user)
    await db.flush()
    await db.refresh(user, ["created_at"])
    return _user_to_dict(user, private=True)


async def update_user(
    db: AsyncSession,
    user_id: int,
    changes: dict[str, Any],
    cache: CacheManager | None = None,
) -> dict:
    """
    Apply *changes* to the profile of *user_id*.

    Publication views embed an author summary, so every cached list page
    and detail entry is dropped when *cache* is given.

    Rejects the whole edit when it names any non-editable field, or when
    it names no editable field at all.  Unknown keys are ignored.
    """
    invalid = [field for field in changes if field in NON_EDITABLE_FIELDS]
    if invalid:
        raise InvalidUpdate(f"The following fields are not editable: {', '.join(invalid)}")

    valid = {field: value for field, value in changes.items() if field in EDITABLE_FIELDS}
    if not valid:
        raise InvalidUpdate("You must provide at least one valid field to edit")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    for field, value in valid.items():
        setattr(user, field, value)
    await db.flush()
    if cache is not None:
        await cache.invalidate_all_publications()
    return _user_to_dict(user, private=True)
