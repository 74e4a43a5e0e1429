from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from publivote.database import get_db
from publivote.dependencies import (
    PaginationParams,
    Services,
    get_identity,
    get_optional_identity,
    get_services,
)
from publivote.schemas import Identity, PaginatedResponse, UserCreate
from publivote.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("", response_model=PaginatedResponse)
async def list_users(pagination: PaginationParams = Depends(), db: AsyncSession = Depends(get_db)):
    return await user_service.get_users(db, pagination.page, pagination.page_size)


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    identity: Identity | None = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    private = identity is not None and identity.can_manage(user_id)
    return await user_service.get_user(db, user_id, private=private)


@router.post("", status_code=201)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await user_service.create_user(db, data)
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail="A user with this username or email already exists",
        )


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    changes: dict[str, Any] = Body(...),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    if identity.user_id != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return await user_service.update_user(db, user_id, changes, cache=services.cache)


@router.get("/{user_id}/votes", response_model=list[int])
async def list_user_votes(user_id: int, services: Services = Depends(get_services)):
    return await services.votes.voted_publication_ids(user_id)
