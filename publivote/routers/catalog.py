from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from publivote.database import get_db
from publivote.dependencies import get_identity
from publivote.schemas import CityResponse, Identity, PublicationTypeResponse, TagCreate, TagResponse
from publivote.services import lookup_service, tag_service

router = APIRouter(prefix="/api/v1", tags=["catalog"])


@router.get("/tags", response_model=list[TagResponse])
async def list_tags(db: AsyncSession = Depends(get_db)):
    return await tag_service.get_tags(db)


@router.post("/tags", status_code=201, response_model=TagResponse)
async def create_tag(
    data: TagCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can create tags")
    try:
        return await tag_service.create_tag(db, data)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A tag with this name already exists")


@router.get("/cities", response_model=list[CityResponse])
async def list_cities(db: AsyncSession = Depends(get_db)):
    return await lookup_service.get_cities(db)


@router.get("/publication-types", response_model=list[PublicationTypeResponse])
async def list_publication_types(db: AsyncSession = Depends(get_db)):
    return await lookup_service.get_publication_types(db)
