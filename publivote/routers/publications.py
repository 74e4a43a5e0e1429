from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse

from publivote.dependencies import PaginationParams, Services, get_identity, get_services
from publivote.schemas import (
    Identity,
    ImageResponse,
    PaginatedResponse,
    PublicationCreate,
    PublicationFilter,
    VoteResult,
)

router = APIRouter(prefix="/api/v1/publications", tags=["publications"])


@router.get("", response_model=PaginatedResponse)
async def list_publications(
    tag_id: int | None = Query(None),
    publication_type_id: int | None = Query(None),
    title: str | None = Query(None),
    content: str | None = Query(None),
    description: str | None = Query(None),
    pagination: PaginationParams = Depends(),
    services: Services = Depends(get_services),
):
    filters = PublicationFilter(
        tag_id=tag_id,
        publication_type_id=publication_type_id,
        title=title,
        content=content,
        description=description,
    )
    return await services.publications.find_many(filters, pagination.page, pagination.page_size)


@router.get("/{publication_id}")
async def get_publication(publication_id: int, services: Services = Depends(get_services)):
    return await services.publications.find_by_id(publication_id)


@router.post("", status_code=201)
async def create_publication(
    data: PublicationCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.publications.create(data, identity)


@router.delete("/{publication_id}", status_code=204)
async def delete_publication(
    publication_id: int,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    await services.publications.delete(publication_id, identity)


@router.post("/{publication_id}/vote", response_model=VoteResult)
async def toggle_vote(
    publication_id: int,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.votes.toggle(publication_id, identity.user_id)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

@router.get("/{publication_id}/images", response_model=list[ImageResponse])
async def list_images(publication_id: int, services: Services = Depends(get_services)):
    return await services.images.list_images(publication_id)


@router.post("/{publication_id}/images", status_code=201, response_model=ImageResponse)
async def upload_image(
    publication_id: int,
    file: UploadFile = File(...),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    data = await file.read()
    content_type = file.content_type or "application/octet-stream"
    return await services.images.add_image(publication_id, data, content_type, identity)


@router.get("/{publication_id}/images/{order}")
async def get_image(publication_id: int, order: int, services: Services = Depends(get_services)):
    image, stream = await services.images.get_image(publication_id, order)
    return StreamingResponse(stream, media_type=image["content_type"])


@router.delete("/{publication_id}/images/{order}", status_code=204)
async def delete_image(
    publication_id: int,
    order: int,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    await services.images.remove_image(publication_id, order, identity)
