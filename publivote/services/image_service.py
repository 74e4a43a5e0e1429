"""
Publication images: an ordered list per publication, each image backed
by one object-store key.

``order`` identifies an image inside its publication and is what removal
is keyed on.  New images take the highest remaining ``order`` plus one,
starting at 1, so gaps below the highest image are never refilled.
"""
import logging
from typing import AsyncIterator

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from publivote.cache import CacheManager
from publivote.database import transaction
from publivote.exceptions import NotFound, ObjectStoreFailure, PermissionDenied, StorageFailure
from publivote.models import Publication, PublicationImage
from publivote.schemas import Identity, ImageResponse
from publivote.services.vote_service import lock_publication
from publivote.storage import ObjectStore

logger = logging.getLogger(__name__)


def image_key(publication_id: int, order: int) -> str:
    return f"publications-images-{publication_id}-{order}"


async def get_images(db: AsyncSession, publication_id: int) -> list[PublicationImage]:
    result = await db.execute(
        select(PublicationImage)
        .where(PublicationImage.publication_id == publication_id)
        .order_by(PublicationImage.order)
    )
    return list(result.scalars().all())


async def remove_image_record(db: AsyncSession, publication_id: int, order: int) -> bool:
    """Delete the association row for (*publication_id*, *order*); True if a row went away."""
    result = await db.execute(
        delete(PublicationImage).where(
            PublicationImage.publication_id == publication_id,
            PublicationImage.order == order,
        )
    )
    return result.rowcount > 0


class PublicationImageService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        object_store: ObjectStore,
        cache: CacheManager,
        signed_url_ttl: int = 900,
    ) -> None:
        self._session_factory = session_factory
        self._object_store = object_store
        self._cache = cache
        self._signed_url_ttl = signed_url_ttl

    async def to_response(self, image: PublicationImage) -> dict:
        url = await self._object_store.get_signed_url(image.image_key, self._signed_url_ttl)
        return ImageResponse(
            publication_id=image.publication_id,
            order=image.order,
            image_key=image.image_key,
            content_type=image.content_type,
            url=url,
        ).model_dump()

    async def add_image(
        self,
        publication_id: int,
        data: bytes,
        content_type: str,
        acting_user: Identity,
    ) -> dict:
        """
        Store *data* as the next image of *publication_id*.

        The row is flushed before the upload so a constraint failure never
        leaves a stored object behind; if the commit itself fails the
        uploaded object is deleted again.
        """
        uploaded = False
        try:
            async with transaction(self._session_factory) as db:
                publication = await lock_publication(db, publication_id)
                if not acting_user.can_manage(publication.user_id):
                    raise PermissionDenied("Only the author can add images to this publication")

                current = await db.execute(
                    select(func.max(PublicationImage.order)).where(
                        PublicationImage.publication_id == publication_id
                    )
                )
                order = (current.scalar_one() or 0) + 1
                key = image_key(publication_id, order)
                image = PublicationImage(
                    publication_id=publication_id,
                    order=order,
                    image_key=key,
                    content_type=content_type,
                )
                db.add(image)
                await db.flush()
                await self._object_store.upload(key, data, content_type)
                uploaded = True
        except StorageFailure:
            if uploaded:
                try:
                    await self._object_store.delete(key)
                except ObjectStoreFailure as cleanup_exc:
                    logger.warning("Could not remove uploaded object %s after failed commit: %s", key, cleanup_exc)
            raise

        await self._cache.invalidate_publication(publication_id)
        logger.info("Added image %s to publication %s", order, publication_id)
        return await self.to_response(image)

    async def list_images(self, publication_id: int) -> list[dict]:
        async with transaction(self._session_factory) as db:
            exists = await db.execute(select(Publication.id).where(Publication.id == publication_id))
            if exists.scalar_one_or_none() is None:
                raise NotFound(f"Publication {publication_id} not found")
            images = await get_images(db, publication_id)
        return [await self.to_response(image) for image in images]

    async def get_image(self, publication_id: int, order: int) -> tuple[dict, AsyncIterator[bytes]]:
        """Return the image record and a byte stream of its stored object."""
        async with transaction(self._session_factory) as db:
            result = await db.execute(
                select(PublicationImage).where(
                    PublicationImage.publication_id == publication_id,
                    PublicationImage.order == order,
                )
            )
            image = result.scalar_one_or_none()
        if image is None:
            raise NotFound(f"Image {order} of publication {publication_id} not found")
        # Checked up front: the stream is lazy and could only fail after the
        # response status has been sent.
        if not await self._object_store.exists(image.image_key):
            raise NotFound(f"Stored object {image.image_key} for image {order} is missing")
        return await self.to_response(image), self._object_store.get_stream(image.image_key)

    async def remove_image(self, publication_id: int, order: int, acting_user: Identity | None = None) -> None:
        """
        Delete the stored object, then the association row.  An object
        store failure aborts the removal and leaves the row in place.
        """
        async with transaction(self._session_factory) as db:
            publication = await lock_publication(db, publication_id)
            if acting_user is not None and not acting_user.can_manage(publication.user_id):
                raise PermissionDenied("Only the author can remove images from this publication")

            result = await db.execute(
                select(PublicationImage).where(
                    PublicationImage.publication_id == publication_id,
                    PublicationImage.order == order,
                )
            )
            image = result.scalar_one_or_none()
            if image is None:
                raise NotFound(f"Image {order} of publication {publication_id} not found")

            await self._object_store.delete(image.image_key)
            await remove_image_record(db, publication_id, order)

        await self._cache.invalidate_publication(publication_id)
        logger.info("Removed image %s from publication %s", order, publication_id)
