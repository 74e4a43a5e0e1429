"""
Publication service: the lifecycle of a publication.

Design notes
------------
- Every operation owns its transaction through ``database.transaction``:
  commit on success, rollback on any failure, nothing half-applied.
- ``votes_count`` is aggregated at read time with a correlated subquery;
  list/detail views go through the Redis cache-aside layer, which every
  write invalidates, so a cached count never outlives a toggle.
- Filtering by tag is two-step: resolve the tag's publication ids first,
  then restrict the main query with ``IN``.
- Cascading delete removes dependent rows in a fixed order (tag links,
  votes, images, then the publication) under a row lock on the
  publication, so no vote toggle can slip in between.  Stored image
  objects are deleted concurrently before the commit.  A failed object
  delete is queued in ``orphaned_objects`` for ``reconcile_orphans``
  unless ``strict_object_delete`` is set, in which case the whole delete
  is rolled back with ``ObjectStoreFailure``.
"""
import asyncio
import logging
import math

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload, selectinload

from publivote.cache import CacheManager, detail_key, list_key
from publivote.database import transaction
from publivote.exceptions import NotFound, ObjectStoreFailure, PermissionDenied
from publivote.models import OrphanedObject, Publication, Vote
from publivote.schemas import Identity, PaginatedResponse, PublicationCreate, PublicationFilter
from publivote.services import tag_service
from publivote.services.image_service import get_images, remove_image_record
from publivote.services.vote_service import lock_publication, votes_count_column
from publivote.storage import ObjectStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _author_summary(author) -> dict | None:
    if author is None:
        return None
    return {
        "id": author.id,
        "username": author.username,
        "first_name": author.first_name,
        "last_name": author.last_name,
    }


def _publication_to_dict(publication: Publication, votes_count: int) -> dict:
    """List view: core fields, author summary, tags and the vote count."""
    return {
        "id": publication.id,
        "title": publication.title,
        "description": publication.description,
        "content": publication.content,
        "reference_link": publication.reference_link,
        "user_id": publication.user_id,
        "city_id": publication.city_id,
        "publication_type_id": publication.publication_type_id,
        "created_at": publication.created_at.isoformat() if publication.created_at else None,
        "author": _author_summary(publication.author),
        "tags": [{"id": t.id, "name": t.name} for t in publication.tags],
        "votes_count": votes_count,
    }


def _apply_filters(query, filters: PublicationFilter, candidate_ids: list[int] | None):
    if candidate_ids is not None:
        query = query.where(Publication.id.in_(candidate_ids))
    if filters.publication_type_id is not None:
        query = query.where(Publication.publication_type_id == filters.publication_type_id)
    if filters.title:
        query = query.where(Publication.title.ilike(f"%{filters.title}%"))
    if filters.content:
        query = query.where(Publication.content.ilike(f"%{filters.content}%"))
    if filters.description:
        query = query.where(Publication.description.ilike(f"%{filters.description}%"))
    return query


class PublicationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        object_store: ObjectStore,
        cache: CacheManager,
        *,
        strict_object_delete: bool = False,
        signed_url_ttl: int = 900,
        list_ttl: int = 60,
        detail_ttl: int = 300,
    ) -> None:
        self._session_factory = session_factory
        self._object_store = object_store
        self._cache = cache
        self._strict_object_delete = strict_object_delete
        self._signed_url_ttl = signed_url_ttl
        self._list_ttl = list_ttl
        self._detail_ttl = detail_ttl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_many(
        self,
        filters: PublicationFilter | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> PaginatedResponse:
        """
        Return one page of publications matching *filters*, newest first,
        each with its author summary, tags and ``votes_count``.

        The total is counted over the same filters so callers can derive
        the page count.
        """
        filters = filters or PublicationFilter()
        limit, offset = page_size, (page - 1) * page_size
        cache_key = list_key(filters.model_dump(), limit, offset)
        cached = await self._cache.get(cache_key)
        if cached:
            return PaginatedResponse(**cached)

        async with transaction(self._session_factory) as db:
            candidate_ids = None
            if filters.tag_id is not None:
                candidate_ids = await tag_service.publication_ids_for_tag(db, filters.tag_id)

            count_q = _apply_filters(
                select(func.count()).select_from(Publication), filters, candidate_ids
            )
            total: int = (await db.execute(count_q)).scalar_one()

            rows_q = _apply_filters(
                select(Publication, votes_count_column())
                .options(joinedload(Publication.author), selectinload(Publication.tags))
                .order_by(Publication.created_at.desc(), Publication.id.desc())
                .offset(offset)
                .limit(limit),
                filters,
                candidate_ids,
            )
            rows = (await db.execute(rows_q)).all()
            items = [_publication_to_dict(publication, count) for publication, count in rows]

        response = PaginatedResponse(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total > 0 else 0,
        )
        await self._cache.set(cache_key, response.model_dump(), ttl=self._list_ttl)
        return response

    async def find_by_id(self, publication_id: int) -> dict:
        """
        Return the detail view of *publication_id*: author, city,
        publication type, tags, ordered images and ``votes_count``.

        Raises ``NotFound`` when the publication does not exist.
        """
        cached = await self._cache.get(detail_key(publication_id))
        if cached:
            return cached

        async with transaction(self._session_factory) as db:
            q = (
                select(Publication, votes_count_column())
                .where(Publication.id == publication_id)
                .options(
                    joinedload(Publication.author),
                    joinedload(Publication.city),
                    joinedload(Publication.publication_type),
                    selectinload(Publication.tags),
                    selectinload(Publication.images),
                )
            )
            row = (await db.execute(q)).unique().one_or_none()
            if row is None:
                raise NotFound(f"Publication {publication_id} not found")
            publication, votes_count = row

        data = _publication_to_dict(publication, votes_count)
        data["city"] = {"id": publication.city.id, "name": publication.city.name} if publication.city else None
        data["publication_type"] = (
            {"id": publication.publication_type.id, "name": publication.publication_type.name}
            if publication.publication_type
            else None
        )
        data["images"] = [
            {
                "order": image.order,
                "image_key": image.image_key,
                "content_type": image.content_type,
                "url": await self._object_store.get_signed_url(image.image_key, self._signed_url_ttl),
            }
            for image in publication.images
        ]
        await self._cache.set(detail_key(publication_id), data, ttl=self._detail_ttl)
        return data

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: PublicationCreate, acting_user: Identity) -> dict:
        """
        Insert a publication authored by *acting_user* and link its tags,
        all in one transaction.

        Only tag ids that exist are linked.  When tags were requested and
        none exist the whole creation fails with ``InvalidReference`` and
        no publication row survives.  With no tags requested the
        association table is not touched.
        """
        async with transaction(self._session_factory) as db:
            publication = Publication(
                title=data.title,
                description=data.description,
                content=data.content,
                city_id=data.city_id,
                publication_type_id=data.publication_type_id,
                reference_link=data.reference_link,
                user_id=acting_user.user_id,
            )
            db.add(publication)
            await db.flush()
            await db.refresh(publication, ["created_at"])

            tag_ids: list[int] = []
            if data.tag_ids:
                tag_ids = await tag_service.attach_tags(db, publication.id, data.tag_ids)

        await self._cache.invalidate_publication()
        logger.info("Created publication %s with tags %s", publication.id, tag_ids)
        return {
            "id": publication.id,
            "title": publication.title,
            "description": publication.description,
            "content": publication.content,
            "reference_link": publication.reference_link,
            "user_id": publication.user_id,
            "city_id": publication.city_id,
            "publication_type_id": publication.publication_type_id,
            "created_at": publication.created_at.isoformat() if publication.created_at else None,
            "tag_ids": tag_ids,
            "votes_count": 0,
        }

    async def delete(self, publication_id: int, acting_user: Identity | None = None) -> None:
        """
        Delete *publication_id* together with its tag links, votes, image
        rows and stored image objects.

        Raises ``NotFound`` when it does not exist and ``PermissionDenied``
        when *acting_user* is given and is neither the author nor an admin.
        """
        async with transaction(self._session_factory) as db:
            publication = await lock_publication(db, publication_id)
            if acting_user is not None and not acting_user.can_manage(publication.user_id):
                raise PermissionDenied("Only the author can delete this publication")

            await tag_service.detach_all(db, publication_id)
            await db.execute(delete(Vote).where(Vote.publication_id == publication_id))

            images = await get_images(db, publication_id)
            failures = await self._delete_objects([image.image_key for image in images])
            for image in images:
                await remove_image_record(db, publication_id, image.order)

            if failures:
                if self._strict_object_delete:
                    raise ObjectStoreFailure(
                        f"Could not delete {len(failures)} stored image(s) of publication {publication_id}",
                        list(failures),
                    )
                await self._queue_orphans(db, publication_id, failures)

            await db.execute(delete(Publication).where(Publication.id == publication_id))

        await self._cache.invalidate_publication(publication_id)
        logger.info("Deleted publication %s (%d image(s))", publication_id, len(images))

    async def reconcile_orphans(self) -> dict:
        """
        Retry deleting every queued orphaned object.  Keys that now delete
        are dropped from the queue; the rest keep their row with the new
        error and an incremented attempt count.
        """
        async with transaction(self._session_factory) as db:
            result = await db.execute(select(OrphanedObject).with_for_update())
            orphans = list(result.scalars().all())
            failures = await self._delete_objects([orphan.object_key for orphan in orphans])
            for orphan in orphans:
                if orphan.object_key in failures:
                    orphan.attempts += 1
                    orphan.error = failures[orphan.object_key]
                else:
                    await db.delete(orphan)

        deleted = len(orphans) - len(failures)
        logger.info("Orphan reconcile: %d deleted, %d remaining", deleted, len(failures))
        return {"deleted": deleted, "remaining": len(failures)}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _delete_objects(self, keys: list[str]) -> dict[str, str]:
        """
        Delete *keys* from the object store concurrently.  Each delete is
        independent; returns ``{key: error}`` for the ones that failed.
        """
        if not keys:
            return {}
        outcomes = await asyncio.gather(
            *(self._object_store.delete(key) for key in keys),
            return_exceptions=True,
        )
        failures: dict[str, str] = {}
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Object store delete failed for %s: %s", key, outcome)
                failures[key] = str(outcome)
        return failures

    async def _queue_orphans(self, db: AsyncSession, publication_id: int, failures: dict[str, str]) -> None:
        existing = await db.execute(
            select(OrphanedObject).where(OrphanedObject.object_key.in_(list(failures)))
        )
        queued = {orphan.object_key: orphan for orphan in existing.scalars().all()}
        for key, error in failures.items():
            if key in queued:
                queued[key].attempts += 1
                queued[key].error = error
            else:
                db.add(OrphanedObject(object_key=key, publication_id=publication_id, error=error))
        logger.warning(
            "Queued %d orphaned object(s) of publication %s for reconciliation",
            len(failures),
            publication_id,
        )
