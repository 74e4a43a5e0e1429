"""
Tag catalogue and the publication <-> tag association.

``attach_tags`` and ``detach_all`` run inside the caller's transaction
and never commit; the publication service decides when the link rows
become visible.
"""
from collections.abc import Iterable

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from publivote.exceptions import InvalidReference
from publivote.models import Tag, publications_tags
from publivote.schemas import TagCreate


async def resolve_tag_ids(db: AsyncSession, tag_ids: Iterable[int]) -> list[int]:
    """Return the subset of *tag_ids* that exist, ascending, without duplicates."""
    wanted = set(tag_ids)
    if not wanted:
        return []
    result = await db.execute(select(Tag.id).where(Tag.id.in_(wanted)).order_by(Tag.id))
    return list(result.scalars().all())


async def attach_tags(db: AsyncSession, publication_id: int, tag_ids: list[int]) -> list[int]:
    """
    Replace the tag set of *publication_id* with the ids from *tag_ids*
    that exist.  Unknown ids are dropped silently.

    Raises ``InvalidReference`` when *tag_ids* is non-empty but none of
    them resolve; the caller's transaction is expected to roll back.
    """
    resolved = await resolve_tag_ids(db, tag_ids)
    if tag_ids and not resolved:
        raise InvalidReference(f"None of the tag ids {sorted(set(tag_ids))} exist")

    await detach_all(db, publication_id)
    if resolved:
        await db.execute(
            insert(publications_tags),
            [{"publication_id": publication_id, "tag_id": tag_id} for tag_id in resolved],
        )
    return resolved


async def detach_all(db: AsyncSession, publication_id: int) -> None:
    await db.execute(
        delete(publications_tags).where(publications_tags.c.publication_id == publication_id)
    )


async def publication_ids_for_tag(db: AsyncSession, tag_id: int) -> list[int]:
    result = await db.execute(
        select(publications_tags.c.publication_id).where(publications_tags.c.tag_id == tag_id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

async def get_tags(db: AsyncSession) -> list[dict]:
    result = await db.execute(select(Tag).order_by(Tag.name))
    return [{"id": t.id, "name": t.name} for t in result.scalars().all()]


async def create_tag(db: AsyncSession, data: TagCreate) -> dict:
    """Name uniqueness is enforced by the schema; the router maps the conflict to 409."""
    tag = Tag(name=data.name)
    db.add(tag)
    await db.flush()
    return {"id": tag.id, "name": tag.name}
