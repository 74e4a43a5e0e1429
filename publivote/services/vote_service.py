"""
Vote ledger: at most one vote per (user, publication), toggled on and off.

Vote counts are never stored.  Every read aggregates the ``votes`` table
through ``votes_count_column()``; the only derived state is the Redis
view cache, which ``toggle`` invalidates after each commit.

Concurrency: ``toggle`` takes a row lock on the parent publication
(``SELECT ... FOR UPDATE``) before the existence check, so two toggles
for the same publication, or a toggle racing its publication's delete,
run one after the other.  The ``uq_votes_user_publication`` constraint
backs this at the database level.
"""
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from publivote.cache import CacheManager
from publivote.database import transaction
from publivote.exceptions import NotFound
from publivote.models import Publication, Vote
from publivote.schemas import VoteResult

logger = logging.getLogger(__name__)


def votes_count_column():
    """Correlated ``COUNT(*)`` of votes for the enclosing ``Publication`` row."""
    return (
        select(func.count(Vote.id))
        .where(Vote.publication_id == Publication.id)
        .correlate(Publication)
        .scalar_subquery()
        .label("votes_count")
    )


async def lock_publication(db: AsyncSession, publication_id: int) -> Publication:
    """Load *publication_id* with a row lock, or raise ``NotFound``."""
    result = await db.execute(
        select(Publication).where(Publication.id == publication_id).with_for_update()
    )
    publication = result.scalar_one_or_none()
    if publication is None:
        raise NotFound(f"Publication {publication_id} not found")
    return publication


async def count_votes(db: AsyncSession, publication_id: int) -> int:
    result = await db.execute(
        select(func.count(Vote.id)).where(Vote.publication_id == publication_id)
    )
    return result.scalar_one()


class VoteLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cache: CacheManager) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def toggle(self, publication_id: int, user_id: int) -> VoteResult:
        """
        Add the vote of *user_id* on *publication_id* if absent, remove it
        if present.  The check and the write share one transaction and the
        publication row lock.
        """
        async with transaction(self._session_factory) as db:
            await lock_publication(db, publication_id)
            existing = await db.execute(
                select(Vote.id).where(
                    Vote.user_id == user_id,
                    Vote.publication_id == publication_id,
                )
            )
            if existing.scalar_one_or_none() is not None:
                await db.execute(
                    delete(Vote).where(
                        Vote.user_id == user_id,
                        Vote.publication_id == publication_id,
                    )
                )
                action = "removed"
            else:
                db.add(Vote(user_id=user_id, publication_id=publication_id))
                await db.flush()
                action = "added"
            votes_count = await count_votes(db, publication_id)

        await self._cache.invalidate_publication(publication_id)
        logger.debug("Vote %s: user=%s publication=%s", action, user_id, publication_id)
        return VoteResult(
            action=action,
            publication_id=publication_id,
            user_id=user_id,
            votes_count=votes_count,
        )

    async def count(self, publication_id: int) -> int:
        async with transaction(self._session_factory) as db:
            return await count_votes(db, publication_id)

    async def has_voted(self, publication_id: int, user_id: int) -> bool:
        async with transaction(self._session_factory) as db:
            result = await db.execute(
                select(Vote.id).where(
                    Vote.user_id == user_id,
                    Vote.publication_id == publication_id,
                )
            )
            return result.scalar_one_or_none() is not None

    async def voted_publication_ids(self, user_id: int) -> list[int]:
        """Publication ids *user_id* currently votes for, newest vote first."""
        async with transaction(self._session_factory) as db:
            result = await db.execute(
                select(Vote.publication_id)
                .where(Vote.user_id == user_id)
                .order_by(Vote.created_at.desc(), Vote.id.desc())
            )
            return list(result.scalars().all())
