from dataclasses import dataclass

from fastapi import Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from publivote.cache import CacheManager
from publivote.config import Settings, settings
from publivote.schemas import Identity
from publivote.services.image_service import PublicationImageService
from publivote.services.publication_service import PublicationService
from publivote.services.vote_service import VoteLedger
from publivote.storage import ObjectStore


class PaginationParams:
    """
    Reusable dependency translating ``page``/``size`` query parameters
    into a page number, a page size and the SQL OFFSET.

    ``size`` defaults to ``settings.DEFAULT_PAGE_SIZE`` and is clamped to
    ``settings.MAX_PAGE_SIZE`` whatever the caller sends.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        size: int | None = Query(None, ge=1, description="Items per page."),
    ) -> None:
        self.page = page
        self.page_size = min(size or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


# ---------------------------------------------------------------------------
# Identity: set by the upstream auth layer
# ---------------------------------------------------------------------------

def get_identity(
    x_user_id: int | None = Header(None),
    x_user_role: int = Header(1),
) -> Identity:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Identity(user_id=x_user_id, role_id=x_user_role)


def get_optional_identity(
    x_user_id: int | None = Header(None),
    x_user_role: int = Header(1),
) -> Identity | None:
    if x_user_id is None:
        return None
    return Identity(user_id=x_user_id, role_id=x_user_role)


# ---------------------------------------------------------------------------
# Service container
# ---------------------------------------------------------------------------

@dataclass
class Services:
    publications: PublicationService
    votes: VoteLedger
    images: PublicationImageService
    cache: CacheManager


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    object_store: ObjectStore,
    cache: CacheManager,
    config: Settings = settings,
) -> Services:
    """Wire the stateful services once, at application startup."""
    return Services(
        publications=PublicationService(
            session_factory,
            object_store,
            cache,
            strict_object_delete=config.STRICT_OBJECT_DELETE,
            signed_url_ttl=config.SIGNED_URL_TTL,
            list_ttl=config.CACHE_TTL_LIST,
            detail_ttl=config.CACHE_TTL_DETAIL,
        ),
        votes=VoteLedger(session_factory, cache),
        images=PublicationImageService(
            session_factory, object_store, cache, signed_url_ttl=config.SIGNED_URL_TTL
        ),
        cache=cache,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
