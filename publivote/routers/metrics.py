from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from publivote.database import get_db
from publivote.dependencies import Services, get_identity, get_services
from publivote.models import OrphanedObject, Publication, Tag, User, Vote
from publivote.schemas import Identity, MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db), services: Services = Depends(get_services)):
    total_publications = await _count(db, Publication)
    total_votes = await _count(db, Vote)
    avg_votes = total_votes / total_publications if total_publications > 0 else 0

    return MetricsResponse(
        total_publications=total_publications,
        total_votes=total_votes,
        total_users=await _count(db, User),
        total_tags=await _count(db, Tag),
        avg_votes_per_publication=round(avg_votes, 2),
        orphaned_objects=await _count(db, OrphanedObject),
        cache_info=services.cache.stats,
    )


@router.post("/reconcile-orphans")
async def reconcile_orphans(
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can reconcile storage")
    return await services.publications.reconcile_orphans()
