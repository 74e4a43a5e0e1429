"""Read-only lookups referenced by publications."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from publivote.models import City, PublicationType


async def get_cities(db: AsyncSession) -> list[dict]:
    result = await db.execute(select(City).order_by(City.name))
    return [{"id": c.id, "name": c.name} for c in result.scalars().all()]


async def get_publication_types(db: AsyncSession) -> list[dict]:
    result = await db.execute(select(PublicationType).order_by(PublicationType.name))
    return [
        {"id": t.id, "name": t.name, "description": t.description}
        for t in result.scalars().all()
    ]
