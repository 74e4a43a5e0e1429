"""Seed the publications database with lookups, users, publications and votes."""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from publivote.database import Base, async_session, engine, transaction
from publivote.models import City, Publication, PublicationType, Tag, User, Vote, publications_tags

TAGS = ["environment", "culture", "sports", "music", "education", "health",
        "technology", "volunteering", "transport", "food", "housing", "safety"]
CITIES = ["Lima", "Cusco", "Arequipa", "Trujillo", "Piura"]
PUBLICATION_TYPES = [("news", "Local news"), ("event", "Upcoming events"), ("complaint", "Citizen reports")]


async def seed(small: bool = False):
    num_users = 10 if small else 200
    num_publications = 100 if small else 5000
    max_votes = 5 if small else 40

    print(f"Seeding: {num_users} users, {num_publications} publications, up to {max_votes} votes each")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with transaction(async_session) as db:
        tags = [Tag(name=name) for name in TAGS]
        cities = [City(name=name) for name in CITIES]
        types = [PublicationType(name=name, description=desc) for name, desc in PUBLICATION_TYPES]
        db.add_all([*tags, *cities, *types])

        users = [User(username="admin", email="admin@example.com", role_id=2)]
        users += [
            User(username=f"user_{i:04d}", email=f"user_{i:04d}@example.com", first_name=f"User {i}")
            for i in range(num_users)
        ]
        db.add_all(users)
        await db.flush()
        print(f"  Created {len(tags)} tags, {len(cities)} cities, {len(users)} users")

        total_votes = 0
        batch_size = 500
        for batch_start in range(0, num_publications, batch_size):
            batch = []
            for i in range(batch_start, min(batch_start + batch_size, num_publications)):
                kind = random.choice(types)
                batch.append(Publication(
                    title=f"{kind.name.title()} #{i}: {random.choice(TAGS)} in {random.choice(CITIES)}",
                    description=f"Short description for publication {i}.",
                    content=f"Full content of publication {i}. " * 10,
                    city_id=random.choice(cities).id,
                    publication_type_id=kind.id,
                    user_id=random.choice(users).id,
                    created_at=datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365)),
                ))
            db.add_all(batch)
            await db.flush()

            links = [
                {"publication_id": p.id, "tag_id": tag.id}
                for p in batch
                for tag in random.sample(tags, k=random.randint(1, 3))
            ]
            await db.execute(publications_tags.insert(), links)

            for p in batch:
                voters = random.sample(users, k=random.randint(0, min(max_votes, len(users))))
                db.add_all([Vote(user_id=u.id, publication_id=p.id) for u in voters])
                total_votes += len(voters)
            await db.flush()
            print(f"  Batch {batch_start}-{batch_start + len(batch)}: publications created")

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Publications: {num_publications}")
    print(f"  Votes: {total_votes}")


def main():
    parser = argparse.ArgumentParser(description="Seed the publications database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (100 publications)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
