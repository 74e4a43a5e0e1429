"""Tag association tests run against a single committed publication."""
import pytest

from conftest import count_rows
from publivote.database import transaction
from publivote.exceptions import InvalidReference
from publivote.models import Publication, publications_tags
from publivote.schemas import TagCreate
from publivote.services import tag_service


async def _bare_publication(session_factory, world) -> int:
    async with transaction(session_factory) as db:
        publication = Publication(
            title="t",
            description="d",
            content="c",
            city_id=world.city_id,
            publication_type_id=world.publication_type_id,
            user_id=world.author_id,
        )
        db.add(publication)
        await db.flush()
        return publication.id


@pytest.mark.asyncio
async def test_attach_replaces_tag_set(session_factory, world):
    pid = await _bare_publication(session_factory, world)
    tags = world.tag_ids

    async with transaction(session_factory) as db:
        await tag_service.attach_tags(db, pid, [tags["python"], tags["music"]])
    async with transaction(session_factory) as db:
        resolved = await tag_service.attach_tags(db, pid, [tags["sports"]])

    assert resolved == [tags["sports"]]
    assert await count_rows(publications_tags, publication_id=pid) == 1
    assert await count_rows(publications_tags, publication_id=pid, tag_id=tags["sports"]) == 1


@pytest.mark.asyncio
async def test_attach_drops_unknown_ids(session_factory, world):
    pid = await _bare_publication(session_factory, world)
    async with transaction(session_factory) as db:
        resolved = await tag_service.attach_tags(db, pid, [777, world.tag_ids["music"], 778])
    assert resolved == [world.tag_ids["music"]]


@pytest.mark.asyncio
async def test_attach_with_no_resolvable_ids_fails_and_keeps_old_set(session_factory, world):
    pid = await _bare_publication(session_factory, world)
    async with transaction(session_factory) as db:
        await tag_service.attach_tags(db, pid, [world.tag_ids["python"]])

    with pytest.raises(InvalidReference):
        async with transaction(session_factory) as db:
            await tag_service.attach_tags(db, pid, [555])

    assert await count_rows(publications_tags, publication_id=pid, tag_id=world.tag_ids["python"]) == 1


@pytest.mark.asyncio
async def test_attach_empty_list_clears(session_factory, world):
    pid = await _bare_publication(session_factory, world)
    async with transaction(session_factory) as db:
        await tag_service.attach_tags(db, pid, [world.tag_ids["python"]])
    async with transaction(session_factory) as db:
        assert await tag_service.attach_tags(db, pid, []) == []
    assert await count_rows(publications_tags, publication_id=pid) == 0


@pytest.mark.asyncio
async def test_publication_ids_for_tag(session_factory, world):
    first = await _bare_publication(session_factory, world)
    second = await _bare_publication(session_factory, world)
    async with transaction(session_factory) as db:
        await tag_service.attach_tags(db, first, [world.tag_ids["python"]])
        await tag_service.attach_tags(db, second, [world.tag_ids["python"], world.tag_ids["music"]])
        ids = await tag_service.publication_ids_for_tag(db, world.tag_ids["python"])
        music = await tag_service.publication_ids_for_tag(db, world.tag_ids["music"])
    assert sorted(ids) == [first, second]
    assert music == [second]


@pytest.mark.asyncio
async def test_tag_catalogue(session_factory, world):
    async with transaction(session_factory) as db:
        created = await tag_service.create_tag(db, TagCreate(name="art"))
    async with transaction(session_factory) as db:
        names = [t["name"] for t in await tag_service.get_tags(db)]
    assert created["name"] == "art"
    assert names == sorted(names)
    assert "art" in names
