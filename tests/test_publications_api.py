"""
Publication endpoint tests: identity headers, status mapping for typed
service errors, voting, images and diagnostic headers.
"""
import pytest
from httpx import AsyncClient

from conftest import count_rows
from publivote.models import Vote


def _as(user_id: int, role_id: int = 1) -> dict:
    return {"X-User-Id": str(user_id), "X-User-Role": str(role_id)}


def _body(world, **overrides) -> dict:
    body = {
        "title": "Street festival",
        "description": "Food and music",
        "content": "All weekend on Main Street.",
        "city_id": world.city_id,
        "publication_type_id": world.publication_type_id,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_create_requires_identity(async_client: AsyncClient, world):
    resp = await async_client.post("/api/v1/publications", json=_body(world))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_and_get(async_client: AsyncClient, world):
    resp = await async_client.post(
        "/api/v1/publications",
        json=_body(world, tag_ids=[world.tag_ids["music"], 31337]),
        headers=_as(world.author_id),
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["user_id"] == world.author_id
    assert created["tag_ids"] == [world.tag_ids["music"]]

    detail = await async_client.get(f"/api/v1/publications/{created['id']}")
    assert detail.status_code == 200
    data = detail.json()
    assert data["votes_count"] == 0
    assert data["city"]["id"] == world.city_id
    assert [t["name"] for t in data["tags"]] == ["music"]


@pytest.mark.asyncio
async def test_create_with_unknown_tags_is_400(async_client: AsyncClient, world):
    resp = await async_client.post(
        "/api/v1/publications",
        json=_body(world, tag_ids=[31337]),
        headers=_as(world.author_id),
    )
    assert resp.status_code == 400
    listing = await async_client.get("/api/v1/publications")
    assert listing.json()["total"] == 0


@pytest.mark.asyncio
async def test_get_missing_is_404(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/publications/99999")
    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_list_with_filters_and_pagination(async_client: AsyncClient, world):
    headers = _as(world.author_id)
    for i in range(3):
        await async_client.post(
            "/api/v1/publications",
            json=_body(world, title=f"Festival {i}", tag_ids=[world.tag_ids["music"]]),
            headers=headers,
        )
    await async_client.post("/api/v1/publications", json=_body(world, title="Marathon"), headers=headers)

    page = await async_client.get("/api/v1/publications", params={"page": 1, "size": 2})
    data = page.json()
    assert data["total"] == 4
    assert data["pages"] == 2
    assert len(data["items"]) == 2

    tagged = await async_client.get("/api/v1/publications", params={"tag_id": world.tag_ids["music"]})
    assert tagged.json()["total"] == 3

    titled = await async_client.get("/api/v1/publications", params={"title": "MARA"})
    assert [p["title"] for p in titled.json()["items"]] == ["Marathon"]


@pytest.mark.asyncio
async def test_vote_toggle_endpoint(async_client: AsyncClient, world):
    created = (
        await async_client.post("/api/v1/publications", json=_body(world), headers=_as(world.author_id))
    ).json()
    url = f"/api/v1/publications/{created['id']}/vote"

    first = await async_client.post(url, headers=_as(world.voter_ids[0]))
    assert first.status_code == 200
    assert first.json()["action"] == "added"
    await async_client.post(url, headers=_as(world.voter_ids[1]))

    detail = await async_client.get(f"/api/v1/publications/{created['id']}")
    assert detail.json()["votes_count"] == 2

    second = await async_client.post(url, headers=_as(world.voter_ids[0]))
    assert second.json() == {
        "action": "removed",
        "publication_id": created["id"],
        "user_id": world.voter_ids[0],
        "votes_count": 1,
    }

    missing = await async_client.post("/api/v1/publications/99999/vote", headers=_as(world.voter_ids[0]))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_delete_endpoint(async_client: AsyncClient, world):
    created = (
        await async_client.post("/api/v1/publications", json=_body(world), headers=_as(world.author_id))
    ).json()
    await async_client.post(f"/api/v1/publications/{created['id']}/vote", headers=_as(world.voter_ids[0]))

    denied = await async_client.delete(
        f"/api/v1/publications/{created['id']}", headers=_as(world.voter_ids[0])
    )
    assert denied.status_code == 403

    resp = await async_client.delete(f"/api/v1/publications/{created['id']}", headers=_as(world.author_id))
    assert resp.status_code == 204
    assert await count_rows(Vote) == 0

    again = await async_client.delete(f"/api/v1/publications/{created['id']}", headers=_as(world.author_id))
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_image_endpoints(async_client: AsyncClient, world, object_store):
    created = (
        await async_client.post("/api/v1/publications", json=_body(world), headers=_as(world.author_id))
    ).json()
    base = f"/api/v1/publications/{created['id']}/images"

    upload = await async_client.post(
        base,
        files={"file": ("photo.png", b"fake-png", "image/png")},
        headers=_as(world.author_id),
    )
    assert upload.status_code == 201
    assert upload.json()["order"] == 1

    listing = await async_client.get(base)
    assert [image["order"] for image in listing.json()] == [1]

    content = await async_client.get(f"{base}/1")
    assert content.status_code == 200
    assert content.content == b"fake-png"
    assert content.headers["content-type"] == "image/png"

    removed = await async_client.delete(f"{base}/1", headers=_as(world.author_id))
    assert removed.status_code == 204
    assert object_store.objects == {}

    gone = await async_client.delete(f"{base}/1", headers=_as(world.author_id))
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_catalog_endpoints(async_client: AsyncClient, world):
    tags = await async_client.get("/api/v1/tags")
    assert {t["name"] for t in tags.json()} == {"python", "music", "sports"}

    denied = await async_client.post("/api/v1/tags", json={"name": "art"}, headers=_as(world.author_id))
    assert denied.status_code == 403
    created = await async_client.post("/api/v1/tags", json={"name": "art"}, headers=_as(world.admin_id, 2))
    assert created.status_code == 201
    duplicate = await async_client.post("/api/v1/tags", json={"name": "art"}, headers=_as(world.admin_id, 2))
    assert duplicate.status_code == 409

    cities = await async_client.get("/api/v1/cities")
    assert cities.json() == [{"id": world.city_id, "name": "Lima"}]
    types = await async_client.get("/api/v1/publication-types")
    assert [t["name"] for t in types.json()] == ["event", "news"]


@pytest.mark.asyncio
async def test_metrics_and_reconcile(async_client: AsyncClient, world):
    created = (
        await async_client.post("/api/v1/publications", json=_body(world), headers=_as(world.author_id))
    ).json()
    await async_client.post(f"/api/v1/publications/{created['id']}/vote", headers=_as(world.voter_ids[0]))

    metrics = (await async_client.get("/api/v1/metrics")).json()
    assert metrics["total_publications"] == 1
    assert metrics["total_votes"] == 1
    assert metrics["avg_votes_per_publication"] == 1.0
    assert metrics["orphaned_objects"] == 0
    assert metrics["cache_info"]["enabled"] is False

    denied = await async_client.post("/api/v1/metrics/reconcile-orphans", headers=_as(world.author_id))
    assert denied.status_code == 403
    done = await async_client.post("/api/v1/metrics/reconcile-orphans", headers=_as(world.admin_id, 2))
    assert done.json() == {"deleted": 0, "remaining": 0}


@pytest.mark.asyncio
async def test_diagnostic_headers(async_client: AsyncClient, world):
    resp = await async_client.get("/api/v1/publications")
    assert "x-response-time-ms" in resp.headers
    assert int(resp.headers["x-query-count"]) >= 2


@pytest.mark.asyncio
async def test_image_with_missing_object_is_404(async_client: AsyncClient, world, object_store):
    created = (
        await async_client.post("/api/v1/publications", json=_body(world), headers=_as(world.author_id))
    ).json()
    base = f"/api/v1/publications/{created['id']}/images"
    upload = await async_client.post(
        base,
        files={"file": ("photo.png", b"fake-png", "image/png")},
        headers=_as(world.author_id),
    )
    object_store.objects.pop(upload.json()["image_key"])

    resp = await async_client.get(f"{base}/1")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_request_id_is_generated_or_echoed(async_client: AsyncClient):
    generated = await async_client.get("/health")
    assert len(generated.headers["x-request-id"]) == 32

    other = await async_client.get("/health")
    assert other.headers["x-request-id"] != generated.headers["x-request-id"]

    echoed = await async_client.get("/health", headers={"X-Request-ID": "trace-abc-123"})
    assert echoed.headers["x-request-id"] == "trace-abc-123"
