"""HTTP-level tests: routes, status codes and camelCase payloads."""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from featur.main import create_app
from featur.utils.pairs import PairKey


@pytest_asyncio.fixture
async def api_client(container):
    app = create_app(container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def _create(client, uid, **fields):
    response = await client.post("/api/v1/profiles/", json={"uid": uid, **fields})
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    """Tests for health endpoints."""

    @pytest.mark.asyncio
    async def test_liveness(self, api_client):
        response = await api_client.get("/health")
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_deep(self, api_client):
        body = (await api_client.get("/health/deep")).json()
        assert body["status"] == "healthy"
        assert body["feed"] == "InMemoryChangeFeed"


class TestProfilesApi:
    """Tests for profile routes."""

    @pytest.mark.asyncio
    async def test_create_get_update(self, api_client):
        created = await _create(api_client, "alice", displayName="Alice", contentStyles=["Comedy"])
        assert created["displayName"] == "Alice"
        assert created["mediaURLs"] == []

        fetched = (await api_client.get("/api/v1/profiles/alice")).json()
        assert fetched["contentStyles"] == ["Comedy"]

        response = await api_client.put("/api/v1/profiles/alice", json={"bio": "Sketches"})
        assert response.status_code == 200
        assert response.json()["bio"] == "Sketches"

    @pytest.mark.asyncio
    async def test_duplicate_and_missing(self, api_client):
        await _create(api_client, "alice")
        assert (await api_client.post("/api/v1/profiles/", json={"uid": "alice"})).status_code == 409
        assert (await api_client.get("/api/v1/profiles/ghost")).status_code == 404
        assert (await api_client.delete("/api/v1/profiles/ghost")).status_code == 404

    @pytest.mark.asyncio
    async def test_photo_upload(self, api_client):
        await _create(api_client, "alice")
        response = await api_client.post(
            "/api/v1/profiles/alice/photos",
            files={"file": ("me.jpg", b"\xff\xd8\xff", "image/jpeg")},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["mediaURLs"] == [body["url"]]

    @pytest.mark.asyncio
    async def test_delete(self, api_client):
        await _create(api_client, "alice")
        assert (await api_client.delete("/api/v1/profiles/alice")).status_code == 204
        assert (await api_client.get("/api/v1/profiles/alice")).status_code == 404


class TestMatchFlowApi:
    """Tests for the swipe to match to message flow."""

    @pytest.mark.asyncio
    async def test_swipe_match_message(self, api_client):
        first = await api_client.post(
            "/api/v1/swipes/", json={"subjectId": "alice", "targetId": "bob", "action": "like"}
        )
        assert first.json()["matchCreated"] is False

        second = (
            await api_client.post(
                "/api/v1/swipes/", json={"subjectId": "bob", "targetId": "alice", "action": "superLike"}
            )
        ).json()
        assert second["matchCreated"] is True
        match_id = second["match"]["id"]

        matches = (await api_client.get("/api/v1/matches/user/alice")).json()
        assert [m["id"] for m in matches] == [match_id]

        conversation_id = PairKey.of("alice", "bob").conversation_id
        sent = await api_client.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"senderId": "alice", "content": "Collab this weekend?"},
        )
        assert sent.status_code == 201
        assert sent.json()["recipientId"] == "bob"

        messages = (await api_client.get(f"/api/v1/conversations/{conversation_id}/messages")).json()
        assert [m["content"] for m in messages] == ["Collab this weekend?"]

        read = await api_client.post(
            f"/api/v1/conversations/{conversation_id}/read", json={"userId": "bob"}
        )
        assert read.json()["stamped"] == 1

        unmatched = (await api_client.post(f"/api/v1/matches/{match_id}/unmatch")).json()
        assert unmatched["isActive"] is False

    @pytest.mark.asyncio
    async def test_skipped_swipe(self, api_client):
        body = (
            await api_client.post(
                "/api/v1/swipes/", json={"subjectId": "alice", "targetId": "alice", "action": "like"}
            )
        ).json()
        assert body["skipped"] is True
        assert body["reason"] == "self_swipe"

    @pytest.mark.asyncio
    async def test_errors(self, api_client):
        assert (await api_client.post("/api/v1/matches/missing/unmatch")).status_code == 404
        assert (await api_client.get("/api/v1/conversations/dm_missing/messages")).status_code == 404
        response = await api_client.post(
            "/api/v1/conversations/",
            json={"userId": "alice", "otherUserId": "alice"},
        )
        assert response.status_code == 422


class TestDiscoveryApi:
    """Tests for discovery routes."""

    @pytest.mark.asyncio
    async def test_strategy_is_required(self, api_client):
        await _create(api_client, "alice")
        assert (await api_client.get("/api/v1/discovery/alice")).status_code == 422

    @pytest.mark.asyncio
    async def test_feed_excludes_swiped(self, api_client):
        for uid in ("alice", "bob", "carol"):
            await _create(api_client, uid)
        await api_client.post(
            "/api/v1/swipes/", json={"subjectId": "alice", "targetId": "bob", "action": "pass"}
        )
        response = await api_client.get("/api/v1/discovery/alice", params={"strategy": "affinity"})
        assert [p["uid"] for p in response.json()] == ["carol"]


class TestFeaturedApi:
    """Tests for featured placement routes."""

    @pytest.mark.asyncio
    async def test_grant_and_status(self, api_client):
        granted = await api_client.post(
            "/api/v1/featured/alice", json={"productId": "com.featur.featured.24h"}
        )
        assert granted.status_code == 201
        status = (await api_client.get("/api/v1/featured/alice")).json()
        assert status == {"userId": "alice", "isFeatured": True}

        again = await api_client.post("/api/v1/featured/alice", json={})
        assert again.status_code == 409
        assert again.json()["detail"] == "Already featured"

    @pytest.mark.asyncio
    async def test_unknown_product(self, api_client):
        response = await api_client.post("/api/v1/featured/alice", json={"productId": "nope"})
        assert response.status_code == 422
