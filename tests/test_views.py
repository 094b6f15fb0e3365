from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import auth_headers, create_listing, load_property, load_user
from listings.database import SessionLocal
from listings.models import AdminLog
from listings.models.base import utcnow
from listings.services.views import quality_status, recalculate_quality_scores, recent_views


def test_quality_status_bands():
    assert quality_status(0) == "Poor"
    assert quality_status(29.9) == "Poor"
    assert quality_status(30) == "Fair"
    assert quality_status(55) == "Good"
    assert quality_status(75) == "Very Good"
    assert quality_status(90) == "Excellent"


def test_recent_views_only_counts_viewer_inside_window():
    now = utcnow()
    history = [
        {"viewerId": "a", "viewedAt": now.isoformat()},
        {"viewerId": "a", "viewedAt": (now - timedelta(hours=2)).isoformat()},
        {"viewerId": "b", "viewedAt": now.isoformat()},
        {"viewerId": "a", "viewedAt": None},
    ]
    assert recent_views(history, "a", now - timedelta(hours=1)) == 1


@pytest.mark.asyncio
async def test_anonymous_views(client, agent):
    created = await create_listing(client, agent)
    url = f"/api/properties/{created['propertyId']}/increment-view"

    first = await client.post(url)
    assert first.status_code == 200
    session_id = first.headers["X-Viewer-Session"]
    assert len(session_id) == 64
    data = first.json()["data"]
    assert data["isUniqueView"] is True
    assert data["userType"] == "anonymous"
    assert data["sessionId"] == session_id

    repeat = await client.post(url, headers={"X-Viewer-Session": session_id})
    assert repeat.json()["data"]["isUniqueView"] is False
    assert repeat.json()["data"]["viewCount"] == 2
    assert repeat.json()["data"]["uniqueViewCount"] == 1

    prop = await load_property(created["propertyId"])
    assert prop.anonymous_viewers == [session_id]
    assert len(prop.view_history) == 2
    assert prop.last_viewed_at is not None
    assert (await load_user(agent.id)).agent_profile["totalViews"] == 2


@pytest.mark.asyncio
async def test_authenticated_unique_view(client, agent, member):
    created = await create_listing(client, agent)
    url = f"/api/properties/{created['id']}/increment-view"

    first = await client.post(url, headers=auth_headers(member))
    second = await client.post(url, headers=auth_headers(member))
    assert first.json()["data"]["isUniqueView"] is True
    assert first.json()["data"]["userType"] == "authenticated"
    assert "X-Viewer-Session" not in first.headers
    assert second.json()["data"]["isUniqueView"] is False

    prop = await load_property(created["propertyId"])
    assert prop.unique_viewers == [str(member.id)]
    assert prop.view_count == 2
    assert prop.unique_view_count == 1


@pytest.mark.asyncio
async def test_owner_views_are_rate_limited(client, agent):
    created = await create_listing(client, agent)
    url = f"/api/properties/{created['propertyId']}/increment-view"

    first = await client.post(url, headers=auth_headers(agent))
    assert first.status_code == 200
    assert first.json()["data"]["isOwnerView"] is True

    second = await client.post(url, headers=auth_headers(agent))
    assert second.status_code == 429
    body = second.json()
    assert body["success"] is False
    assert body["data"]["viewBlocked"] is True
    assert body["data"]["viewCount"] == 1

    prop = await load_property(created["propertyId"])
    assert prop.view_count == 1
    assert prop.suspicious_activity["ownerViewCount"] == 1
    assert prop.suspicious_activity["lastOwnerView"] is not None


@pytest.mark.asyncio
async def test_excessive_views_are_blocked_and_flagged(client, agent, member):
    created = await create_listing(client, agent)
    url = f"/api/properties/{created['propertyId']}/increment-view"

    for _ in range(6):
        assert (await client.post(url, headers=auth_headers(member))).status_code == 200

    blocked = await client.post(url, headers=auth_headers(member))
    assert blocked.status_code == 429
    assert blocked.json()["error"] == "Excessive viewing detected"

    prop = await load_property(created["propertyId"])
    assert prop.view_count == 6
    assert prop.suspicious_activity["excessiveViews"] == 1
    assert prop.suspicious_activity["flagReason"] == "Excessive viewing detected"
    assert prop.suspicious_activity["flaggedAt"] is not None


@pytest.mark.asyncio
async def test_view_analytics(client, agent, other_agent, member):
    created = await create_listing(client, agent)
    pid = created["propertyId"]
    await client.post(f"/api/properties/{pid}/increment-view", headers=auth_headers(member))
    await client.post(f"/api/properties/{pid}/increment-view", headers=auth_headers(member))
    await client.post(f"/api/properties/{pid}/increment-view", headers={"X-Viewer-Session": "visitor"})
    await client.post(f"/api/properties/{pid}/increment-view", headers=auth_headers(agent))

    assert (await client.get(f"/api/properties/{pid}/view-analytics")).status_code == 401
    forbidden = await client.get(f"/api/properties/{pid}/view-analytics", headers=auth_headers(other_agent))
    assert forbidden.status_code == 403

    response = await client.get(f"/api/properties/{pid}/view-analytics", headers=auth_headers(agent))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalViews"] == 4
    assert data["uniqueViews"] == 3
    assert data["uniqueViewers"] == 2
    assert data["anonymousViewers"] == 1
    assert data["viewQualityScore"] == 75.0
    assert data["viewQualityStatus"] == "Very Good"
    assert data["engagementRate"] == 1.5
    assert data["ownerViews"] == 1
    assert data["suspiciousActivity"] == "Normal"
    assert data["daysSinceCreation"] == 1
    assert data["viewsPerDay"] == 3.0
    assert "Owner views detected - ensure you're not inflating your own views" in data["recommendations"]


@pytest.mark.asyncio
async def test_recalculate_and_reset(client, agent, member, superadmin):
    created = await create_listing(client, agent)
    pid = created["propertyId"]
    untouched = await create_listing(client, agent, title="Quiet")
    await client.post(f"/api/properties/{pid}/increment-view", headers=auth_headers(member))
    await client.post(f"/api/properties/{pid}/increment-view", headers=auth_headers(member))

    async with SessionLocal() as session:
        assert await recalculate_quality_scores(session) == 2
    assert (await load_property(pid)).view_quality_score == 50.0
    assert (await load_property(untouched["propertyId"])).view_quality_score == 100.0

    response = await client.post("/api/admin/analytics/reset", headers=auth_headers(superadmin))
    assert response.status_code == 200
    assert response.json()["data"] == {"propertiesReset": 2, "agentsReset": 1}

    prop = await load_property(pid)
    assert (prop.view_count, prop.unique_view_count, prop.unique_viewers, prop.view_history) == (0, 0, [], [])
    assert (await load_user(agent.id)).agent_profile["totalViews"] == 0
    async with SessionLocal() as session:
        actions = (await session.execute(select(AdminLog.action))).scalars().all()
    assert actions == ["analytics_reset"]


@pytest.mark.asyncio
async def test_reset_is_rolled_back_when_audit_fails(client, agent, member, superadmin, monkeypatch):
    created = await create_listing(client, agent)
    await client.post(f"/api/properties/{created['propertyId']}/increment-view", headers=auth_headers(member))

    async def broken_audit(*args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr("listings.routers.admin.log_admin_action", broken_audit)
    with pytest.raises(RuntimeError):
        await client.post("/api/admin/analytics/reset", headers=auth_headers(superadmin))

    assert (await load_property(created["propertyId"])).view_count == 1
    assert (await load_user(agent.id)).agent_profile["totalViews"] == 1


@pytest.mark.asyncio
async def test_view_history_entries(client, agent, member):
    created = await create_listing(client, agent)
    url = f"/api/properties/{created['propertyId']}/increment-view"
    browser = {"User-Agent": "Mozilla/5.0 (Android)"}

    await client.post(url, headers={**browser, "X-Viewer-Session": "visitor-1"})
    await client.post(url, headers={**browser, **auth_headers(member)})
    await client.post(url, headers={**browser, **auth_headers(agent)})

    history = (await load_property(created["propertyId"])).view_history
    assert [entry["viewerType"] for entry in history] == ["anonymous", "authenticated", "owner"]
    assert [entry["sessionId"] for entry in history] == ["visitor-1", None, None]
    assert history[1]["viewerId"] == str(member.id)
    assert all(entry["userAgent"] == "Mozilla/5.0 (Android)" for entry in history)
    assert all(entry["ipAddress"] == "127.0.0.1" for entry in history)
    assert all(entry["viewedAt"] for entry in history)


@pytest.mark.asyncio
async def test_view_history_keeps_latest_entries(client, agent, monkeypatch):
    from listings.config import settings

    monkeypatch.setattr(settings, "VIEW_HISTORY_LIMIT", 3)
    created = await create_listing(client, agent)
    url = f"/api/properties/{created['propertyId']}/increment-view"
    for n in range(5):
        assert (await client.post(url, headers={"X-Viewer-Session": f"visitor-{n}"})).status_code == 200

    prop = await load_property(created["propertyId"])
    assert prop.view_count == 5
    assert [entry["viewerId"] for entry in prop.view_history] == ["visitor-2", "visitor-3", "visitor-4"]
