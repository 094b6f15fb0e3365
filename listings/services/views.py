"""
View counting with anti-inflation rules, and the analytics derived from it.

Each accepted view bumps ``view_count`` and, for a viewer not seen before,
``unique_view_count``. Owners may count one view per cooldown window and any
viewer is blocked once they exceed the hourly threshold on one listing.
"""
import math
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.config import settings
from listings.models.base import utcnow
from listings.models.property import DeletionStatus, Property, default_suspicious_activity
from listings.models.user import User
from listings.services.properties import get_property_or_404, is_owner

logger = get_logger()


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def recent_views(history: list[dict], viewer_id: str, since: datetime) -> int:
    count = 0
    for entry in history or []:
        viewed_at = _parse_timestamp(entry.get("viewedAt"))
        if entry.get("viewerId") == viewer_id and viewed_at and viewed_at >= since:
            count += 1
    return count


def quality_score(total_views: int, unique_views: int) -> float:
    if not total_views:
        return 0.0
    return unique_views / total_views * 100


def quality_status(score: float) -> str:
    if score < 30:
        return "Poor"
    if score < 50:
        return "Fair"
    if score < 70:
        return "Good"
    if score < 90:
        return "Very Good"
    return "Excellent"


def _view_payload(prop: Property, **extra) -> dict:
    return {
        "propertyId": prop.property_id,
        "viewCount": prop.view_count or 0,
        "uniqueViewCount": prop.unique_view_count or 0,
        "isUniqueView": False,
        **extra,
    }


async def _block_view(session: AsyncSession, prop: Property, reason: str, is_owner_view: bool, flag: bool):
    if flag:
        activity = {**default_suspicious_activity(), **(prop.suspicious_activity or {})}
        activity["excessiveViews"] = int(activity.get("excessiveViews") or 0) + 1
        activity["flaggedAt"] = utcnow().isoformat()
        activity["flagReason"] = reason
        prop.suspicious_activity = activity
        await session.commit()
    logger.warning("Blocked property view", property_id=prop.property_id, reason=reason)
    raise HTTPException(
        status_code=429,
        detail={"error": reason, "data": _view_payload(prop, isOwnerView=is_owner_view, viewBlocked=True)},
    )


async def record_view(
    session: AsyncSession,
    identifier: str,
    viewer: Optional[User] = None,
    session_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> dict:
    prop = await get_property_or_404(session, identifier, for_update=True)
    now = utcnow()
    owner_view = is_owner(prop, viewer)
    viewer_id = str(viewer.id) if viewer else session_id
    if not viewer_id:
        raise HTTPException(status_code=400, detail="Viewer session is required")

    activity = {**default_suspicious_activity(), **(prop.suspicious_activity or {})}
    if owner_view:
        last_owner_view = _parse_timestamp(activity.get("lastOwnerView"))
        cooldown = timedelta(minutes=settings.OWNER_VIEW_COOLDOWN_MINUTES)
        if last_owner_view and now - last_owner_view < cooldown:
            await _block_view(session, prop, "Owner view rate limited", True, flag=False)

    history = list(prop.view_history or [])
    if recent_views(history, viewer_id, now - timedelta(hours=1)) > settings.EXCESSIVE_VIEW_THRESHOLD:
        await _block_view(session, prop, "Excessive viewing detected", owner_view, flag=True)

    unique = False
    if viewer is not None:
        viewers = list(prop.unique_viewers or [])
        if viewer_id not in viewers:
            unique = True
            prop.unique_viewers = viewers + [viewer_id]
    else:
        viewers = list(prop.anonymous_viewers or [])
        if viewer_id not in viewers:
            unique = True
            prop.anonymous_viewers = viewers + [viewer_id]

    prop.view_count = (prop.view_count or 0) + 1
    if unique:
        prop.unique_view_count = (prop.unique_view_count or 0) + 1
    prop.last_viewed_at = now

    history.append({
        "viewerId": viewer_id,
        "viewerType": "owner" if owner_view else ("authenticated" if viewer else "anonymous"),
        "viewedAt": now.isoformat(),
        "ipAddress": ip_address,
        "userAgent": user_agent,
        "sessionId": session_id,
    })
    prop.view_history = history[-settings.VIEW_HISTORY_LIMIT:]

    if owner_view:
        activity["ownerViewCount"] = int(activity.get("ownerViewCount") or 0) + 1
        activity["lastOwnerView"] = now.isoformat()
    prop.suspicious_activity = activity

    agent = await session.get(User, prop.agent_id, with_for_update=True)
    if agent is not None:
        profile = dict(agent.agent_profile or {})
        profile["totalViews"] = int(profile.get("totalViews") or 0) + 1
        agent.agent_profile = profile

    await session.commit()
    logger.info(
        "Recorded property view",
        property_id=prop.property_id,
        viewer_type="authenticated" if viewer else "anonymous",
        unique=unique,
        owner=owner_view,
        view_count=prop.view_count,
    )
    return {
        "property_id": prop.property_id,
        "view_count": prop.view_count,
        "unique_view_count": prop.unique_view_count,
        "is_unique_view": unique,
        "is_owner_view": owner_view,
        "user_type": "authenticated" if viewer else "anonymous",
        "view_blocked": False,
        "session_id": None if viewer else session_id,
    }


async def view_analytics(session: AsyncSession, identifier: str, user: User) -> dict:
    prop = await get_property_or_404(session, identifier, include_deleted=True)
    if not (is_owner(prop, user) or user.is_superadmin):
        raise HTTPException(status_code=403, detail="Forbidden: You can only view analytics for your own properties")

    total = prop.view_count or 0
    unique = prop.unique_view_count or 0
    unique_viewers = len(prop.unique_viewers or [])
    anonymous_viewers = len(prop.anonymous_viewers or [])
    score = quality_score(total, unique)
    engagement = unique / unique_viewers if unique_viewers else 0.0
    owner_views = int((prop.suspicious_activity or {}).get("ownerViewCount") or 0)

    recommendations = []
    if score < 50:
        recommendations.append("Consider improving property presentation to increase genuine interest")
    if unique < 10:
        recommendations.append("Property may need more exposure through marketing")
    if total > 0 and unique == 0:
        recommendations.append("All views are from the same user - consider broader marketing")
    if owner_views > 0:
        recommendations.append("Owner views detected - ensure you're not inflating your own views")
    if engagement < 1.5:
        recommendations.append("Low engagement rate - consider improving property description and photos")

    days = math.ceil((utcnow() - prop.created_at).total_seconds() / 86400)
    per_day = unique / days if days > 0 else 0.0

    return {
        "property_id": prop.property_id,
        "title": prop.title,
        "total_views": total,
        "unique_views": unique,
        "unique_viewers": unique_viewers,
        "anonymous_viewers": anonymous_viewers,
        "view_quality_score": round(score, 2),
        "view_quality_status": quality_status(score),
        "engagement_rate": round(engagement, 2),
        "last_viewed_at": prop.last_viewed_at,
        "created_at": prop.created_at,
        "owner_views": owner_views,
        "suspicious_activity": "Low view quality detected" if score < 50 else "Normal",
        "recommendations": recommendations,
        "views_per_day": round(per_day, 2),
        "days_since_creation": days,
    }


async def recalculate_quality_scores(session: AsyncSession) -> int:
    """Refresh the stored quality score of every active listing."""
    now = utcnow()
    result = await session.execute(
        select(Property).where(Property.deletion_status == DeletionStatus.ACTIVE.value)
    )
    updated = 0
    for prop in result.scalars():
        # Listings nobody has seen yet keep the neutral score.
        score = quality_score(prop.view_count, prop.unique_view_count) if prop.view_count else 100.0
        prop.view_quality_score = round(score, 2)
        prop.last_quality_calculation = now
        updated += 1
    await session.commit()
    logger.info("Recalculated view quality scores", updated=updated)
    return updated


async def reset_analytics(session: AsyncSession) -> dict:
    """Zero every view counter. The caller commits, together with its audit entry."""
    properties = await session.execute(
        update(Property)
        .where(Property.deletion_status != DeletionStatus.DELETED.value)
        .values(
            view_count=0,
            unique_view_count=0,
            unique_viewers=[],
            anonymous_viewers=[],
            view_history=[],
            suspicious_activity=default_suspicious_activity(),
            view_quality_score=100.0,
            last_quality_calculation=None,
        )
        .execution_options(synchronize_session=False)
    )
    agents = (await session.execute(select(User).where(User.role == "agent"))).scalars().all()
    for agent in agents:
        profile = dict(agent.agent_profile or {})
        profile["totalViews"] = 0
        profile["deletedPropertiesViews"] = 0
        agent.agent_profile = profile
    logger.warning("Reset view analytics", properties=properties.rowcount, agents=len(agents))
    return {"properties_reset": properties.rowcount, "agents_reset": len(agents)}
