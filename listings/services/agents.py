import uuid
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.config import settings
from listings.models.property import DeletionStatus, Property
from listings.models.user import User, UserRole, UserStatus

logger = get_logger()


def agent_summary(agent: User, property_count: int = 0) -> dict:
    profile = agent.agent_profile or {}
    return {
        "id": str(agent.id),
        "full_name": agent.full_name,
        "phone": agent.phone,
        "avatar": agent.avatar or settings.DEFAULT_AVATAR_URL,
        "status": agent.status,
        "verified": bool(profile.get("verified")),
        "blue_tick_status": profile.get("blueTickStatus", "none"),
        "property_count": property_count,
        "created_at": agent.created_at,
    }


async def list_agents(session: AsyncSession) -> list[dict]:
    counts = (
        select(Property.agent_id, func.count(Property.id).label("listings"))
        .where(Property.deletion_status == DeletionStatus.ACTIVE.value)
        .group_by(Property.agent_id)
        .subquery()
    )
    rows = (await session.execute(
        select(User, func.coalesce(counts.c.listings, 0))
        .outerjoin(counts, counts.c.agent_id == User.id)
        .where(User.role == UserRole.AGENT.value, User.status == UserStatus.ACTIVE.value)
        .order_by(func.coalesce(counts.c.listings, 0).desc(), User.full_name)
    )).all()
    return [agent_summary(agent, int(count)) for agent, count in rows]


async def _get_agent(session: AsyncSession, agent_id: str) -> User:
    try:
        key = uuid.UUID(str(agent_id))
    except ValueError:
        raise HTTPException(status_code=404, detail="Agent not found")
    agent = await session.get(User, key)
    if agent is None or not (agent.is_agent or agent.is_superadmin):
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


async def get_agent_detail(session: AsyncSession, agent_id: str) -> tuple[dict, list[Property]]:
    agent = await _get_agent(session, agent_id)
    properties = (await session.execute(
        select(Property)
        .where(Property.agent_id == agent.id, Property.deletion_status == DeletionStatus.ACTIVE.value)
        .order_by(Property.created_at.desc())
    )).scalars().all()
    return agent_summary(agent, len(properties)), list(properties)


async def get_total_views(session: AsyncSession, user: User, agent_id: Optional[str] = None) -> dict:
    target = user
    if agent_id and agent_id != str(user.id):
        if not user.is_superadmin:
            raise HTTPException(status_code=403, detail="You can only view your own totals")
        target = await _get_agent(session, agent_id)

    views, unique_views, listings = (await session.execute(
        select(
            func.coalesce(func.sum(Property.view_count), 0),
            func.coalesce(func.sum(Property.unique_view_count), 0),
            func.count(Property.id),
        ).where(Property.agent_id == target.id, Property.deletion_status != DeletionStatus.DELETED.value)
    )).one()

    profile = target.agent_profile or {}
    from_profile = int(profile.get("totalViews") or 0)
    return {
        "agent_id": str(target.id),
        "agent_name": target.full_name,
        "current_views": int(views),
        "current_unique_views": int(unique_views),
        "current_property_count": int(listings),
        "deleted_properties_views": int(profile.get("deletedPropertiesViews") or 0),
        # the profile counter is cumulative; fall back to live listings when it was never set
        "total_views": from_profile if from_profile > 0 else int(views),
    }
