import uuid
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import HTTPException
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.config import settings
from listings.database import check_connection
from listings.models.base import utcnow
from listings.models.property import DeletionStatus, Property
from listings.models.user import User, UserRole, UserStatus, canonical_role, default_agent_profile
from listings.services import cache
from listings.services.audit import log_admin_action
from listings.services.storage import check_bucket

logger = get_logger()

HEALTH_CACHE_KEY = "cached_health_status"
BLUE_TICK_ACTIONS = {"grant": "granted", "suspend": "suspended", "reinstate": "reinstated"}


async def get_health(verbose: bool = False):
    if not verbose:  # Only serve from cache if not verbose
        cached_health = await cache.cache_get_json(HEALTH_CACHE_KEY)
        if cached_health:
            logger.info("Returning cached health status")
            return cached_health

    health = {
        "database": await check_connection(),
        "redis": await cache.ping(),
        "storage": await check_bucket(),
    }
    failing = [name for name, check in health.items() if check.get("status") == "error"]
    health["status"] = "degraded" if failing else "ok"
    health["checked_at"] = datetime.now(timezone.utc).isoformat()
    if verbose:
        health["config"] = {
            "storage_endpoint_host": urlparse(settings.R2_ENDPOINT).hostname,
            "bucket": settings.R2_BUCKET,
            "key_prefix": settings.R2_KEY_PREFIX,
            "public_base_url": settings.R2_PUBLIC_BASE_URL,
            "redis_configured": bool(settings.REDIS_URL),
        }
    if failing:
        logger.warning("Health check degraded", failing=failing)
    await cache.cache_set_json(HEALTH_CACHE_KEY, health, settings.HEALTH_CACHE_SECONDS)
    return health


async def refresh_health_cache():
    await get_health(verbose=False)


# ---------- users ----------

async def get_users(
    session: AsyncSession,
    role: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
):
    stmt = select(User)
    count_stmt = select(func.count()).select_from(User)
    if role:
        stmt = stmt.where(User.role == role)
        count_stmt = count_stmt.where(User.role == role)
    if status:
        stmt = stmt.where(User.status == status)
        count_stmt = count_stmt.where(User.status == status)
    stmt = stmt.order_by(User.created_at.desc()).offset(max(skip, 0)).limit(max(1, min(limit, 500)))
    users = list((await session.execute(stmt)).scalars().all())
    total = await session.scalar(count_stmt)
    return users, total or 0


async def get_user_or_404(session: AsyncSession, user_id: str, for_update: bool = False) -> User:
    try:
        key = uuid.UUID(str(user_id))
    except ValueError:
        raise HTTPException(status_code=404, detail="User not found")
    user = await session.get(User, key, with_for_update=for_update)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def update_user_status(
    session: AsyncSession, admin: User, user_id: str, status: str, avatar: Optional[str] = None
) -> User:
    user = await get_user_or_404(session, user_id, for_update=True)
    if user.is_agent and status == UserStatus.ACTIVE.value:
        if not user.avatar and not avatar:
            raise HTTPException(
                status_code=400,
                detail={"error": "Avatar required to approve agent", "code": "AVATAR_REQUIRED"},
            )
        if avatar:
            user.avatar = avatar
    previous = user.status
    user.status = status
    await log_admin_action(session, admin, "user_status_changed", user.id, {"from": previous, "to": status})
    await session.commit()
    return user


async def update_user_role(session: AsyncSession, admin: User, user_id: str, role: str) -> User:
    user = await get_user_or_404(session, user_id, for_update=True)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot change your own role")
    new_role = canonical_role(role)
    if new_role is UserRole.AGENT:
        if not user.avatar:
            raise HTTPException(
                status_code=400,
                detail={
                    "error": "Profile picture is required to promote user to agent role",
                    "code": "AVATAR_REQUIRED_FOR_AGENT",
                },
            )
        user.status = UserStatus.ACTIVE.value
        if not user.agent_profile:
            user.agent_profile = default_agent_profile()
    previous = user.role
    user.role = new_role.value
    await log_admin_action(session, admin, "user_role_changed", user.id, {"from": previous, "to": new_role.value})
    await session.commit()
    return user


async def delete_user(session: AsyncSession, admin: User, user_id: str) -> dict:
    user = await get_user_or_404(session, user_id, for_update=True)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    now = utcnow()
    live = (Property.agent_id == user.id, Property.deletion_status != DeletionStatus.DELETED.value)
    earned_views = await session.scalar(select(func.coalesce(func.sum(Property.view_count), 0)).where(*live))
    # An agent's listings go with the account; the rows stay for reporting.
    result = await session.execute(
        update(Property)
        .where(*live)
        .values(
            deletion_status=DeletionStatus.DELETED.value,
            deletion_confirmed_at=now,
            deletion_confirmed_by=str(admin.id),
        )
        .execution_options(synchronize_session=False)
    )
    if user.agent_profile is not None:
        profile = dict(user.agent_profile)
        profile["deletedPropertiesViews"] = int(profile.get("deletedPropertiesViews", 0)) + int(earned_views or 0)
        user.agent_profile = profile
    user.status = UserStatus.INACTIVE.value
    # frees the phone number for a new registration
    user.phone = f"del-{user.id.hex[:16]}"
    await log_admin_action(session, admin, "user_deleted", user.id, {
        "fullName": user.full_name,
        "role": user.role,
        "propertiesDeleted": result.rowcount,
    })
    await session.commit()
    logger.info("Deleted user", user_id=str(user.id), properties_deleted=result.rowcount)
    return {"user_id": str(user.id), "properties_deleted": result.rowcount}


async def update_blue_tick(session: AsyncSession, admin: User, agent_id: str, action: str, reason: str) -> dict:
    agent = await get_user_or_404(session, agent_id, for_update=True)
    if not agent.is_agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    now = utcnow().isoformat()
    profile = {**default_agent_profile(), **(agent.agent_profile or {})}
    if action in ("grant", "reinstate"):
        profile.update(
            blueTickStatus="verified",
            verified=True,
            blueTickVerifiedAt=now,
            blueTickVerifiedBy=str(admin.id),
        )
        if action == "reinstate":
            for key in ("blueTickSuspendedAt", "blueTickSuspendedBy", "blueTickSuspensionReason"):
                profile.pop(key, None)
    elif action == "suspend":
        profile.update(
            blueTickStatus="suspended",
            verified=False,
            blueTickSuspendedAt=now,
            blueTickSuspendedBy=str(admin.id),
            blueTickSuspensionReason=reason,
        )
    else:
        raise HTTPException(status_code=400, detail="Invalid blue tick action")

    entry = {
        "action": BLUE_TICK_ACTIONS[action],
        "reason": reason or "No reason provided",
        "adminId": str(admin.id),
        "adminName": admin.full_name,
        "timestamp": now,
    }
    profile["verificationHistory"] = list(profile.get("verificationHistory") or []) + [entry]
    agent.agent_profile = profile
    await log_admin_action(session, admin, f"blue_tick_{action}", agent.id, {"reason": reason})
    await session.commit()
    return {
        "agent_id": str(agent.id),
        "agent_name": agent.full_name,
        "blue_tick_status": profile["blueTickStatus"],
        "action": entry["action"],
        "timestamp": now,
    }


# ---------- analytics ----------

def _active():
    return Property.deletion_status == DeletionStatus.ACTIVE.value


async def get_property_view_stats(session: AsyncSession) -> dict:
    row = (await session.execute(
        select(
            func.coalesce(func.sum(Property.view_count), 0),
            func.count(Property.id),
            func.count(Property.id).filter(Property.view_count == 0),
        ).where(_active())
    )).one()
    total_views, total_properties, no_views = (int(v or 0) for v in row)
    top = (await session.execute(
        select(Property).where(_active()).order_by(Property.view_count.desc(), Property.created_at.desc()).limit(10)
    )).scalars().all()
    return {
        "summary": {
            "total_views": total_views,
            "total_properties": total_properties,
            "avg_views": round(total_views / total_properties) if total_properties else 0,
            "properties_with_no_views": no_views,
        },
        "most_viewed_properties": [
            {
                "property_id": p.property_id,
                "title": p.title,
                "location": p.location,
                "district": p.district,
                "price": p.price,
                "view_count": p.view_count or 0,
                "property_type": p.property_type,
                "listing_type": p.listing_type,
            }
            for p in top
        ],
    }


async def get_district_stats(session: AsyncSession) -> list[dict]:
    rows = (await session.execute(
        select(Property.district, func.count(Property.id), func.coalesce(func.sum(Property.view_count), 0))
        .where(_active())
        .group_by(Property.district)
        .order_by(func.count(Property.id).desc())
    )).all()
    return [{"district": d, "count": int(c), "total_views": int(v)} for d, c, v in rows]


async def get_type_stats(session: AsyncSession) -> dict:
    by_type = (await session.execute(
        select(Property.property_type, func.count(Property.id)).where(_active()).group_by(Property.property_type)
    )).all()
    by_listing = (await session.execute(
        select(Property.listing_type, func.count(Property.id)).where(_active()).group_by(Property.listing_type)
    )).all()
    return {
        "by_property_type": {k: int(v) for k, v in by_type},
        "by_listing_type": {k: int(v) for k, v in by_listing},
    }
