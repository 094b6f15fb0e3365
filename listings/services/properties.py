import uuid
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.authz import is_allowed
from listings.config import settings
from listings.models.base import utcnow
from listings.models.counter import Counter
from listings.models.property import DeletionStatus, Property
from listings.models.user import User
from listings.schemas.property import PropertyCreate, PropertyUpdate
from listings.services.audit import log_admin_action

logger = get_logger()

PROPERTY_COUNTER = "propertyId"
TITLE_SUFFIXES = {"rent": " Kiro ah", "sale": " iib ah"}
DEFAULT_STATUS = {"rent": "For Rent", "sale": "For Sale"}
MAX_LIST_LIMIT = 100


async def get_next_property_id(session: AsyncSession) -> int:
    """Increment and return the property id sequence, seeding it from existing rows."""
    counter = await session.get(Counter, PROPERTY_COUNTER, with_for_update=True)
    if counter is None:
        highest = await session.scalar(select(func.max(Property.property_id)))
        counter = Counter(name=PROPERTY_COUNTER, sequence=highest or 0)
        session.add(counter)
        logger.info("Initialized property counter", start=(highest or 0) + 1)
    counter.sequence += 1
    await session.flush()
    return counter.sequence


def listing_title(title: str, listing_type: str) -> str:
    suffix = TITLE_SUFFIXES.get(listing_type, "")
    if suffix and title.endswith(suffix):
        return title
    return f"{title}{suffix}"


def escape_like(term: str) -> str:
    """Treat ``%`` and ``_`` in user search text as literal characters."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def without_thumbnail(thumbnail: str, images: list[str]) -> list[str]:
    """Drop blanks and copies of the thumbnail from the gallery, keeping order."""
    seen = {thumbnail} if thumbnail else set()
    result = []
    for image in images or []:
        if image and image not in seen:
            seen.add(image)
            result.append(image)
    return result


def agent_snapshot(user: User) -> dict:
    return {
        "name": user.full_name or "Agent",
        "phone": user.phone or "N/A",
        "image": user.avatar or settings.DEFAULT_AVATAR_URL,
        "rating": 5.0,
    }


def is_owner(prop: Property, user: Optional[User]) -> bool:
    return user is not None and str(prop.agent_id) == str(user.id)


def _identifier_clause(identifier: str):
    identifier = str(identifier).strip()
    if identifier.isdigit():
        return Property.property_id == int(identifier)
    try:
        return Property.id == uuid.UUID(identifier)
    except ValueError:
        return None


async def find_property(
    session: AsyncSession,
    identifier: str,
    include_deleted: bool = False,
    for_update: bool = False,
) -> Optional[Property]:
    """Look a property up by public numeric id or by UUID."""
    clause = _identifier_clause(identifier)
    if clause is None:
        return None
    stmt = select(Property).where(clause)
    if not include_deleted:
        stmt = stmt.where(Property.deletion_status != DeletionStatus.DELETED.value)
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalars().first()


async def get_property_or_404(session: AsyncSession, identifier: str, **kwargs) -> Property:
    prop = await find_property(session, identifier, **kwargs)
    if prop is None:
        raise HTTPException(status_code=404, detail=f"Property with ID {identifier} not found")
    return prop


async def list_properties(
    session: AsyncSession,
    viewer: Optional[User] = None,
    featured: Optional[bool] = None,
    agent_id: Optional[str] = None,
    listing_type: Optional[str] = None,
    district: Optional[str] = None,
    property_type: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    limit: int = 10,
) -> list[Property]:
    stmt = select(Property).where(Property.deletion_status != DeletionStatus.DELETED.value)
    owner_dashboard = False
    if agent_id:
        try:
            agent_uuid = uuid.UUID(str(agent_id))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid agentId")
        stmt = stmt.where(Property.agent_id == agent_uuid)
        owner_dashboard = viewer is not None and (viewer.is_superadmin or str(viewer.id) == str(agent_uuid))

    if featured is not None:
        stmt = stmt.where(Property.featured == featured)
    if listing_type:
        stmt = stmt.where(Property.listing_type == listing_type)
    if district:
        stmt = stmt.where(Property.district == district)
    if property_type:
        stmt = stmt.where(Property.property_type == property_type)
    if min_price is not None:
        stmt = stmt.where(Property.price >= min_price)
    if max_price is not None:
        stmt = stmt.where(Property.price <= max_price)
    if search:
        pattern = f"%{escape_like(search.strip())}%"
        stmt = stmt.where(or_(
            Property.title.ilike(pattern, escape="\\"),
            Property.location.ilike(pattern, escape="\\"),
            Property.description.ilike(pattern, escape="\\"),
        ))

    if sort == "latest":
        stmt = stmt.order_by(Property.created_at.desc())
    else:
        stmt = stmt.order_by(Property.unique_view_count.desc(), Property.created_at.desc())

    if not owner_dashboard:
        stmt = stmt.limit(max(1, min(limit, MAX_LIST_LIMIT)))

    properties = list((await session.execute(stmt)).scalars().all())
    logger.info(
        "Listed properties",
        found=len(properties),
        agent_id=agent_id,
        district=district,
        viewer_id=str(viewer.id) if viewer else "anonymous",
    )
    return properties


async def similar_properties(
    session: AsyncSession, district: str, exclude_id: Optional[str] = None, limit: int = 6
) -> list[Property]:
    stmt = select(Property).where(
        Property.district == district,
        Property.deletion_status != DeletionStatus.DELETED.value,
    )
    if exclude_id:
        clause = _identifier_clause(exclude_id)
        if clause is not None:
            stmt = stmt.where(~clause)
    stmt = stmt.order_by(
        Property.featured.desc(), Property.view_count.desc(), Property.created_at.desc()
    ).limit(max(1, min(limit, MAX_LIST_LIMIT)))
    return list((await session.execute(stmt)).scalars().all())


async def get_visible_property(session: AsyncSession, identifier: str, viewer: Optional[User]) -> Property:
    prop = await get_property_or_404(session, identifier, include_deleted=True)
    if prop.is_deleted and not (viewer and viewer.is_superadmin):
        raise HTTPException(status_code=404, detail=f"Property with ID {identifier} not found")
    return prop


async def create_property(session: AsyncSession, user: User, data: PropertyCreate) -> Property:
    decision = is_allowed(role=user.role, action="create", resource="property", user_id=str(user.id), owner_id=str(user.id))
    if not decision.allowed:
        logger.warning("Property creation denied", user_id=str(user.id), reason=decision.reason)
        raise HTTPException(status_code=403, detail="Forbidden: insufficient permissions")

    values = data.model_dump()
    values["title"] = listing_title(data.title, data.listing_type)
    values["status"] = data.status or DEFAULT_STATUS[data.listing_type]
    values["images"] = without_thumbnail(data.thumbnail_image, data.images)

    prop = Property(
        **values,
        property_id=await get_next_property_id(session),
        agent_id=user.id,
        agent=agent_snapshot(user),
        deletion_status=DeletionStatus.ACTIVE.value,
    )
    session.add(prop)
    await session.commit()
    logger.info("Created property", id=str(prop.id), property_id=prop.property_id, agent_id=str(user.id))
    return prop


async def update_property(session: AsyncSession, user: User, identifier: str, data: PropertyUpdate) -> Property:
    prop = await find_property(session, identifier)
    decision = None
    if prop is not None:
        decision = is_allowed(
            role=user.role, action="update", resource="property",
            user_id=str(user.id), owner_id=str(prop.agent_id),
        )
    if prop is None or not decision.allowed:
        # 404 either way so callers cannot discover other agents' listings
        raise HTTPException(status_code=404, detail="Property not found")

    changes = data.model_dump(exclude_unset=True)
    if "featured" in changes and not user.is_superadmin:
        raise HTTPException(status_code=403, detail="Only superadmin can feature properties")
    for field, value in changes.items():
        setattr(prop, field, value)
    if "images" in changes or "thumbnail_image" in changes:
        prop.images = without_thumbnail(prop.thumbnail_image, prop.images)
    await session.commit()
    logger.info("Updated property", id=str(prop.id), fields=sorted(changes))
    return prop


async def request_deletion(session: AsyncSession, user: User, identifier: str) -> Property:
    prop = await get_property_or_404(session, identifier, for_update=True)
    if not (is_owner(prop, user) or user.is_superadmin):
        logger.warning("Deletion request denied", property_id=prop.property_id, user_id=str(user.id))
        raise HTTPException(status_code=403, detail="Not authorized to delete this property")
    if prop.deletion_status == DeletionStatus.PENDING_DELETION.value:
        raise HTTPException(status_code=409, detail="Property deletion already requested")

    prop.deletion_status = DeletionStatus.PENDING_DELETION.value
    prop.deletion_requested_at = utcnow()
    prop.deletion_requested_by = str(user.id)
    await session.commit()
    logger.info("Property deletion requested", id=str(prop.id), property_id=prop.property_id, by=str(user.id))
    return prop


async def _mark_deleted(session: AsyncSession, prop: Property, admin: User):
    prop.deletion_status = DeletionStatus.DELETED.value
    prop.deletion_confirmed_at = utcnow()
    prop.deletion_confirmed_by = str(admin.id)
    # Views earned by the listing stay credited to the agent after it disappears.
    agent = await session.get(User, prop.agent_id, with_for_update=True)
    if agent is not None:
        profile = dict(agent.agent_profile or {})
        profile["deletedPropertiesViews"] = int(profile.get("deletedPropertiesViews", 0)) + (prop.view_count or 0)
        agent.agent_profile = profile


async def confirm_deletion(session: AsyncSession, admin: User, identifier: str) -> Property:
    prop = await get_property_or_404(session, identifier, include_deleted=True, for_update=True)
    if prop.deletion_status != DeletionStatus.PENDING_DELETION.value:
        raise HTTPException(
            status_code=400,
            detail={"error": "Property is not pending deletion", "currentStatus": prop.deletion_status},
        )
    await _mark_deleted(session, prop, admin)
    await log_admin_action(session, admin, "property_deletion_confirmed", prop.id, {
        "propertyId": prop.property_id,
        "title": prop.title,
        "requestedBy": prop.deletion_requested_by,
    })
    await session.commit()
    return prop


async def reject_deletion(session: AsyncSession, admin: User, identifier: str) -> Property:
    prop = await get_property_or_404(session, identifier, for_update=True)
    if prop.deletion_status != DeletionStatus.PENDING_DELETION.value:
        raise HTTPException(
            status_code=400,
            detail={"error": "Property is not pending deletion", "currentStatus": prop.deletion_status},
        )
    prop.deletion_status = DeletionStatus.ACTIVE.value
    prop.deletion_requested_at = None
    prop.deletion_requested_by = None
    await log_admin_action(session, admin, "property_deletion_rejected", prop.id, {"propertyId": prop.property_id})
    await session.commit()
    return prop


async def direct_delete(session: AsyncSession, admin: User, identifier: str) -> Property:
    prop = await get_property_or_404(session, identifier, for_update=True)
    await _mark_deleted(session, prop, admin)
    await log_admin_action(session, admin, "property_deleted", prop.id, {"propertyId": prop.property_id})
    await session.commit()
    return prop


async def pending_deletions(session: AsyncSession) -> list[Property]:
    stmt = (
        select(Property)
        .where(Property.deletion_status == DeletionStatus.PENDING_DELETION.value)
        .order_by(Property.deletion_requested_at.desc())
    )
    return list((await session.execute(stmt)).scalars().all())
