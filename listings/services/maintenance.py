"""
One-off data repairs exposed to superadmins.

Each operation scans every listing, reports what it changed and leaves
untouched rows alone, so running one twice is harmless.
"""
from collections import Counter as Tally
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.config import settings
from listings.models.property import Property
from listings.models.user import User
from listings.services import storage
from listings.services.audit import log_admin_action
from listings.services.image_urls import bucket_from_url, classify_image_url, public_url_for_key
from listings.services.properties import get_next_property_id, without_thumbnail

logger = get_logger()


def _image_fields(prop: Property):
    yield "thumbnailImage", prop.thumbnail_image
    for index, url in enumerate(prop.images or []):
        yield f"images[{index}]", url


async def _all_properties(session: AsyncSession, for_update: bool = False) -> list[Property]:
    stmt = select(Property).order_by(Property.created_at)
    if for_update:
        stmt = stmt.with_for_update()
    return list((await session.execute(stmt)).scalars().all())


async def diagnose_image_urls(session: AsyncSession) -> dict:
    properties = await _all_properties(session)
    counts = Tally()
    issues = []
    for prop in properties:
        for field, url in _image_fields(prop):
            kind = classify_image_url(url)
            counts[kind] += 1
            problem = None
            if kind == "invalid":
                problem = "Unrecognised image reference"
            elif kind == "local":
                problem = "Local upload path, not served from object storage"
            elif kind == "r2" and settings.R2_BUCKET:
                bucket = bucket_from_url(url)
                if bucket and bucket != settings.R2_BUCKET:
                    problem = f"Bucket mismatch: {bucket}"
            elif kind == "empty" and field == "thumbnailImage" and not prop.images:
                problem = "Listing has no images"
            if problem:
                issues.append({
                    "id": prop.id,
                    "property_id": prop.property_id,
                    "field": field,
                    "url": url or "",
                    "problem": problem,
                })
    logger.info("Diagnosed image URLs", properties=len(properties), issues=len(issues))
    return {
        "properties_checked": len(properties),
        "counts": dict(counts),
        "configured_bucket": settings.R2_BUCKET,
        "issues": issues,
    }


async def diagnose_storage(limit: int = 20) -> dict:
    """Bucket reachability, a sample of stored keys and whether the first one is publicly served."""
    bucket = await storage.check_bucket()
    if bucket["status"] != "ok":
        return {"bucket": bucket, "keys": [], "sample": None}
    prefix = settings.R2_KEY_PREFIX.strip("/")
    keys = await storage.list_keys(f"{prefix}/" if prefix else "", limit=limit)
    sample = await storage.check_url(public_url_for_key(keys[0])) if keys else None
    if sample and not sample["ok"]:
        logger.warning("Stored object is not publicly reachable", url=sample["url"], status=sample["status_code"])
    return {"bucket": bucket, "keys": keys, "sample": sample}


def _rebase(url: str, old_base: str, new_base: str) -> str:
    if url and url.startswith(old_base):
        return new_base + url[len(old_base):]
    return url


async def fix_image_urls(
    session: AsyncSession, admin: User, old_base: str, new_base: Optional[str] = None, dry_run: bool = False
) -> dict:
    """Rewrite image URLs that start with ``old_base`` onto the current public base."""
    old_base = old_base.rstrip("/") + "/"
    new_base = (new_base or public_url_for_key("")).rstrip("/") + "/"
    properties = await _all_properties(session, for_update=not dry_run)
    details = []
    for prop in properties:
        thumbnail = _rebase(prop.thumbnail_image, old_base, new_base)
        images = [_rebase(url, old_base, new_base) for url in prop.images or []]
        if thumbnail == prop.thumbnail_image and images == list(prop.images or []):
            continue
        details.append({"id": str(prop.id), "propertyId": prop.property_id, "thumbnailImage": thumbnail})
        if not dry_run:
            prop.thumbnail_image = thumbnail
            prop.images = images

    if not dry_run and details:
        await log_admin_action(session, admin, "fix_image_urls", None, {
            "oldBase": old_base, "newBase": new_base, "updated": len(details),
        })
        await session.commit()
    logger.info("Fixed image URLs", scanned=len(properties), updated=len(details), dry_run=dry_run)
    return {"scanned": len(properties), "updated": len(details), "details": details}


async def dedupe_thumbnails(session: AsyncSession, admin: User) -> dict:
    properties = await _all_properties(session, for_update=True)
    details = []
    for prop in properties:
        current = list(prop.images or [])
        cleaned = without_thumbnail(prop.thumbnail_image, current)
        if cleaned != current:
            details.append({"id": str(prop.id), "propertyId": prop.property_id, "removed": len(current) - len(cleaned)})
            prop.images = cleaned
    if details:
        await log_admin_action(session, admin, "dedupe_thumbnails", None, {"updated": len(details)})
        await session.commit()
    logger.info("Removed duplicated thumbnails", scanned=len(properties), updated=len(details))
    return {"scanned": len(properties), "updated": len(details), "details": details}


async def assign_property_ids(session: AsyncSession, admin: User) -> dict:
    missing = (await session.execute(
        select(Property).where(Property.property_id.is_(None)).order_by(Property.created_at).with_for_update()
    )).scalars().all()
    details = []
    for prop in missing:
        prop.property_id = await get_next_property_id(session)
        details.append({"id": str(prop.id), "propertyId": prop.property_id})
    if details:
        await log_admin_action(session, admin, "assign_property_ids", None, {"assigned": len(details)})
        await session.commit()
    logger.info("Assigned property ids", assigned=len(details))
    return {"scanned": len(missing), "updated": len(details), "details": details}
