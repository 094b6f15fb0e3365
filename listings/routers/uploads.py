from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.authz import is_allowed
from listings.config import settings
from listings.database import get_session
from listings.dependencies.auth import get_current_agent, get_current_superadmin, get_current_user
from listings.models.user import User
from listings.schemas.admin import UserResponse
from listings.schemas.common import ApiResponse
from listings.schemas.storage import UploadedFile, UploadResult
from listings.services import storage
from listings.services.admin import get_user_or_404
from listings.services.audit import log_admin_action

logger = get_logger()
router = APIRouter(prefix="/api/uploads", tags=["uploads"])


@router.post("/images", status_code=201, response_model=ApiResponse[UploadResult])
async def upload_images(
    files: List[UploadFile] = File(..., alias="files[]"),
    listing_id: Optional[str] = Form(None, alias="listingId"),
    user: User = Depends(get_current_agent),
):
    uploaded = []
    for upload in files:
        raw = await upload.read()
        if not raw:
            raise HTTPException(status_code=400, detail=f"Empty file: {upload.filename}")
        stored = await storage.upload_image(raw, upload.filename or "image", upload.content_type or "", listing_id)
        uploaded.append(UploadedFile(**stored))
    logger.info("Uploaded listing images", user_id=str(user.id), listing_id=listing_id, count=len(uploaded))
    return ApiResponse(data=UploadResult(files=uploaded))


@router.post("/avatar/{user_id}", response_model=ApiResponse[UserResponse])
async def upload_avatar(
    user_id: str,
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    decision = is_allowed(role=user.role, action="update", resource="profile", user_id=str(user.id), owner_id=user_id)
    if not decision.allowed:
        raise HTTPException(status_code=403, detail="You can only change your own avatar")
    target = await get_user_or_404(session, user_id, for_update=True)

    raw = await file.read()
    stored = await storage.upload_avatar(raw, file.filename or "avatar", str(target.id), file.content_type or "")
    target.avatar = stored["url"]
    await session.commit()
    logger.info("Updated avatar", user_id=str(target.id), by=str(user.id))
    return ApiResponse(data=UserResponse.model_validate(target), message="Avatar updated")


@router.delete("/images", response_model=ApiResponse[dict])
async def delete_image(
    key: str = Query(..., min_length=1),
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    prefix = settings.R2_KEY_PREFIX.strip("/")
    if prefix and not key.startswith(f"{prefix}/"):
        raise HTTPException(status_code=400, detail=f"Key must be under {prefix}/")
    await storage.delete_object(key)
    await log_admin_action(session, admin, "storage_object_deleted", None, {"key": key})
    await session.commit()
    return ApiResponse(data={"key": key}, message="Image deleted")
