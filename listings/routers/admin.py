from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from structlog import get_logger

from listings.database import get_session
from listings.dependencies.auth import get_current_superadmin
from listings.dependencies.rate_limit import admin_limiter
from listings.models.user import User
from listings.schemas.admin import (
    BlueTickUpdate, DistrictStat, FixImageUrlsRequest, ImageUrlDiagnostics, MaintenanceResult, PropertyViewStats,
    ReportResponse, ResetResult, TypeStats, UserListResponse, UserResponse, UserRoleUpdate, UserStatusUpdate,
)
from listings.schemas.common import ApiResponse
from listings.schemas.storage import BackupCreateRequest, BackupInfo
from listings.services import admin as admin_service
from listings.services import maintenance
from listings.services.audit import log_admin_action
from listings.services.backup import BackupError, BackupNotFound, ImageBackupManager, get_backup_manager
from listings.services.reporting import export_report, generate_property_report
from listings.services.views import reset_analytics

logger = get_logger()
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(admin_limiter)])


# ---------- users ----------

@router.get("/users", response_model=ApiResponse[UserListResponse])
async def list_users(
    role: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    users, total = await admin_service.get_users(session, role=role, status=status, skip=skip, limit=limit)
    logger.info("Fetched users", admin_id=str(admin.id), count=len(users))
    return ApiResponse(data=UserListResponse(users=[UserResponse.model_validate(u) for u in users], total_users=total))


@router.patch("/users/{user_id}/status", response_model=ApiResponse[UserResponse])
async def update_user_status(
    user_id: str,
    data: UserStatusUpdate,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    user = await admin_service.update_user_status(session, admin, user_id, data.status, data.avatar)
    logger.info("Updated user status", user_id=user_id, status=data.status, admin_id=str(admin.id))
    return ApiResponse(data=UserResponse.model_validate(user))


@router.patch("/users/{user_id}/role", response_model=ApiResponse[UserResponse])
async def update_user_role(
    user_id: str,
    data: UserRoleUpdate,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    user = await admin_service.update_user_role(session, admin, user_id, data.role)
    logger.info("Updated user role", user_id=user_id, role=data.role, admin_id=str(admin.id))
    return ApiResponse(data=UserResponse.model_validate(user))


@router.delete("/users/{user_id}", response_model=ApiResponse[dict])
async def delete_user(
    user_id: str,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    result = await admin_service.delete_user(session, admin, user_id)
    return ApiResponse(data=result, message="User deleted")


@router.post("/users/{user_id}/blue-tick", response_model=ApiResponse[dict])
async def blue_tick(
    user_id: str,
    data: BlueTickUpdate,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    result = await admin_service.update_blue_tick(session, admin, user_id, data.action, data.reason)
    return ApiResponse(data=result, message=f"Blue tick {result['action']} successfully")


# ---------- analytics ----------

@router.get("/analytics/property-views", response_model=ApiResponse[PropertyViewStats])
async def property_view_stats(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    return ApiResponse(data=PropertyViewStats(**await admin_service.get_property_view_stats(session)))


@router.get("/analytics/districts", response_model=ApiResponse[List[DistrictStat]])
async def district_stats(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    return ApiResponse(data=[DistrictStat(**row) for row in await admin_service.get_district_stats(session)])


@router.get("/analytics/property-types", response_model=ApiResponse[TypeStats])
async def type_stats(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    return ApiResponse(data=TypeStats(**await admin_service.get_type_stats(session)))


@router.post("/analytics/reset", response_model=ApiResponse[ResetResult])
async def reset_view_analytics(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    result = await reset_analytics(session)
    await log_admin_action(session, admin, "analytics_reset", None, result)
    await session.commit()
    return ApiResponse(data=ResetResult(**result), message="View analytics reset")


# ---------- reports ----------

@router.get("/reports/properties", response_model=ApiResponse[ReportResponse])
async def property_report(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    report = await generate_property_report(session)
    title = report.get("title", "Property Report")
    data = {k: v for k, v in report.items() if k != "title"}
    return ApiResponse(data=ReportResponse(title=title, data=data))


@router.get("/reports/export/{report_type}", response_model=ApiResponse[dict])
async def export_property_report(
    report_type: str,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    url = await export_report(session, report_type)
    logger.info("Exported report", report_type=report_type, admin_id=str(admin.id))
    return ApiResponse(data={"url": url, "type": report_type})


# ---------- diagnostics ----------

@router.get("/health")
async def check_health(verbose: bool = False, admin: User = Depends(get_current_superadmin)):
    """Database, Redis and bucket status. Use verbose=true to bypass the cache."""
    health = await admin_service.get_health(verbose=verbose)
    logger.info("Fetched health status", verbose=verbose)
    return ApiResponse(data=health)


@router.get("/diagnostics/image-urls", response_model=ApiResponse[ImageUrlDiagnostics])
async def image_url_diagnostics(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    return ApiResponse(data=ImageUrlDiagnostics(**await maintenance.diagnose_image_urls(session)))


@router.get("/diagnostics/storage", response_model=ApiResponse[dict])
async def storage_diagnostics(
    limit: int = Query(20, ge=1, le=1000),
    admin: User = Depends(get_current_superadmin),
):
    return ApiResponse(data=await maintenance.diagnose_storage(limit))


# ---------- maintenance ----------

@router.post("/maintenance/fix-image-urls", response_model=ApiResponse[MaintenanceResult])
async def fix_image_urls(
    data: FixImageUrlsRequest,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    result = await maintenance.fix_image_urls(session, admin, data.old_base, data.new_base, data.dry_run)
    return ApiResponse(data=MaintenanceResult(**result))


@router.post("/maintenance/dedupe-thumbnails", response_model=ApiResponse[MaintenanceResult])
async def dedupe_thumbnails(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    return ApiResponse(data=MaintenanceResult(**await maintenance.dedupe_thumbnails(session, admin)))


@router.post("/maintenance/assign-property-ids", response_model=ApiResponse[MaintenanceResult])
async def assign_property_ids(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    return ApiResponse(data=MaintenanceResult(**await maintenance.assign_property_ids(session, admin)))


# ---------- image backups ----------

def _backup_error(e: BackupError) -> HTTPException:
    if isinstance(e, BackupNotFound):
        return HTTPException(status_code=404, detail=str(e))
    logger.error("Image backup operation failed", error=str(e))
    return HTTPException(status_code=500, detail=str(e))


@router.get("/image-backups", response_model=ApiResponse[List[BackupInfo]])
async def list_backups(
    admin: User = Depends(get_current_superadmin),
    manager: ImageBackupManager = Depends(get_backup_manager),
):
    backups = await run_in_threadpool(manager.list_backups)
    return ApiResponse(data=[BackupInfo(**b) for b in backups])


@router.post("/image-backups", status_code=201, response_model=ApiResponse[BackupInfo])
async def create_backup(
    data: Optional[BackupCreateRequest] = None,
    admin: User = Depends(get_current_superadmin),
    manager: ImageBackupManager = Depends(get_backup_manager),
    session: AsyncSession = Depends(get_session),
):
    try:
        info = await run_in_threadpool(manager.create_backup, data.description if data else None)
    except BackupError as e:
        raise _backup_error(e)
    await log_admin_action(session, admin, "image_backup_created", info["id"], {"fileCount": info["fileCount"]})
    await session.commit()
    return ApiResponse(data=BackupInfo(**info), message="Backup created successfully")


@router.get("/image-backups/{backup_id}", response_model=ApiResponse[BackupInfo])
async def get_backup(
    backup_id: str,
    admin: User = Depends(get_current_superadmin),
    manager: ImageBackupManager = Depends(get_backup_manager),
):
    try:
        info = await run_in_threadpool(manager.get_backup, backup_id)
    except BackupError as e:
        raise _backup_error(e)
    return ApiResponse(data=BackupInfo(**info))


@router.post("/image-backups/{backup_id}/restore", response_model=ApiResponse[BackupInfo])
async def restore_backup(
    backup_id: str,
    admin: User = Depends(get_current_superadmin),
    manager: ImageBackupManager = Depends(get_backup_manager),
    session: AsyncSession = Depends(get_session),
):
    try:
        info = await run_in_threadpool(manager.restore_backup, backup_id)
    except BackupError as e:
        raise _backup_error(e)
    await log_admin_action(session, admin, "image_backup_restored", backup_id)
    await session.commit()
    return ApiResponse(data=BackupInfo(**info), message="Backup restored successfully")


@router.delete("/image-backups/{backup_id}", response_model=ApiResponse[dict])
async def delete_backup(
    backup_id: str,
    admin: User = Depends(get_current_superadmin),
    manager: ImageBackupManager = Depends(get_backup_manager),
    session: AsyncSession = Depends(get_session),
):
    try:
        await run_in_threadpool(manager.delete_backup, backup_id)
    except BackupError as e:
        raise _backup_error(e)
    await log_admin_action(session, admin, "image_backup_deleted", backup_id)
    await session.commit()
    return ApiResponse(data={"id": backup_id}, message="Backup deleted successfully")
