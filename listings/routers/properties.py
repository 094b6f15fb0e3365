import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.database import get_session
from listings.dependencies.auth import get_current_agent, get_current_superadmin, get_current_user, get_optional_user
from listings.models.user import User
from listings.schemas.common import ApiResponse
from listings.schemas.property import (
    DeletionResult, ListingType, PropertyCreate, PropertyResponse, PropertyUpdate, ViewAnalytics, ViewResult,
)
from listings.services import properties as property_service
from listings.services import views as view_service

logger = get_logger()
router = APIRouter(prefix="/api/properties", tags=["properties"])

VIEWER_SESSION_HEADER = "X-Viewer-Session"


def _serialize(items) -> List[PropertyResponse]:
    return [PropertyResponse.model_validate(p) for p in items]


@router.get("", response_model=ApiResponse[List[PropertyResponse]])
async def list_properties(
    featured: Optional[bool] = None,
    agent_id: Optional[str] = Query(None, alias="agentId"),
    listing_type: Optional[ListingType] = Query(None, alias="listingType"),
    district: Optional[str] = None,
    property_type: Optional[str] = Query(None, alias="propertyType"),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    viewer: Optional[User] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
):
    items = await property_service.list_properties(
        session,
        viewer=viewer,
        featured=featured,
        agent_id=agent_id,
        listing_type=listing_type,
        district=district,
        property_type=property_type,
        min_price=min_price,
        max_price=max_price,
        search=search,
        sort=sort,
        limit=limit,
    )
    return ApiResponse(data=_serialize(items))


@router.get("/similar", response_model=ApiResponse[List[PropertyResponse]])
async def similar_properties(
    district: str,
    exclude_id: Optional[str] = Query(None, alias="excludeId"),
    limit: int = Query(6, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    items = await property_service.similar_properties(session, district, exclude_id=exclude_id, limit=limit)
    return ApiResponse(data=_serialize(items))


@router.get("/pending-deletion", response_model=ApiResponse[List[PropertyResponse]])
async def pending_deletion(
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    items = await property_service.pending_deletions(session)
    logger.info("Fetched pending deletions", admin_id=str(admin.id), count=len(items))
    return ApiResponse(data=_serialize(items))


@router.post("", status_code=201, response_model=ApiResponse[PropertyResponse])
async def create_property(
    data: PropertyCreate,
    user: User = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.create_property(session, user, data)
    return ApiResponse(data=PropertyResponse.model_validate(prop), message="Property created successfully")


@router.get("/{property_id}", response_model=ApiResponse[PropertyResponse])
async def get_property(
    property_id: str,
    viewer: Optional[User] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.get_visible_property(session, property_id, viewer)
    return ApiResponse(data=PropertyResponse.model_validate(prop))


@router.api_route("/{property_id}", methods=["PUT", "PATCH"], response_model=ApiResponse[PropertyResponse])
async def update_property(
    property_id: str,
    data: PropertyUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.update_property(session, user, property_id, data)
    return ApiResponse(data=PropertyResponse.model_validate(prop), message="Property updated successfully")


@router.delete("/{property_id}", response_model=ApiResponse[DeletionResult])
async def delete_property(
    property_id: str,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.direct_delete(session, admin, property_id)
    return ApiResponse(data=DeletionResult.model_validate(prop), message="Property deleted")


@router.post("/{property_id}/request-deletion", response_model=ApiResponse[DeletionResult])
async def request_deletion(
    property_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.request_deletion(session, user, property_id)
    return ApiResponse(data=DeletionResult.model_validate(prop), message="Deletion requested, awaiting approval")


@router.post("/{property_id}/confirm-deletion", response_model=ApiResponse[DeletionResult])
async def confirm_deletion(
    property_id: str,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.confirm_deletion(session, admin, property_id)
    return ApiResponse(data=DeletionResult.model_validate(prop), message="Property deletion confirmed")


@router.post("/{property_id}/reject-deletion", response_model=ApiResponse[DeletionResult])
async def reject_deletion(
    property_id: str,
    admin: User = Depends(get_current_superadmin),
    session: AsyncSession = Depends(get_session),
):
    prop = await property_service.reject_deletion(session, admin, property_id)
    return ApiResponse(data=DeletionResult.model_validate(prop), message="Property deletion rejected")


@router.post("/{property_id}/increment-view", response_model=ApiResponse[ViewResult])
async def increment_view(
    property_id: str,
    request: Request,
    response: Response,
    viewer_session: Optional[str] = Header(None, alias=VIEWER_SESSION_HEADER),
    viewer: Optional[User] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
):
    session_id = None
    if viewer is None:
        session_id = (viewer_session or "").strip()[:128] or secrets.token_hex(32)
        response.headers[VIEWER_SESSION_HEADER] = session_id
    result = await view_service.record_view(
        session,
        property_id,
        viewer=viewer,
        session_id=session_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return ApiResponse(data=ViewResult(**result))


@router.get("/{property_id}/view-analytics", response_model=ApiResponse[ViewAnalytics])
async def view_analytics(
    property_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    analytics = await view_service.view_analytics(session, property_id, user)
    return ApiResponse(data=ViewAnalytics(**analytics))
