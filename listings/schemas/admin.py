from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import Field

from listings.schemas.common import CamelModel

class UserResponse(CamelModel):
    id: UUID
    full_name: str
    phone: str
    role: str
    status: str
    avatar: Optional[str] = None
    agent_profile: Optional[dict] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

class UserListResponse(CamelModel):
    users: List[UserResponse]
    total_users: int

class UserStatusUpdate(CamelModel):
    status: Literal["active", "inactive", "suspended", "pending_verification"]
    avatar: Optional[str] = None

class UserRoleUpdate(CamelModel):
    role: Literal["superadmin", "agent", "user"]

class BlueTickUpdate(CamelModel):
    action: Literal["grant", "suspend", "reinstate"]
    reason: str = Field(..., min_length=1)

class ViewStatsSummary(CamelModel):
    total_views: int
    total_properties: int
    avg_views: int
    properties_with_no_views: int

class MostViewedProperty(CamelModel):
    property_id: Optional[int] = None
    title: str
    location: str
    district: str
    price: float
    view_count: int
    property_type: str
    listing_type: str

class PropertyViewStats(CamelModel):
    summary: ViewStatsSummary
    most_viewed_properties: List[MostViewedProperty]

class DistrictStat(CamelModel):
    district: str
    count: int
    total_views: int

class TypeStats(CamelModel):
    by_property_type: Dict[str, int]
    by_listing_type: Dict[str, int]

class ReportResponse(CamelModel):
    title: str
    data: dict

class ResetResult(CamelModel):
    properties_reset: int
    agents_reset: int

class ImageUrlIssue(CamelModel):
    id: UUID
    property_id: Optional[int] = None
    field: str
    url: str
    problem: str

class ImageUrlDiagnostics(CamelModel):
    properties_checked: int
    counts: Dict[str, int]
    configured_bucket: str
    issues: List[ImageUrlIssue]

class FixImageUrlsRequest(CamelModel):
    old_base: str = Field(..., min_length=1)
    new_base: Optional[str] = None
    dry_run: bool = False

class MaintenanceResult(CamelModel):
    scanned: int
    updated: int
    details: List[dict] = Field(default_factory=list)
