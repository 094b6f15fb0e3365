from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, Field, computed_field, model_validator

from listings.schemas.common import CamelModel
from listings.services.image_urls import primary_image_url

District = Literal[
    "Abdiaziz",
    "Bondhere",
    "Daynile",
    "Hamar‑Jajab",
    "Hamar‑Weyne",
    "Hodan",
    "Howl-Wadag",
    "Heliwaa",
    "Kaxda",
    "Karan",
    "Shangani",
    "Shibis",
    "Waberi",
    "Wardhiigleey",
    "Wadajir",
    "Yaqshid",
    "Darusalam",
    "Dharkenley",
    "Garasbaley",
]
PropertyType = Literal[
    "villa", "bacweyne", "apartment", "single-family", "condo",
    "townhouse", "luxury", "penthouse", "mansion", "estate",
]
PropertyStatus = Literal["For Sale", "For Rent", "Sold", "Rented", "Pending", "Off Market"]
ListingType = Literal["sale", "rent"]
DocumentType = Literal["Siyaad Barre", "Fedaraal"]
DeletionStatusValue = Literal["active", "pending_deletion", "deleted"]
CLEARABLE_FIELDS = {"sqft", "document_type", "measurement"}


class AgentSnapshot(CamelModel):
    name: str
    phone: str
    image: str
    rating: float = Field(5.0, ge=0, le=5)


class PropertyCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    location: str = Field(..., min_length=1)
    district: District
    beds: int = Field(..., ge=0, validation_alias=AliasChoices("beds", "bedrooms"))
    baths: int = Field(..., ge=0, validation_alias=AliasChoices("baths", "bathrooms"))
    sqft: Optional[int] = Field(None, ge=0, validation_alias=AliasChoices("sqft", "area"))
    year_built: int = Field(2020, ge=1800, validation_alias=AliasChoices("yearBuilt", "year_built"))
    lot_size: int = Field(1000, ge=0, validation_alias=AliasChoices("lotSize", "lot_size"))
    property_type: PropertyType = Field("villa", validation_alias=AliasChoices("propertyType", "property_type"))
    listing_type: ListingType = Field("sale", validation_alias=AliasChoices("listingType", "listing_type"))
    status: Optional[PropertyStatus] = None
    document_type: Optional[DocumentType] = Field(None, validation_alias=AliasChoices("documentType", "document_type"))
    measurement: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    thumbnail_image: str = Field("", validation_alias=AliasChoices("thumbnailImage", "thumbnail_image"))
    images: List[str] = Field(default_factory=list, validation_alias=AliasChoices("images", "additionalImages"))


class PropertyUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    location: Optional[str] = Field(None, min_length=1)
    district: Optional[District] = None
    beds: Optional[int] = Field(None, ge=0)
    baths: Optional[int] = Field(None, ge=0)
    sqft: Optional[int] = Field(None, ge=0)
    year_built: Optional[int] = Field(None, ge=1800)
    lot_size: Optional[int] = Field(None, ge=0)
    property_type: Optional[PropertyType] = None
    listing_type: Optional[ListingType] = None
    status: Optional[PropertyStatus] = None
    document_type: Optional[DocumentType] = None
    measurement: Optional[str] = None
    features: Optional[List[str]] = None
    amenities: Optional[List[str]] = None
    thumbnail_image: Optional[str] = None
    images: Optional[List[str]] = None
    featured: Optional[bool] = None

    @model_validator(mode="after")
    def reject_cleared_required_fields(self):
        cleared = sorted(
            name for name in self.model_fields_set
            if name not in CLEARABLE_FIELDS and getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"Fields cannot be null: {', '.join(cleared)}")
        return self


class PropertyResponse(CamelModel):
    id: UUID
    property_id: Optional[int] = None
    title: str
    location: str
    district: str
    price: float
    beds: int
    baths: int
    sqft: Optional[int] = None
    year_built: int
    lot_size: int
    property_type: str
    status: str
    listing_type: str
    document_type: Optional[str] = None
    measurement: Optional[str] = None
    description: str
    features: List[str] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    thumbnail_image: str = ""
    images: List[str] = Field(default_factory=list)
    agent_id: UUID
    agent: AgentSnapshot
    featured: bool = False
    view_count: int = 0
    unique_view_count: int = 0
    last_viewed_at: Optional[datetime] = None
    view_quality_score: float = 100.0
    deletion_status: DeletionStatusValue = "active"
    deletion_requested_at: Optional[datetime] = None
    deletion_requested_by: Optional[str] = None
    deletion_confirmed_at: Optional[datetime] = None
    deletion_confirmed_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @computed_field(alias="primaryImage")
    @property
    def primary_image(self) -> str:
        return primary_image_url(self.thumbnail_image, self.images)


class ViewResult(CamelModel):
    property_id: Optional[int] = None
    view_count: int
    unique_view_count: int
    is_unique_view: bool
    is_owner_view: bool
    user_type: Literal["authenticated", "anonymous"]
    view_blocked: bool = False
    session_id: Optional[str] = None


class ViewAnalytics(CamelModel):
    property_id: Optional[int] = None
    title: str
    total_views: int
    unique_views: int
    unique_viewers: int
    anonymous_viewers: int
    view_quality_score: float
    view_quality_status: str
    engagement_rate: float
    last_viewed_at: Optional[datetime] = None
    created_at: datetime
    owner_views: int
    suspicious_activity: str
    recommendations: List[str] = Field(default_factory=list)
    views_per_day: float = 0
    days_since_creation: int = 0


class DeletionResult(CamelModel):
    id: UUID
    property_id: Optional[int] = None
    title: str
    deletion_status: DeletionStatusValue
    deletion_requested_at: Optional[datetime] = None
    deletion_requested_by: Optional[str] = None
    deletion_confirmed_at: Optional[datetime] = None
    deletion_confirmed_by: Optional[str] = None
