import enum
import uuid

from sqlalchemy import (
    Column, UUID, String, Text, JSON, DateTime, Integer, Float, Boolean, ForeignKey, Index,
)

from listings.models.base import Base, utcnow


class DeletionStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING_DELETION = "pending_deletion"
    DELETED = "deleted"


def default_suspicious_activity() -> dict:
    return {
        "excessiveViews": 0,
        "ownerViewCount": 0,
        "lastOwnerView": None,
        "flaggedAt": None,
        "flagReason": None,
    }


class Property(Base):
    """
    A listing. The embedded agent snapshot, image lists and view-tracking
    collections are JSON columns so the record keeps its document shape.
    """
    __tablename__ = "properties"
    __table_args__ = (
        Index("ix_properties_agent_deletion_created", "agent_id", "deletion_status", "created_at"),
        Index("ix_properties_district_status_price", "district", "status", "price"),
        Index("ix_properties_deletion_created", "deletion_status", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id = Column(Integer, unique=True, nullable=True)

    title = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False, index=True)
    district = Column(String(64), nullable=False, index=True)
    price = Column(Float, nullable=False, index=True)
    beds = Column(Integer, nullable=False, default=0)
    baths = Column(Integer, nullable=False, default=0)
    sqft = Column(Integer)
    year_built = Column(Integer, nullable=False, default=2020)
    lot_size = Column(Integer, nullable=False, default=1000)
    property_type = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True)
    listing_type = Column(String(8), nullable=False)
    document_type = Column(String(32))
    measurement = Column(String(64))
    description = Column(Text, nullable=False)
    features = Column(JSON, default=list)
    amenities = Column(JSON, default=list)
    featured = Column(Boolean, nullable=False, default=False, index=True)

    thumbnail_image = Column(String(1024), nullable=False, default="")
    images = Column(JSON, default=list)

    agent_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    agent = Column(JSON, nullable=False)

    deletion_status = Column(String(24), nullable=False, default=DeletionStatus.ACTIVE.value)
    deletion_requested_at = Column(DateTime)
    deletion_requested_by = Column(String(64))
    deletion_confirmed_at = Column(DateTime)
    deletion_confirmed_by = Column(String(64))

    view_count = Column(Integer, nullable=False, default=0)
    unique_view_count = Column(Integer, nullable=False, default=0)
    unique_viewers = Column(JSON, default=list)
    anonymous_viewers = Column(JSON, default=list)
    last_viewed_at = Column(DateTime, default=utcnow)
    view_history = Column(JSON, default=list)
    suspicious_activity = Column(JSON, default=default_suspicious_activity)
    view_quality_score = Column(Float, nullable=False, default=100.0)
    last_quality_calculation = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deletion_status == DeletionStatus.DELETED.value

    def __repr__(self):
        return f"<Property(id={self.id}, property_id={self.property_id}, title='{self.title}')>"
