from sqlalchemy import Column, UUID, String, JSON, DateTime
from listings.models.base import Base, utcnow
import uuid

class AdminLog(Base):
    __tablename__ = "admin_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    admin_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    action = Column(String(255), nullable=False, index=True)
    entity_id = Column(String(64))
    details = Column(JSON)
    created_at = Column(DateTime, default=utcnow)
