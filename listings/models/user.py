import enum
import uuid

from sqlalchemy import Column, UUID, String, JSON, DateTime, Integer

from listings.models.base import Base, utcnow


class UserRole(str, enum.Enum):
    SUPERADMIN = "superadmin"
    AGENT = "agent"
    USER = "user"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING_VERIFICATION = "pending_verification"


# Older accounts carry these role spellings.
LEGACY_ROLES = {
    "super_admin": UserRole.SUPERADMIN,
    "agency": UserRole.AGENT,
    "normal_user": UserRole.USER,
}


def canonical_role(role: str | None) -> UserRole:
    value = (role or "").strip().lower()
    if value in LEGACY_ROLES:
        return LEGACY_ROLES[value]
    try:
        return UserRole(value)
    except ValueError:
        return UserRole.USER


def default_agent_profile() -> dict:
    return {
        "verified": False,
        "blueTickStatus": "none",
        "verificationHistory": [],
        "totalViews": 0,
        "deletedPropertiesViews": 0,
    }


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=UserRole.USER.value, index=True)
    status = Column(String(32), nullable=False, default=UserStatus.ACTIVE.value)
    avatar = Column(String(1024))
    agent_profile = Column(JSON, default=default_agent_profile)
    login_attempts = Column(Integer, nullable=False, default=0)
    last_login = Column(DateTime)
    password_changed_at = Column(DateTime)
    password_reset_token_hash = Column(String(255))
    password_reset_expires = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_superadmin(self) -> bool:
        return canonical_role(self.role) is UserRole.SUPERADMIN

    @property
    def is_agent(self) -> bool:
        return canonical_role(self.role) is UserRole.AGENT

    def __repr__(self):
        return f"<User(id={self.id}, phone='{self.phone}', role='{self.role}')>"
