from .base import Base
from .admin_log import AdminLog
from .counter import Counter
from .user import User, UserRole, UserStatus
from .property import Property, DeletionStatus

__all__ = [
    "Base",
    "AdminLog",
    "Counter",
    "User",
    "UserRole",
    "UserStatus",
    "Property",
    "DeletionStatus",
]
