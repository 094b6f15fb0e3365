from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.models.admin_log import AdminLog
from listings.models.user import User

logger = get_logger()

async def log_admin_action(session: AsyncSession, admin: User, action: str, entity_id=None, details: dict | None = None):
    """Append an AdminLog row; committed together with the caller's change."""
    stmt = insert(AdminLog).values(
        admin_id=admin.id,
        action=action,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details or {},
    )
    await session.execute(stmt)
    logger.info("Admin action", action=action, admin_id=str(admin.id), entity_id=str(entity_id))
