from datetime import datetime, timezone
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from ptpay.models.audit import AuditLog

class AuditService:
    @staticmethod
    async def log_action(
        db: AsyncSession,
        user_id: uuid.UUID | None,
        action: str,
        target_id: str | None = None,
        details: str | None = None
    ) -> AuditLog:
        """
        Attach an audit event to the caller's transaction.

        The caller commits, so the entry is only kept when the audited
        change itself is.
        """
        audit_entry = AuditLog(
            user_id=user_id,
            action=action,
            target_id=target_id,
            details=details,
            timestamp=datetime.now(timezone.utc)
        )
        db.add(audit_entry)
        return audit_entry
