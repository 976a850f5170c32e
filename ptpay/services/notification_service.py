from dataclasses import dataclass
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.models.enums import Role
from ptpay.models.notification import Notification, NotificationType
from ptpay.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class NotificationDraft:
    user_id: uuid.UUID
    title: str
    message: str
    notification_type: NotificationType


class NotificationService:
    @staticmethod
    async def get_admin_recipient(db: AsyncSession) -> uuid.UUID | None:
        """First active master admin, else first active admin."""
        for role in (Role.MASTER_ADMIN, Role.ADMIN):
            stmt = (
                select(User.id)
                .where(User.role == role, User.is_active.is_(True))
                .order_by(User.email)
                .limit(1)
            )
            admin_id = (await db.execute(stmt)).scalar_one_or_none()
            if admin_id:
                return admin_id
        return None

    @staticmethod
    async def dispatch(db: AsyncSession, drafts: list[NotificationDraft]) -> list[Notification]:
        """Hand notification records to the delivery pipeline.

        Rows are added to the caller's session unread; push delivery and
        retries happen outside this service.
        """
        records = [
            Notification(
                user_id=draft.user_id,
                title=draft.title,
                message=draft.message,
                notification_type=draft.notification_type,
                is_read=False,
            )
            for draft in drafts
        ]
        db.add_all(records)
        return records

    @staticmethod
    async def dispatch_best_effort(db: AsyncSession, drafts: list[NotificationDraft], *, reason: str) -> list[Notification]:
        try:
            records = await NotificationService.dispatch(db, drafts)
            await db.commit()
            return records
        except Exception:
            logger.exception("Notification dispatch failed (%s)", reason)
            await db.rollback()
            return []
