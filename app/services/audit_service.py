"""Referral audit trail service"""

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import uuid

from app.models import ReferralAuditLog

class ReferralAuditTrail:
    """
    Append-only writer for referral actions

    Entries join the caller's unit of work; the caller commits.
    No update or delete operation exists.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def append(
        self,
        referral_id: uuid.UUID,
        actor_id: str,
        action: str,
        notes: Optional[str] = None
    ) -> ReferralAuditLog:
        """Stage a new audit entry"""
        entry = ReferralAuditLog(
            id=uuid.uuid4(),
            referral_id=referral_id,
            actor_id=str(actor_id),
            action=action,
            notes=notes
        )
        self.db.add(entry)
        return entry

    async def list_entries(
        self,
        referral_id: uuid.UUID,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ReferralAuditLog]:
        """Get audit entries for a referral, oldest first"""
        stmt = select(ReferralAuditLog).where(ReferralAuditLog.referral_id == referral_id)

        if action:
            stmt = stmt.where(ReferralAuditLog.action == action)

        stmt = stmt.order_by(ReferralAuditLog.created_at.asc(), ReferralAuditLog.id)
        stmt = stmt.offset(offset).limit(limit)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())
