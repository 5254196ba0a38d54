"""Bonus and badge engine"""

from typing import Any, Optional
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, and_
import logging

from app.core.config import settings
from app.models import (
    Referral,
    ReferralStatus,
    BadgeAward,
    HonorBadge,
    FIRST_CONFIRMED_REFERRAL_BADGE,
)
from app.services.notification import ReferralNotifier, NotificationType

logger = logging.getLogger(__name__)

# Scale of DealVerification.bonus_rate and bonus_amount
BONUS_QUANTUM = Decimal("0.0001")

def check_bonus_rate(rate: Any) -> Decimal:
    """A fraction in [0, 1] with at most four decimal places"""
    rate = Decimal(str(rate))
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValueError("bonus rate must be a fraction between 0 and 1")
    if rate != rate.quantize(BONUS_QUANTUM):
        raise ValueError("bonus rate cannot have more than four decimal places")
    return rate

def compute_bonus(amount: Any, rate: Any) -> Decimal:
    """
    Bonus owed on a verified deal

    Rounded half-up to the stored scale, so the value returned on the first
    verification is the value read back on every later call.
    """
    return (Decimal(str(amount)) * Decimal(str(rate))).quantize(BONUS_QUANTUM, rounding=ROUND_HALF_UP)

class BonusBadgeEngine:
    """Computes deal bonuses and grants one-time badges"""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[ReferralNotifier] = None,
        bonus_rate: Optional[Decimal] = None
    ):
        self.db = db
        self.notifier = notifier
        self.bonus_rate = check_bonus_rate(bonus_rate) if bonus_rate is not None else None

    def current_bonus_rate(self) -> Decimal:
        """Rate to snapshot at verification time"""
        if self.bonus_rate is not None:
            return self.bonus_rate
        return check_bonus_rate(settings.REFERRAL_BONUS_RATE)

    compute_bonus = staticmethod(compute_bonus)

    async def count_confirmed_referrals(self, user_id: str) -> int:
        """Confirmed referrals sent by the user, as seen by this transaction"""
        count = await self.db.scalar(
            select(func.count())
            .select_from(Referral)
            .where(
                and_(
                    Referral.referrer_id == user_id,
                    Referral.status == ReferralStatus.CONFIRMED
                )
            )
        )
        return count or 0

    async def evaluate_badges(self, user_id: str, source_id: Optional[str] = None) -> Optional[str]:
        """
        Grant milestone badges after a confirmation

        Runs inside the confirming transaction. Returns the badge code when a
        new award row was inserted, None otherwise. The caller announces the
        award once its transaction commits.
        """
        confirmed = await self.count_confirmed_referrals(user_id)
        if confirmed != 1:
            return None

        granted = await self.grant_badge(
            user_id=user_id,
            badge_id=FIRST_CONFIRMED_REFERRAL_BADGE,
            source_type="referral",
            source_id=source_id,
            notes="First confirmed referral",
        )
        return FIRST_CONFIRMED_REFERRAL_BADGE if granted else None

    async def grant_badge(
        self,
        user_id: str,
        badge_id: str,
        source_type: Optional[str] = None,
        source_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> bool:
        """Insert-if-absent on (user_id, badge_id); True only for the inserting caller"""
        values = dict(
            user_id=str(user_id),
            badge_id=badge_id,
            source_type=source_type,
            source_id=str(source_id) if source_id is not None else None,
            notes=notes,
        )

        dialect = self.db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = (
                insert(BadgeAward)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
            )
            result = await self.db.execute(stmt)
            granted = result.rowcount == 1
        else:
            try:
                async with self.db.begin_nested():
                    self.db.add(BadgeAward(**values))
                granted = True
            except IntegrityError:
                granted = False

        if granted:
            logger.info(f"Badge {badge_id} granted to member {user_id}")
        return granted

    async def announce_badge(self, user_id: str, badge_id: str) -> None:
        """Fire-and-forget notification for a committed award"""
        if not self.notifier:
            return
        badge = await self.db.get(HonorBadge, badge_id)
        await self.notifier.notify(
            user_id,
            NotificationType.BADGE_AWARDED,
            {
                "badge_id": badge_id,
                "badge_name": badge.name if badge else badge_id,
                "icon": badge.icon if badge else None,
            }
        )

    async def get_badges(self, user_id: str) -> list:
        result = await self.db.execute(
            select(BadgeAward)
            .where(BadgeAward.user_id == str(user_id))
            .order_by(BadgeAward.awarded_at)
        )
        return list(result.scalars().all())
