"""Honor badge models"""

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint, Index

from .base import Base, TimestampedModel, UUIDModel, utcnow

FIRST_CONFIRMED_REFERRAL_BADGE = "referral_confirmed_first"

# code, name, description, icon
DEFAULT_BADGES = [
    ("gbc_profile_complete", "GBC profile complete", "Completed the GBC deep-exchange profile", "🏅"),
    ("first_task_completed", "First task completed", "Completed the first onboarding task", "✅"),
    (FIRST_CONFIRMED_REFERRAL_BADGE, "First confirmed referral", "First referral confirmed by its recipient", "🤝"),
]

class HonorBadge(Base, TimestampedModel):
    """Badge catalogue"""

    __tablename__ = "honor_badges"

    code = Column(String(50), primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(50), nullable=True)

class BadgeAward(Base, UUIDModel):
    """Badge granted to a member, at most once per (user, badge)"""

    __tablename__ = "user_honor_badges"

    user_id = Column(String(64), nullable=False)
    badge_id = Column(String(50), ForeignKey("honor_badges.code"), nullable=False)
    source_type = Column(String(50), nullable=True)
    source_id = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    awarded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_honor_badges_user_badge"),
        Index("idx_user_honor_badges_user_id", "user_id"),
    )
