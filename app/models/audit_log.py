"""Referral audit trail model"""

from sqlalchemy import Column, String, Text, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base, TimestampedModel, UUIDModel

class ReferralAuditLog(Base, TimestampedModel, UUIDModel):
    """Append-only log of state-changing actions on a referral"""

    __tablename__ = "referral_audit_logs"

    referral_id = Column(Uuid(as_uuid=True), ForeignKey("referrals.id"), nullable=False)
    actor_id = Column(String(64), nullable=False)
    action = Column(String(50), nullable=False)  # submitted, approved, rejected, confirmed, verified
    notes = Column(Text, nullable=True)

    # Relationships
    referral = relationship("Referral", back_populates="audit_entries", viewonly=True)

    __table_args__ = (
        Index("idx_referral_audit_logs_referral", "referral_id", "created_at"),
    )
