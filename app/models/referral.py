"""Referral models: network introductions and verified deals"""

from sqlalchemy import Column, String, Text, Numeric, Boolean, DateTime, Enum, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship
import enum

from .base import Base, TimestampedModel, UUIDModel

def _enum_column_type(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )

class ReferralType(str, enum.Enum):
    NETWORK = "network"
    DEAL = "deal"

class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

class AuditStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class DealStatus(str, enum.Enum):
    VERIFICATION_PENDING = "verification_pending"
    VERIFIED = "verified"

class Referral(Base, TimestampedModel, UUIDModel):
    """Introduction from a referrer to another member"""

    __tablename__ = "referrals"

    # Parties (member ids live in the external member directory)
    referrer_id = Column(String(64), nullable=False, index=True)
    referred_to_id = Column(String(64), nullable=False, index=True)

    type = Column(_enum_column_type(ReferralType), nullable=False)
    status = Column(_enum_column_type(ReferralStatus), nullable=False, default=ReferralStatus.PENDING)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    # Network only
    audit_status = Column(_enum_column_type(AuditStatus), nullable=True)
    audited_by = Column(String(64), nullable=True)
    audited_at = Column(DateTime(timezone=True), nullable=True)
    sensitive_data_encrypted = Column(Text, nullable=True)

    # Deal only
    deal_status = Column(_enum_column_type(DealStatus), nullable=True)
    currency = Column(String(3), nullable=True)
    transaction_id = Column(String(200), nullable=True)
    verified_transaction_id = Column(String(200), nullable=True)
    verified_amount = Column(Numeric(14, 2), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_source = Column(String(20), nullable=True)

    referral_amount = Column(Numeric(14, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)

    # Relationships
    verification = relationship("DealVerification", back_populates="referral", uselist=False)
    audit_entries = relationship(
        "ReferralAuditLog",
        back_populates="referral",
        order_by="ReferralAuditLog.created_at",
        viewonly=True,
    )

    __table_args__ = (
        # One open referral per (referrer, target) pair
        Index(
            "uq_referrals_pending_pair",
            "referrer_id",
            "referred_to_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_referrals_type_created", "type", "created_at"),
    )

    @property
    def is_trust_verified(self) -> bool:
        """Audit outcome is informational; it never gates status or rewards"""
        return self.audit_status == AuditStatus.APPROVED

    def involves(self, member_id: str) -> bool:
        return member_id in (self.referrer_id, self.referred_to_id)

class DealVerification(Base, TimestampedModel, UUIDModel):
    """Financial verification of a deal referral"""

    __tablename__ = "deal_verifications"

    referral_id = Column(Uuid(as_uuid=True), ForeignKey("referrals.id"), nullable=False, unique=True)
    transaction_id = Column(String(200), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    # Monotonic: false -> true only
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_source = Column(String(20), nullable=True)

    # Snapshot taken when verified flips true
    bonus_rate = Column(Numeric(6, 4), nullable=True)
    bonus_amount = Column(Numeric(14, 4), nullable=True)

    referral = relationship("Referral", back_populates="verification")
