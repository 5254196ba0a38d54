"""Models package initialization"""

from .base import Base, utcnow, as_utc
from .referral import (
    Referral,
    DealVerification,
    ReferralType,
    ReferralStatus,
    AuditStatus,
    DealStatus,
)
from .audit_log import ReferralAuditLog
from .badge import HonorBadge, BadgeAward, DEFAULT_BADGES, FIRST_CONFIRMED_REFERRAL_BADGE

# Export all models
__all__ = [
    "Base",
    "utcnow",
    "as_utc",
    "Referral",
    "DealVerification",
    "ReferralType",
    "ReferralStatus",
    "AuditStatus",
    "DealStatus",
    "ReferralAuditLog",
    "HonorBadge",
    "BadgeAward",
    "DEFAULT_BADGES",
    "FIRST_CONFIRMED_REFERRAL_BADGE",
]
