"""Services package"""

from .vault import SensitiveDataVault
from .finance_gateway import VerificationGatewayClient
from .rewards import BonusBadgeEngine
from .audit_service import ReferralAuditTrail
from .referral import ReferralService
from .analytics import PerformanceAggregator

__all__ = [
    "SensitiveDataVault",
    "VerificationGatewayClient",
    "BonusBadgeEngine",
    "ReferralAuditTrail",
    "ReferralService",
    "PerformanceAggregator",
]
