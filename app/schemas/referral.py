"""Referral request/response schemas"""

from pydantic import Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from decimal import Decimal
import uuid

from app.models import ReferralType, ReferralStatus, AuditStatus, DealStatus
from .base import BaseSchema

class NetworkReferralCreate(BaseSchema):
    """Trust-based introduction carrying encrypted contact details"""

    referred_to_id: str = Field(..., min_length=1, max_length=64)
    payload: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = Field(None, max_length=5000)
    referral_amount: Decimal = Field(Decimal("0"), ge=0)

class DealReferralCreate(BaseSchema):
    """Referral tied to a real transaction"""

    referred_to_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    transaction_id: Optional[str] = Field(None, max_length=200)
    reason: Optional[str] = Field(None, max_length=5000)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

class RespondRequest(BaseSchema):
    decision: Literal["confirmed", "rejected"]

class AuditRequest(BaseSchema):
    decision: Literal["approved", "rejected"]
    notes: Optional[str] = Field(None, max_length=2000)

class ReferralResponse(BaseSchema):
    """Referral as exposed to its parties; ciphertext never leaves the service"""

    id: uuid.UUID
    referrer_id: str
    referred_to_id: str
    type: ReferralType
    status: ReferralStatus
    audit_status: Optional[AuditStatus] = None
    deal_status: Optional[DealStatus] = None
    referral_amount: Decimal
    currency: Optional[str] = None
    description: Optional[str] = None
    verified_transaction_id: Optional[str] = None
    verified_amount: Optional[Decimal] = None
    verified_at: Optional[datetime] = None
    verification_source: Optional[str] = None
    is_trust_verified: bool = False
    created_at: datetime
    updated_at: datetime

class CounterpartSummary(BaseSchema):
    id: str
    name: Optional[str] = None
    company: Optional[str] = None

class ReferralListItem(ReferralResponse):
    counterpart: Optional[CounterpartSummary] = None

class AuditLogEntryResponse(BaseSchema):
    id: uuid.UUID
    referral_id: uuid.UUID
    actor_id: str
    action: str
    notes: Optional[str] = None
    created_at: datetime

class VerificationResult(BaseSchema):
    """Outcome of verifyDeal; failures are data, not exceptions"""

    verified: bool
    bonus: Optional[Decimal] = None
    source: Optional[str] = None
    reason: Optional[str] = None
    retryable: bool = False
    cached: bool = False

class DirectionStats(BaseSchema):
    total: int = 0
    confirmed: int = 0
    total_amount: Decimal = Decimal("0")

class ReferralStats(BaseSchema):
    total_referral_amount: Decimal = Decimal("0")
    total_referrals: Optional[int] = None
    confirmed_referrals: Optional[int] = None
    sent: Optional[DirectionStats] = None
    received: Optional[DirectionStats] = None
