"""
Common dependencies for FastAPI
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import AuthorizationError
from app.services.directory import MemberDirectory, ExchangeLedger, PRIVILEGED_ROLES
from app.services.finance_gateway import VerificationGatewayClient
from app.services.notification import ReferralNotifier
from app.services.referral import ReferralService
from app.services.analytics import PerformanceAggregator

@dataclass(frozen=True)
class CurrentMember:
    id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role in PRIVILEGED_ROLES

async def get_current_member(
    x_member_id: Optional[str] = Header(None),
    x_member_role: Optional[str] = Header(None)
) -> CurrentMember:
    """
    Identify the caller

    Authentication happens upstream; the gateway forwards the verified member
    id and role as headers.
    """
    if not x_member_id:
        raise AuthorizationError("Missing member identity", error_code="UNAUTHENTICATED")
    return CurrentMember(id=x_member_id, role=(x_member_role or "member").lower())

def get_member_directory(request: Request) -> MemberDirectory:
    return request.app.state.member_directory

def get_exchange_ledger(request: Request) -> Optional[ExchangeLedger]:
    return getattr(request.app.state, "exchange_ledger", None)

def get_notifier(request: Request) -> Optional[ReferralNotifier]:
    return getattr(request.app.state, "notifier", None)

def get_gateway(request: Request) -> Optional[VerificationGatewayClient]:
    return getattr(request.app.state, "verification_gateway", None)

def get_referral_service(
    db: AsyncSession = Depends(get_db),
    directory: MemberDirectory = Depends(get_member_directory),
    gateway: Optional[VerificationGatewayClient] = Depends(get_gateway),
    notifier: Optional[ReferralNotifier] = Depends(get_notifier)
) -> ReferralService:
    return ReferralService(db, directory, gateway=gateway, notifier=notifier)

def get_performance_aggregator(
    db: AsyncSession = Depends(get_db),
    directory: MemberDirectory = Depends(get_member_directory),
    ledger: Optional[ExchangeLedger] = Depends(get_exchange_ledger)
) -> PerformanceAggregator:
    return PerformanceAggregator(db, directory, ledger)
