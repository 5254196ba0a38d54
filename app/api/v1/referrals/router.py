"""Referral API routes"""

from fastapi import APIRouter, Depends, status
from typing import Any, Dict, List, Optional
import uuid

from app.schemas.referral import (
    NetworkReferralCreate,
    DealReferralCreate,
    RespondRequest,
    AuditRequest,
    ReferralResponse,
    ReferralListItem,
    AuditLogEntryResponse,
    VerificationResult,
    ReferralStats,
)
from app.services.referral import ReferralService
from app.utils.dependencies import CurrentMember, get_current_member, get_referral_service

router = APIRouter()

@router.post(
    "/network",
    response_model=ReferralResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create network referral"
)
async def create_network_referral(
    data: NetworkReferralCreate,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    """Introduce a member; contact details are stored encrypted"""
    return await service.create_network_referral(
        referrer_id=current_member.id,
        referred_to_id=data.referred_to_id,
        payload=data.payload,
        reason=data.reason,
        referral_amount=data.referral_amount
    )

@router.post(
    "/deal",
    response_model=ReferralResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create deal referral"
)
async def create_deal_referral(
    data: DealReferralCreate,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    """Record a deal; verified right away when a transaction id is supplied"""
    return await service.create_deal_referral(
        referrer_id=current_member.id,
        referred_to_id=data.referred_to_id,
        amount=data.amount,
        currency=data.currency,
        transaction_id=data.transaction_id,
        reason=data.reason
    )

@router.get("/sent", response_model=List[ReferralListItem])
async def list_sent_referrals(
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    return await service.list_sent(current_member.id)

@router.get("/received", response_model=List[ReferralListItem])
async def list_received_referrals(
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    return await service.list_received(current_member.id)

@router.get("/stats", response_model=ReferralStats)
async def get_referral_stats(
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    """Global totals for administrators, own totals otherwise"""
    return await service.get_referral_stats(current_member.id, is_admin=current_member.is_admin)

@router.get("/{referral_id}", response_model=ReferralResponse)
async def get_referral(
    referral_id: uuid.UUID,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    return await service.get_referral_for(referral_id, current_member.id)

@router.put("/{referral_id}/respond", response_model=ReferralResponse)
async def respond_to_referral(
    referral_id: uuid.UUID,
    data: RespondRequest,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    """Confirm or reject a referral addressed to the caller"""
    return await service.respond(referral_id, current_member.id, data.decision)

@router.put("/{referral_id}/audit", status_code=status.HTTP_204_NO_CONTENT)
async def audit_referral(
    referral_id: uuid.UUID,
    data: AuditRequest,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    """Record the trust audit of a network referral (coaches and admins)"""
    await service.audit_network_referral(referral_id, current_member.id, data.decision, data.notes)

@router.post("/{referral_id}/verify", response_model=VerificationResult)
async def verify_deal(
    referral_id: uuid.UUID,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    """Verify a deal against the finance system; failures are reported in the body"""
    return await service.verify_deal(referral_id, requester_id=current_member.id)

@router.get("/{referral_id}/sensitive", response_model=Optional[Dict[str, Any]])
async def get_sensitive_payload(
    referral_id: uuid.UUID,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    return await service.fetch_sensitive_payload(referral_id, current_member.id)

@router.get("/{referral_id}/audit-log", response_model=List[AuditLogEntryResponse])
async def get_audit_log(
    referral_id: uuid.UUID,
    current_member: CurrentMember = Depends(get_current_member),
    service: ReferralService = Depends(get_referral_service)
):
    return await service.get_audit_log(referral_id, current_member.id)
