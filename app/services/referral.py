"""Referral workflow service"""

from typing import Any, Dict, List, Optional
from decimal import Decimal, InvalidOperation
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, update, func, case, and_
import logging
import uuid

from app.core.config import settings
from app.core.exceptions import (
    ValidationError,
    NotFoundError,
    StateConflictError,
    DuplicateReferralError,
    AuthorizationError,
    VerificationFailure,
)
from app.models import (
    Referral,
    DealVerification,
    ReferralAuditLog,
    ReferralType,
    ReferralStatus,
    AuditStatus,
    DealStatus,
    utcnow,
)
from app.schemas.referral import (
    ReferralListItem,
    CounterpartSummary,
    VerificationResult,
    ReferralStats,
    DirectionStats,
)
from app.services.audit_service import ReferralAuditTrail
from app.services.directory import MemberDirectory
from app.services.finance_gateway import VerificationGatewayClient
from app.services.notification import ReferralNotifier, CeleryReferralNotifier, NotificationType
from app.services.rewards import BonusBadgeEngine
from app.services.state_machine import ReferralStateMachine
from app.services.vault import SensitiveDataVault

logger = logging.getLogger(__name__)

# Audit trail actions
ACTION_SUBMITTED = "submitted"
ACTION_APPROVED = "approved"
ACTION_REJECTED = "rejected"
ACTION_RESPONSE_CONFIRMED = "response_confirmed"
ACTION_RESPONSE_REJECTED = "response_rejected"
ACTION_VERIFIED = "verified"

AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal(10) ** 12

class ReferralService:
    """Creates referrals and drives them through their state machine"""

    def __init__(
        self,
        db: AsyncSession,
        directory: MemberDirectory,
        vault: Optional[SensitiveDataVault] = None,
        gateway: Optional[VerificationGatewayClient] = None,
        notifier: Optional[ReferralNotifier] = None,
        bonus_rate: Optional[Decimal] = None,
    ):
        self.db = db
        self.directory = directory
        self._vault = vault
        self.gateway = gateway or VerificationGatewayClient()
        self.notifier = notifier or CeleryReferralNotifier()
        self.audit_trail = ReferralAuditTrail(db)
        self.rewards = BonusBadgeEngine(db, self.notifier, bonus_rate)
        self.state_machine = ReferralStateMachine()

    @property
    def vault(self) -> SensitiveDataVault:
        if self._vault is None:
            self._vault = SensitiveDataVault()
        return self._vault

    # Creation

    async def create_network_referral(
        self,
        referrer_id: str,
        referred_to_id: str,
        payload: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        referral_amount: Any = 0
    ) -> Referral:
        """Create a trust-based introduction; payload is stored encrypted"""
        target = await self._check_new_referral(referrer_id, referred_to_id)
        amount = self._parse_amount(referral_amount, allow_zero=True)

        referral = Referral(
            id=uuid.uuid4(),
            referrer_id=str(referrer_id),
            referred_to_id=str(referred_to_id),
            type=ReferralType.NETWORK,
            status=ReferralStatus.PENDING,
            audit_status=AuditStatus.PENDING,
            referral_amount=amount,
            description=reason,
            sensitive_data_encrypted=self.vault.encrypt(payload) if payload else None,
        )
        await self._insert_referral(referral, referrer_id, reason)

        logger.info(f"Network referral {referral.id} created by {referrer_id} for {referred_to_id}")
        await self._notify_new_referral(referral, target)
        return referral

    async def create_deal_referral(
        self,
        referrer_id: str,
        referred_to_id: str,
        amount: Any,
        currency: Optional[str] = None,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Referral:
        """Create a deal referral; verifies immediately when a transaction id is given"""
        deal_amount = self._parse_amount(amount, allow_zero=False)
        target = await self._check_new_referral(referrer_id, referred_to_id)

        referral = Referral(
            id=uuid.uuid4(),
            referrer_id=str(referrer_id),
            referred_to_id=str(referred_to_id),
            type=ReferralType.DEAL,
            status=ReferralStatus.PENDING,
            deal_status=DealStatus.VERIFICATION_PENDING,
            referral_amount=deal_amount,
            currency=(currency or settings.DEFAULT_CURRENCY).upper(),
            transaction_id=transaction_id or None,
            description=reason,
        )
        await self._insert_referral(referral, referrer_id, reason)

        logger.info(f"Deal referral {referral.id} created by {referrer_id} for {referred_to_id}")
        await self._notify_new_referral(referral, target)

        if referral.transaction_id:
            await self.verify_deal(referral.id)
            await self.db.refresh(referral)

        return referral

    # Transitions

    async def respond(self, referral_id: uuid.UUID, responder_id: str, decision: str) -> Referral:
        """Recipient confirms or rejects a pending referral"""
        new_status = self._parse_enum(ReferralStatus, decision, "decision")
        if new_status == ReferralStatus.PENDING:
            raise ValidationError("Decision must be 'confirmed' or 'rejected'")

        referral = await self.get_referral(referral_id)
        if referral.referred_to_id != str(responder_id):
            raise StateConflictError("Only the referred member can respond to this referral")
        if not self.state_machine.can_transition(referral.status, new_status):
            raise StateConflictError(f"Referral already {referral.status.value}")

        granted_badge = None
        now = utcnow()
        try:
            # Compare-and-swap: exactly one concurrent responder wins
            result = await self.db.execute(
                update(Referral)
                .where(
                    and_(
                        Referral.id == referral.id,
                        Referral.status == ReferralStatus.PENDING,
                        Referral.referred_to_id == str(responder_id)
                    )
                )
                .values(status=new_status, responded_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StateConflictError("Referral is no longer pending")

            action = ACTION_RESPONSE_CONFIRMED if new_status == ReferralStatus.CONFIRMED else ACTION_RESPONSE_REJECTED
            self.audit_trail.append(referral.id, responder_id, action)

            if new_status == ReferralStatus.CONFIRMED:
                granted_badge = await self.rewards.evaluate_badges(referral.referrer_id, source_id=str(referral.id))

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(referral)
        logger.info(f"Referral {referral.id} {new_status.value} by {responder_id}")

        await self.notifier.notify(
            referral.referrer_id,
            NotificationType.REFERRAL_CONFIRMED if new_status == ReferralStatus.CONFIRMED else NotificationType.REFERRAL_REJECTED,
            {
                "referral_id": str(referral.id),
                "referred_to_id": referral.referred_to_id,
                "referral_amount": str(referral.referral_amount),
                "description": referral.description,
            }
        )
        if granted_badge:
            await self.rewards.announce_badge(referral.referrer_id, granted_badge)

        if (
            new_status == ReferralStatus.CONFIRMED
            and referral.type == ReferralType.DEAL
            and referral.transaction_id
            and referral.deal_status == DealStatus.VERIFICATION_PENDING
        ):
            await self.verify_deal(referral.id)
            await self.db.refresh(referral)

        return referral

    async def audit_network_referral(
        self,
        referral_id: uuid.UUID,
        reviewer_id: str,
        decision: str,
        notes: Optional[str] = None
    ) -> None:
        """Privileged reviewer records the trust audit of a network referral"""
        new_status = self._parse_enum(AuditStatus, decision, "decision")
        if new_status == AuditStatus.PENDING:
            raise ValidationError("Decision must be 'approved' or 'rejected'")

        if not await self.directory.is_privileged(str(reviewer_id)):
            raise AuthorizationError("Only coaches or administrators can audit referrals")

        referral = await self.get_referral(referral_id)
        if referral.type != ReferralType.NETWORK:
            raise ValidationError("Only network referrals can be audited")
        if not self.state_machine.can_transition(referral.audit_status, new_status):
            raise StateConflictError(f"Referral audit already {referral.audit_status.value}")

        now = utcnow()
        try:
            result = await self.db.execute(
                update(Referral)
                .where(
                    and_(
                        Referral.id == referral.id,
                        Referral.audit_status == AuditStatus.PENDING
                    )
                )
                .values(audit_status=new_status, audited_by=str(reviewer_id), audited_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StateConflictError("Referral audit is no longer pending")

            action = ACTION_APPROVED if new_status == AuditStatus.APPROVED else ACTION_REJECTED
            self.audit_trail.append(referral.id, reviewer_id, action, notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(referral)
        logger.info(f"Referral {referral.id} audit {new_status.value} by {reviewer_id}")

    async def verify_deal(self, referral_id: uuid.UUID, requester_id: Optional[str] = None) -> VerificationResult:
        """
        Verify a deal against the finance gateway

        Idempotent: an already verified deal returns its stored result without
        contacting the gateway or writing anything. Gateway failures are
        returned as data and leave the deal in verification_pending.
        """
        referral = await self.get_referral(referral_id)
        deal_id = referral.id
        if referral.type != ReferralType.DEAL:
            raise ValidationError("Only deal referrals can be verified")
        if requester_id is not None and str(requester_id) != referral.referrer_id:
            if not await self.directory.is_privileged(str(requester_id)):
                raise AuthorizationError("Only the referrer or a reviewer can request verification")

        if referral.deal_status == DealStatus.VERIFIED:
            return await self._cached_verification(deal_id)

        if not referral.transaction_id:
            return VerificationResult(verified=False, reason="no transaction id recorded for this deal")

        # Release the read transaction before the network call
        await self.db.commit()

        try:
            outcome = await self.gateway.verify_transaction(
                referral.transaction_id,
                referral.referral_amount,
                referral.currency
            )
        except VerificationFailure as e:
            logger.warning(f"Verification of deal {referral.id} failed: {e.detail}")
            return VerificationResult(verified=False, reason=e.detail, retryable=e.retryable)

        if not outcome.verified:
            logger.info(f"Deal {referral.id} not verified ({outcome.source}): {outcome.reason}")
            return VerificationResult(verified=False, source=outcome.source, reason=outcome.reason)

        rate = self.rewards.current_bonus_rate()
        bonus = self.rewards.compute_bonus(referral.referral_amount, rate)
        now = utcnow()

        # Flip, bonus snapshot and audit entry commit together or not at all
        try:
            result = await self.db.execute(
                update(Referral)
                .where(
                    and_(
                        Referral.id == referral.id,
                        Referral.deal_status == DealStatus.VERIFICATION_PENDING
                    )
                )
                .values(
                    deal_status=DealStatus.VERIFIED,
                    verified_transaction_id=referral.transaction_id,
                    verified_amount=referral.referral_amount,
                    verified_at=now,
                    verification_source=outcome.source,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                return await self._cached_verification(deal_id)

            self.db.add(DealVerification(
                id=uuid.uuid4(),
                referral_id=referral.id,
                transaction_id=referral.transaction_id,
                amount=referral.referral_amount,
                currency=referral.currency,
                verified=True,
                verified_at=now,
                verification_source=outcome.source,
                bonus_rate=rate,
                bonus_amount=bonus,
            ))
            self.audit_trail.append(
                referral.id,
                requester_id or "system",
                ACTION_VERIFIED,
                f"source={outcome.source}; bonus={bonus}"
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return await self._cached_verification(deal_id)
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(referral)
        logger.info(f"Deal {referral.id} verified via {outcome.source}; bonus {bonus}")

        await self.notifier.notify(
            referral.referrer_id,
            NotificationType.DEAL_VERIFIED,
            {
                "referral_id": str(referral.id),
                "transaction_id": referral.transaction_id,
                "bonus_amount": str(bonus),
            }
        )
        return VerificationResult(verified=True, bonus=bonus, source=outcome.source)

    # Reads

    async def get_referral(self, referral_id: uuid.UUID) -> Referral:
        referral_id = self._parse_uuid(referral_id)
        referral = await self.db.get(Referral, referral_id, populate_existing=True)
        if not referral:
            raise NotFoundError("Referral not found")
        return referral

    async def get_referral_for(self, referral_id: uuid.UUID, requester_id: str) -> Referral:
        referral = await self.get_referral(referral_id)
        await self._ensure_party_or_privileged(referral, requester_id)
        return referral

    async def fetch_sensitive_payload(self, referral_id: uuid.UUID, requester_id: str) -> Optional[Dict[str, Any]]:
        """Decrypt the contact details for a party to the referral or a reviewer"""
        referral = await self.get_referral(referral_id)
        await self._ensure_party_or_privileged(referral, requester_id)

        if not referral.sensitive_data_encrypted:
            return None

        logger.info(f"Sensitive payload of referral {referral.id} read by {requester_id}")
        return self.vault.decrypt_or_raise(referral.sensitive_data_encrypted)

    async def get_audit_log(self, referral_id: uuid.UUID, requester_id: str) -> List[ReferralAuditLog]:
        referral = await self.get_referral(referral_id)
        await self._ensure_party_or_privileged(referral, requester_id)
        return await self.audit_trail.list_entries(referral.id)

    async def list_received(self, member_id: str) -> List[ReferralListItem]:
        """Referrals addressed to the member, newest first"""
        result = await self.db.execute(
            select(Referral)
            .where(Referral.referred_to_id == str(member_id))
            .order_by(Referral.created_at.desc())
        )
        return await self._decorate(result.scalars().all(), lambda r: r.referrer_id)

    async def list_sent(self, member_id: str) -> List[ReferralListItem]:
        """Referrals sent by the member, newest first"""
        result = await self.db.execute(
            select(Referral)
            .where(Referral.referrer_id == str(member_id))
            .order_by(Referral.created_at.desc())
        )
        return await self._decorate(result.scalars().all(), lambda r: r.referred_to_id)

    async def get_referral_stats(self, member_id: str, is_admin: bool = False) -> ReferralStats:
        """Global totals for administrators, per-direction totals for members"""
        confirmed = Referral.status == ReferralStatus.CONFIRMED
        global_row = (await self.db.execute(
            select(
                func.coalesce(func.sum(Referral.referral_amount), 0).label("total_amount"),
                func.count(Referral.id).label("total"),
                func.coalesce(func.sum(case((confirmed, 1), else_=0)), 0).label("confirmed"),
            )
        )).one()

        if is_admin:
            return ReferralStats(
                total_referral_amount=Decimal(str(global_row.total_amount)),
                total_referrals=global_row.total,
                confirmed_referrals=global_row.confirmed,
            )

        async def direction(column) -> DirectionStats:
            row = (await self.db.execute(
                select(
                    func.count(Referral.id).label("total"),
                    func.coalesce(func.sum(case((confirmed, 1), else_=0)), 0).label("confirmed"),
                    func.coalesce(
                        func.sum(case((confirmed, Referral.referral_amount), else_=0)), 0
                    ).label("amount"),
                ).where(column == str(member_id))
            )).one()
            return DirectionStats(total=row.total, confirmed=row.confirmed, total_amount=Decimal(str(row.amount)))

        return ReferralStats(
            total_referral_amount=Decimal(str(global_row.total_amount)),
            sent=await direction(Referral.referrer_id),
            received=await direction(Referral.referred_to_id),
        )

    # Helpers

    async def _check_new_referral(self, referrer_id: str, referred_to_id: str):
        if not referred_to_id:
            raise ValidationError("Referral target is required")
        if str(referrer_id) == str(referred_to_id):
            raise ValidationError("Cannot refer yourself")

        target = await self.directory.get_member(str(referred_to_id))
        if not target or not target.is_active:
            raise NotFoundError("Referred member does not exist or is not active")

        # Fast path only; the partial unique index is the real guard
        existing = await self.db.scalar(
            select(Referral.id).where(
                and_(
                    Referral.referrer_id == str(referrer_id),
                    Referral.referred_to_id == str(referred_to_id),
                    Referral.status == ReferralStatus.PENDING
                )
            )
        )
        if existing:
            raise DuplicateReferralError()
        return target

    async def _insert_referral(self, referral: Referral, actor_id: str, reason: Optional[str]) -> None:
        self.db.add(referral)
        self.audit_trail.append(referral.id, actor_id, ACTION_SUBMITTED, reason)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateReferralError() from e
        except Exception:
            await self.db.rollback()
            raise

    async def _notify_new_referral(self, referral: Referral, target) -> None:
        referrer = await self.directory.get_member(referral.referrer_id)
        await self.notifier.notify(
            referral.referred_to_id,
            NotificationType.NEW_REFERRAL,
            {
                "referral_id": str(referral.id),
                "type": referral.type.value,
                "referrer_name": referrer.name if referrer else None,
                "referrer_company": referrer.company if referrer else None,
                "referred_name": target.name,
                "referral_amount": str(referral.referral_amount),
                "description": referral.description,
            }
        )

    async def _cached_verification(self, referral_id: uuid.UUID) -> VerificationResult:
        verification = await self.db.scalar(
            select(DealVerification).where(DealVerification.referral_id == referral_id)
        )
        if not verification or not verification.verified:
            return VerificationResult(verified=False, reason="verification record missing")
        return VerificationResult(
            verified=True,
            bonus=verification.bonus_amount,
            source=verification.verification_source,
            cached=True,
        )

    async def _ensure_party_or_privileged(self, referral: Referral, requester_id: str) -> None:
        if referral.involves(str(requester_id)):
            return
        if await self.directory.is_privileged(str(requester_id)):
            return
        raise AuthorizationError("Not permitted to access this referral")

    async def _decorate(self, referrals, counterpart_of) -> List[ReferralListItem]:
        referrals = list(referrals)
        members = await self.directory.get_members(counterpart_of(r) for r in referrals)
        items = []
        for referral in referrals:
            counterpart_id = counterpart_of(referral)
            member = members.get(counterpart_id)
            item = ReferralListItem.model_validate(referral)
            item.counterpart = CounterpartSummary(
                id=counterpart_id,
                name=member.name if member else None,
                company=member.company if member else None,
            )
            items.append(item)
        return items

    @staticmethod
    def _parse_amount(value: Any, allow_zero: bool) -> Decimal:
        try:
            amount = Decimal(str(value if value is not None else 0))
        except (InvalidOperation, ValueError):
            raise ValidationError("Amount must be a number")
        if not amount.is_finite():
            raise ValidationError("Amount must be a finite number")
        if amount < 0:
            raise ValidationError("Amount cannot be negative")
        # Referral.referral_amount is Numeric(14, 2)
        if amount >= MAX_AMOUNT:
            raise ValidationError("Amount is too large")
        if amount != amount.quantize(AMOUNT_QUANTUM):
            raise ValidationError("Amount cannot have more than two decimal places")
        if amount == 0 and not allow_zero:
            raise ValidationError("Deal amount must be greater than zero")
        return amount.quantize(AMOUNT_QUANTUM)

    @staticmethod
    def _parse_enum(enum_cls, value: Any, field: str):
        try:
            return enum_cls(value.value if hasattr(value, "value") else value)
        except ValueError:
            raise ValidationError(f"Invalid {field}: {value}")

    @staticmethod
    def _parse_uuid(value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError:
            raise NotFoundError("Referral not found")
