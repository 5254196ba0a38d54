"""Referral lifecycle tests"""

import asyncio

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    AuthorizationError,
    DuplicateReferralError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.models import (
    FIRST_CONFIRMED_REFERRAL_BADGE,
    AuditStatus,
    BadgeAward,
    Referral,
    ReferralAuditLog,
    ReferralStatus,
    ReferralType,
)
from app.services.notification import NotificationType


async def audit_actions(session, referral_id):
    result = await session.execute(
        select(ReferralAuditLog.action)
        .where(ReferralAuditLog.referral_id == referral_id)
        .order_by(ReferralAuditLog.created_at, ReferralAuditLog.id)
    )
    return list(result.scalars().all())


class TestNetworkReferral:
    """Creating and answering network referrals"""

    @pytest.mark.asyncio
    async def test_create_confirm_and_badge(self, service, db, notifier):
        referral = await service.create_network_referral("alice", "bob", payload={"name": "X"}, reason="Good fit")

        assert referral.type == ReferralType.NETWORK
        assert referral.status == ReferralStatus.PENDING
        assert referral.audit_status == AuditStatus.PENDING
        assert referral.sensitive_data_encrypted
        assert "X" not in referral.sensitive_data_encrypted
        assert notifier.of_type(NotificationType.NEW_REFERRAL)[0][0] == "bob"

        confirmed = await service.respond(referral.id, "bob", "confirmed")
        assert confirmed.status == ReferralStatus.CONFIRMED
        assert confirmed.responded_at is not None

        actions = await audit_actions(db, referral.id)
        assert actions.count("submitted") == 1
        assert actions[-1] == "response_confirmed"

        assert await service.rewards.count_confirmed_referrals("alice") == 1
        badges = await service.rewards.get_badges("alice")
        assert [b.badge_id for b in badges] == [FIRST_CONFIRMED_REFERRAL_BADGE]
        assert len(notifier.of_type(NotificationType.BADGE_AWARDED)) == 1
        assert notifier.of_type(NotificationType.REFERRAL_CONFIRMED)[0][0] == "alice"

    @pytest.mark.asyncio
    async def test_badge_granted_only_for_first_confirmation(self, service, db, notifier):
        first = await service.create_network_referral("alice", "bob")
        second = await service.create_network_referral("alice", "carol")

        await service.respond(first.id, "bob", "confirmed")
        await service.respond(second.id, "carol", "confirmed")

        count = await db.scalar(select(func.count()).select_from(BadgeAward).where(BadgeAward.user_id == "alice"))
        assert count == 1
        assert len(notifier.of_type(NotificationType.BADGE_AWARDED)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirmations_grant_badge_once(self, session_factory, make_service, notifier):
        targets = ["bob", "carol", "coach"]
        referral_ids = {}
        for target in targets:
            async with session_factory() as session:
                referral = await make_service(session).create_network_referral("alice", target)
                referral_ids[target] = referral.id

        async def confirm(target):
            async with session_factory() as session:
                result = await make_service(session).respond(referral_ids[target], target, "confirmed")
                return result.status

        results = await asyncio.gather(*(confirm(target) for target in targets))

        assert results == [ReferralStatus.CONFIRMED] * len(targets)
        async with session_factory() as session:
            awards = await session.scalar(
                select(func.count()).select_from(BadgeAward).where(BadgeAward.user_id == "alice")
            )
            assert awards == 1
        badge_notices = notifier.of_type(NotificationType.BADGE_AWARDED)
        assert [n[0] for n in badge_notices] == ["alice"]

    @pytest.mark.asyncio
    async def test_rejection_grants_nothing(self, service, notifier):
        referral = await service.create_network_referral("alice", "bob")
        rejected = await service.respond(referral.id, "bob", "rejected")

        assert rejected.status == ReferralStatus.REJECTED
        assert await service.rewards.get_badges("alice") == []
        assert notifier.of_type(NotificationType.REFERRAL_REJECTED)[0][0] == "alice"

    @pytest.mark.asyncio
    async def test_empty_payload_not_encrypted(self, service):
        referral = await service.create_network_referral("alice", "bob", payload={})
        assert referral.sensitive_data_encrypted is None
        assert await service.fetch_sensitive_payload(referral.id, "alice") is None


class TestValidation:
    """Creation guards"""

    @pytest.mark.asyncio
    async def test_self_referral_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_network_referral("alice", "alice")

    @pytest.mark.asyncio
    async def test_missing_target_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_network_referral("alice", "")

    @pytest.mark.asyncio
    async def test_unknown_member(self, service):
        with pytest.raises(NotFoundError):
            await service.create_network_referral("alice", "nobody")

    @pytest.mark.asyncio
    async def test_inactive_member(self, service):
        with pytest.raises(NotFoundError):
            await service.create_network_referral("alice", "dave")

    @pytest.mark.asyncio
    async def test_negative_amount(self, service):
        with pytest.raises(ValidationError):
            await service.create_network_referral("alice", "bob", referral_amount=-1)

    @pytest.mark.asyncio
    async def test_duplicate_pending_referral(self, service):
        await service.create_network_referral("alice", "bob")
        with pytest.raises(DuplicateReferralError):
            await service.create_network_referral("alice", "bob")

    @pytest.mark.asyncio
    async def test_new_referral_allowed_after_answer(self, service):
        first = await service.create_network_referral("alice", "bob")
        await service.respond(first.id, "bob", "rejected")

        second = await service.create_network_referral("alice", "bob")
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_unique_index_blocks_concurrent_duplicates(self, session_factory, make_service):
        async def create():
            async with session_factory() as session:
                try:
                    await make_service(session).create_network_referral("alice", "carol")
                    return "created"
                except DuplicateReferralError:
                    return "duplicate"

        results = await asyncio.gather(create(), create(), create())

        assert sorted(results) == ["created", "duplicate", "duplicate"]


class TestTransitions:
    """Status is monotonic and only the recipient may answer"""

    @pytest.mark.asyncio
    async def test_cannot_respond_twice(self, service):
        referral = await service.create_network_referral("alice", "bob")
        await service.respond(referral.id, "bob", "confirmed")

        with pytest.raises(StateConflictError):
            await service.respond(referral.id, "bob", "rejected")

        reloaded = await service.get_referral(referral.id)
        assert reloaded.status == ReferralStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_only_recipient_may_respond(self, service):
        referral = await service.create_network_referral("alice", "bob")
        with pytest.raises(StateConflictError):
            await service.respond(referral.id, "alice", "confirmed")

    @pytest.mark.asyncio
    async def test_invalid_decision(self, service):
        referral = await service.create_network_referral("alice", "bob")
        with pytest.raises(ValidationError):
            await service.respond(referral.id, "bob", "pending")
        with pytest.raises(ValidationError):
            await service.respond(referral.id, "bob", "maybe")

    @pytest.mark.asyncio
    async def test_unknown_referral(self, service):
        with pytest.raises(NotFoundError):
            await service.respond("00000000-0000-0000-0000-000000000000", "bob", "confirmed")
        with pytest.raises(NotFoundError):
            await service.respond("not-a-uuid", "bob", "confirmed")

    @pytest.mark.asyncio
    async def test_concurrent_responses_single_winner(self, session_factory, make_service, notifier):
        async with session_factory() as session:
            referral = await make_service(session).create_network_referral("alice", "bob")
            referral_id = referral.id

        async def answer(decision):
            async with session_factory() as session:
                try:
                    result = await make_service(session).respond(referral_id, "bob", decision)
                    return result.status.value
                except StateConflictError:
                    return "conflict"

        results = await asyncio.gather(answer("confirmed"), answer("rejected"), answer("confirmed"))

        assert results.count("conflict") == 2
        winner = next(r for r in results if r != "conflict")

        async with session_factory() as session:
            stored = await session.get(Referral, referral_id)
            assert stored.status.value == winner
            actions = await audit_actions(session, referral_id)
            assert len([a for a in actions if a.startswith("response_")]) == 1
            badges = await session.scalar(select(func.count()).select_from(BadgeAward))
            assert badges == (1 if winner == "confirmed" else 0)


class TestAudit:
    """Reviewer audit of network referrals"""

    @pytest.mark.asyncio
    async def test_coach_approves(self, service, db):
        referral = await service.create_network_referral("alice", "bob")
        await service.audit_network_referral(referral.id, "coach", "approved", notes="Checked")

        reloaded = await service.get_referral(referral.id)
        assert reloaded.audit_status == AuditStatus.APPROVED
        assert reloaded.audited_by == "coach"
        assert reloaded.is_trust_verified is True
        assert reloaded.status == ReferralStatus.PENDING
        assert (await audit_actions(db, referral.id))[-1] == "approved"

    @pytest.mark.asyncio
    async def test_member_cannot_audit(self, service):
        referral = await service.create_network_referral("alice", "bob")
        with pytest.raises(AuthorizationError):
            await service.audit_network_referral(referral.id, "carol", "approved")

    @pytest.mark.asyncio
    async def test_audit_is_final(self, service):
        referral = await service.create_network_referral("alice", "bob")
        await service.audit_network_referral(referral.id, "coach", "rejected")

        with pytest.raises(StateConflictError):
            await service.audit_network_referral(referral.id, "coach", "approved")

    @pytest.mark.asyncio
    async def test_audit_rejection_keeps_confirmation(self, service):
        referral = await service.create_network_referral("alice", "bob")
        await service.respond(referral.id, "bob", "confirmed")
        await service.audit_network_referral(referral.id, "coach", "rejected")

        reloaded = await service.get_referral(referral.id)
        assert reloaded.status == ReferralStatus.CONFIRMED
        assert reloaded.is_trust_verified is False
        assert len(await service.rewards.get_badges("alice")) == 1

    @pytest.mark.asyncio
    async def test_deal_cannot_be_audited(self, service):
        referral = await service.create_deal_referral("alice", "bob", amount=100)
        with pytest.raises(ValidationError):
            await service.audit_network_referral(referral.id, "coach", "approved")


class TestSensitivePayload:
    """Access control around decryption"""

    @pytest.mark.asyncio
    async def test_parties_and_reviewers_can_read(self, service):
        referral = await service.create_network_referral("alice", "bob", payload={"name": "X", "phone": "123"})

        for member in ("alice", "bob", "coach"):
            assert await service.fetch_sensitive_payload(referral.id, member) == {"name": "X", "phone": "123"}

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, service):
        referral = await service.create_network_referral("alice", "bob", payload={"name": "X"})
        with pytest.raises(AuthorizationError):
            await service.fetch_sensitive_payload(referral.id, "carol")

    @pytest.mark.asyncio
    async def test_audit_log_access(self, service):
        referral = await service.create_network_referral("alice", "bob")

        entries = await service.get_audit_log(referral.id, "bob")
        assert [e.action for e in entries] == ["submitted"]
        assert entries[0].actor_id == "alice"

        with pytest.raises(AuthorizationError):
            await service.get_audit_log(referral.id, "carol")


class TestListingsAndStats:
    """Sent/received listings and per-member stats"""

    @pytest.mark.asyncio
    async def test_listings_decorate_counterpart(self, service):
        await service.create_network_referral("alice", "bob")
        await service.create_network_referral("carol", "alice")

        sent = await service.list_sent("alice")
        assert len(sent) == 1
        assert sent[0].counterpart.id == "bob"
        assert sent[0].counterpart.company == "Lin Logistics"

        received = await service.list_received("alice")
        assert len(received) == 1
        assert received[0].counterpart.name == "Carol Wu"

    @pytest.mark.asyncio
    async def test_member_stats(self, service):
        first = await service.create_network_referral("alice", "bob", referral_amount=300)
        await service.create_network_referral("alice", "carol", referral_amount=200)
        await service.respond(first.id, "bob", "confirmed")

        stats = await service.get_referral_stats("alice")
        assert stats.sent.total == 2
        assert stats.sent.confirmed == 1
        assert stats.sent.total_amount == 300
        assert stats.received.total == 0
        assert stats.total_referral_amount == 500

        admin_stats = await service.get_referral_stats("coach", is_admin=True)
        assert admin_stats.total_referrals == 2
        assert admin_stats.confirmed_referrals == 1
