"""Performance aggregator tests"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.models import Referral, ReferralStatus, ReferralType
from app.schemas.analytics import ReportRange
from app.services.analytics import PerformanceAggregator, bucket_start
from app.services.directory import ExchangeLedger

MARCH = ReportRange(
    start=datetime(2024, 3, 1, tzinfo=timezone.utc),
    end=datetime(2024, 3, 31, 23, 59, 59, tzinfo=timezone.utc),
    granularity="weekly",
)


class FixedLedger(ExchangeLedger):
    def __init__(self, count):
        self.count = count
        self.calls = []

    async def count_confirmed_exchanges(self, start, end, member_id=None):
        self.calls.append((start, end, member_id))
        return self.count


async def seed(db, *rows):
    """rows: (referrer, referred, type, status, amount, created_at)"""
    for referrer, referred, ref_type, status, amount, created_at in rows:
        db.add(Referral(
            id=uuid.uuid4(),
            referrer_id=referrer,
            referred_to_id=referred,
            type=ref_type,
            status=status,
            referral_amount=Decimal(amount),
            created_at=created_at,
            updated_at=created_at,
        ))
    await db.commit()


def at(day, hour=12):
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


NETWORK, DEAL = ReferralType.NETWORK, ReferralType.DEAL
PENDING, CONFIRMED, REJECTED = ReferralStatus.PENDING, ReferralStatus.CONFIRMED, ReferralStatus.REJECTED


class TestAggregate:
    """Time-bucketed report"""

    @pytest.mark.asyncio
    async def test_empty_range_is_zero_filled(self, db, directory):
        report = await PerformanceAggregator(db, directory).aggregate(MARCH)

        assert report.totals.sent == 0
        assert report.totals.confirmed == 0
        assert report.totals.confirmed_amount == 0
        assert report.conversion_rates.sent_to_confirmed is None
        assert report.conversion_rates.confirmed_to_exchange is None
        assert report.conversion_rates.sent_to_exchange is None
        # Weeks starting Feb 26, Mar 4, 11, 18, 25
        assert [b.bucket for b in report.buckets] == [
            date(2024, 2, 26), date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)
        ]
        assert all(b.sent == 0 for b in report.buckets)

    @pytest.mark.asyncio
    async def test_counts_and_rates(self, db, directory):
        await seed(
            db,
            ("alice", "bob", NETWORK, CONFIRMED, "100", at(5)),
            ("alice", "carol", DEAL, CONFIRMED, "1000", at(6)),
            ("bob", "carol", NETWORK, PENDING, "50", at(13)),
            ("carol", "alice", NETWORK, REJECTED, "0", at(20)),
            ("bob", "alice", NETWORK, CONFIRMED, "70", datetime(2024, 4, 2, tzinfo=timezone.utc)),
        )
        ledger = FixedLedger(1)

        report = await PerformanceAggregator(db, directory, ledger).aggregate(MARCH)

        assert report.totals.sent == 4
        assert report.totals.received == 4
        assert report.totals.confirmed == 2
        assert report.totals.confirmed_amount == Decimal("1100")
        assert report.by_type["network"].sent == 3
        assert report.by_type["deal"].confirmed_amount == Decimal("1000")
        assert report.exchanges_confirmed == 1
        assert report.conversion_rates.sent_to_confirmed == 0.5
        assert report.conversion_rates.confirmed_to_exchange == 0.5
        assert report.conversion_rates.sent_to_exchange == 0.25

        week = {b.bucket: b for b in report.buckets}
        assert week[date(2024, 3, 4)].sent == 2
        assert week[date(2024, 3, 4)].confirmed == 2
        assert week[date(2024, 3, 11)].sent == 1
        assert week[date(2024, 3, 25)].sent == 0
        assert week[date(2024, 3, 4)].by_type["network"].sent == 1
        assert week[date(2024, 3, 4)].by_type["deal"].confirmed_amount == Decimal("1000")
        assert week[date(2024, 3, 11)].by_type["deal"].sent == 0
        assert set(week[date(2024, 3, 25)].by_type) == {"network", "deal"}

    @pytest.mark.asyncio
    async def test_member_scope(self, db, directory):
        await seed(
            db,
            ("alice", "bob", NETWORK, CONFIRMED, "100", at(5)),
            ("alice", "carol", NETWORK, PENDING, "0", at(6)),
            ("carol", "alice", NETWORK, CONFIRMED, "30", at(7)),
            ("bob", "carol", NETWORK, CONFIRMED, "10", at(8)),
        )
        ledger = FixedLedger(0)

        report = await PerformanceAggregator(db, directory, ledger).aggregate(MARCH, member_id="alice")

        assert report.member_id == "alice"
        assert report.totals.sent == 2
        assert report.totals.received == 1
        assert report.totals.confirmed == 2
        assert report.conversion_rates.confirmed_to_exchange == 0.0
        assert ledger.calls[0][2] == "alice"

    @pytest.mark.asyncio
    async def test_type_filter_and_monthly_buckets(self, db, directory):
        await seed(
            db,
            ("alice", "bob", NETWORK, CONFIRMED, "100", at(5)),
            ("alice", "carol", DEAL, CONFIRMED, "1000", at(6)),
        )
        report_range = ReportRange(start=MARCH.start, end=MARCH.end, granularity="monthly")

        report = await PerformanceAggregator(db, directory).aggregate(report_range, referral_type="deal")

        assert report.referral_type == "deal"
        assert list(report.by_type) == ["deal"]
        assert report.totals.sent == 1
        assert [b.bucket for b in report.buckets] == [date(2024, 3, 1)]
        assert list(report.buckets[0].by_type) == ["deal"]

    @pytest.mark.asyncio
    async def test_period_includes_its_last_second(self, db, directory):
        await seed(
            db,
            ("alice", "bob", NETWORK, PENDING, "0", datetime(2026, 1, 31, 23, 59, 59, 500000, tzinfo=timezone.utc)),
            ("alice", "carol", NETWORK, PENDING, "0", datetime(2026, 2, 1, tzinfo=timezone.utc)),
            ("bob", "carol", NETWORK, PENDING, "0", datetime(2026, 12, 31, 23, 59, 59, 900000, tzinfo=timezone.utc)),
        )
        aggregator = PerformanceAggregator(db, directory)

        january = ReportRange.for_period("monthly", datetime(2026, 1, 15, tzinfo=timezone.utc))
        assert (await aggregator.aggregate(january)).totals.sent == 1

        year = ReportRange.for_period("annual", datetime(2026, 6, 1, tzinfo=timezone.utc), granularity="monthly")
        assert (await aggregator.aggregate(year)).totals.sent == 3

    @pytest.mark.asyncio
    async def test_unknown_type(self, db, directory):
        with pytest.raises(ValidationError):
            await PerformanceAggregator(db, directory).aggregate(MARCH, referral_type="gift")


class TestReportRange:
    def test_end_before_start(self):
        with pytest.raises(ValueError):
            ReportRange(start=at(10), end=at(9))

    def test_naive_datetimes_are_utc(self):
        report_range = ReportRange(start=datetime(2024, 3, 1), end=datetime(2024, 3, 2))
        assert report_range.start.tzinfo is not None

    def test_periods(self):
        now = datetime(2024, 8, 31, 15, tzinfo=timezone.utc)

        monthly = ReportRange.for_period("monthly", now)
        assert monthly.start == datetime(2024, 8, 1, tzinfo=timezone.utc)
        assert monthly.end == datetime(2024, 8, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

        semiannual = ReportRange.for_period("semiannual", now)
        assert semiannual.start == datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert semiannual.end == now

        annual = ReportRange.for_period("annual", now, granularity="monthly")
        assert annual.start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert annual.end == datetime(2024, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
        assert annual.granularity == "monthly"

    def test_bucket_start(self):
        assert bucket_start(datetime(2024, 3, 7), "weekly") == date(2024, 3, 4)
        assert bucket_start(datetime(2024, 3, 7), "monthly") == date(2024, 3, 1)


class TestTopPartners:
    """Partner rankings"""

    @pytest.mark.asyncio
    async def test_sent_ranking(self, db, directory):
        await seed(
            db,
            ("alice", "bob", NETWORK, CONFIRMED, "0", at(2)),
            ("alice", "bob", NETWORK, REJECTED, "0", at(3)),
            ("alice", "carol", NETWORK, CONFIRMED, "0", at(4)),
            ("alice", "carol", NETWORK, CONFIRMED, "0", at(5)),
            ("alice", "carol", NETWORK, PENDING, "0", at(6)),
            ("alice", "ghost", NETWORK, PENDING, "0", at(7)),
        )

        partners = await PerformanceAggregator(db, directory).top_partners(MARCH, "sent", member_id="alice")

        assert [p.partner_id for p in partners] == ["carol", "bob", "ghost"]
        assert partners[0].total == 3
        assert partners[0].confirmed == 2
        assert partners[0].conversion_rate == round(2 / 3, 4)
        assert partners[0].partner.company == "Wu Design"
        assert partners[2].partner is None

    @pytest.mark.asyncio
    async def test_received_ranking_and_limit(self, db, directory):
        await seed(
            db,
            ("bob", "alice", NETWORK, CONFIRMED, "0", at(2)),
            ("carol", "alice", NETWORK, PENDING, "0", at(3)),
            ("carol", "alice", DEAL, CONFIRMED, "0", at(4)),
        )

        partners = await PerformanceAggregator(db, directory).top_partners(
            MARCH, "received", member_id="alice", limit=1
        )

        assert len(partners) == 1
        assert partners[0].partner_id == "carol"
        assert partners[0].partner.name == "Carol Wu"

    @pytest.mark.asyncio
    async def test_invalid_direction(self, db, directory):
        with pytest.raises(ValidationError):
            await PerformanceAggregator(db, directory).top_partners(MARCH, "sideways")


class TestRelationshipGraph:
    @pytest.mark.asyncio
    async def test_graph_projection(self, db, directory):
        await seed(
            db,
            ("alice", "bob", NETWORK, CONFIRMED, "0", at(2)),
            ("alice", "bob", NETWORK, PENDING, "0", at(3)),
            ("bob", "carol", DEAL, CONFIRMED, "0", at(4)),
        )
        aggregator = PerformanceAggregator(db, directory)

        graph = await aggregator.relationship_graph()
        assert [n.id for n in graph.nodes] == ["alice", "bob", "carol"]
        assert graph.nodes[0].name == "Alice Chen"
        edges = {(e.source, e.target): e for e in graph.edges}
        assert edges[("alice", "bob")].count == 2
        assert edges[("alice", "bob")].confirmed_count == 1
        assert edges[("bob", "carol")].count == 1

        network_only = await aggregator.relationship_graph("network")
        assert [n.id for n in network_only.nodes] == ["alice", "bob"]
        assert len(network_only.edges) == 1

    @pytest.mark.asyncio
    async def test_empty_graph(self, db, directory):
        graph = await PerformanceAggregator(db, directory).relationship_graph()
        assert graph.nodes == []
        assert graph.edges == []
