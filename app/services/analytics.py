"""Referral performance aggregation and reporting"""

from typing import Dict, List, Optional
from datetime import datetime, date, timedelta, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_, case
from decimal import Decimal
import logging

from app.core.exceptions import ValidationError
from app.models import Referral, ReferralType, ReferralStatus, as_utc
from app.schemas.analytics import (
    ReportRange,
    ReferralTally,
    ConversionRates,
    ReportBucket,
    PerformanceReport,
    PartnerInfo,
    PartnerStat,
    GraphNode,
    GraphEdge,
    RelationshipGraph,
)
from app.services.directory import MemberDirectory, ExchangeLedger, NullExchangeLedger

logger = logging.getLogger(__name__)

def bucket_start(value: datetime, granularity: str) -> date:
    """Monday of the week, or first of the month, in UTC"""
    day = as_utc(value).astimezone(timezone.utc).date()
    if granularity == "monthly":
        return day.replace(day=1)
    return day - timedelta(days=day.weekday())

def next_bucket(value: date, granularity: str) -> date:
    if granularity == "monthly":
        return (value.replace(day=28) + timedelta(days=4)).replace(day=1)
    return value + timedelta(days=7)

def safe_ratio(numerator: float, denominator: float) -> Optional[float]:
    """Ratio rounded to four places, None when undefined"""
    if not denominator:
        return None
    return round(numerator / denominator, 4)

class PerformanceAggregator:
    """Read-only reporting over referral records"""

    def __init__(
        self,
        db: AsyncSession,
        directory: MemberDirectory,
        exchange_ledger: Optional[ExchangeLedger] = None
    ):
        self.db = db
        self.directory = directory
        self.exchange_ledger = exchange_ledger or NullExchangeLedger()

    async def aggregate(
        self,
        report_range: ReportRange,
        referral_type: Optional[str] = None,
        member_id: Optional[str] = None
    ) -> PerformanceReport:
        """
        Bucket referrals created within the range

        Without a member every referral counts once as sent and once as
        received. With a member, sent and received follow the member's side
        of each referral and confirmed counts either side.
        """
        type_filter = self._parse_type(referral_type)
        start, end = self._bounds(report_range)

        query = select(Referral).where(
            and_(Referral.created_at >= start, Referral.created_at <= end)
        )
        if type_filter:
            query = query.where(Referral.type == type_filter)
        if member_id:
            query = query.where(
                or_(Referral.referrer_id == member_id, Referral.referred_to_id == member_id)
            )
        referrals = (await self.db.execute(query)).scalars().all()

        type_keys = [t.value for t in ReferralType if not type_filter or t == type_filter]

        def empty_bucket(key: date) -> ReportBucket:
            return ReportBucket(bucket=key, by_type={t: ReferralTally() for t in type_keys})

        buckets: Dict[date, ReportBucket] = {}
        current = bucket_start(start, report_range.granularity)
        last = bucket_start(end, report_range.granularity)
        while current <= last:
            buckets[current] = empty_bucket(current)
            current = next_bucket(current, report_range.granularity)

        totals = ReferralTally()
        by_type = {t: ReferralTally() for t in type_keys}

        for referral in referrals:
            if member_id:
                sent = int(referral.referrer_id == member_id)
                received = int(referral.referred_to_id == member_id)
            else:
                sent = received = 1
            confirmed = referral.status == ReferralStatus.CONFIRMED
            amount = Decimal(referral.referral_amount or 0) if confirmed else Decimal("0")

            key = bucket_start(referral.created_at, report_range.granularity)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = empty_bucket(key)

            type_key = referral.type.value
            for tally in (totals, by_type[type_key], bucket, bucket.by_type[type_key]):
                tally.sent += sent
                tally.received += received
                if confirmed:
                    tally.confirmed += 1
                    tally.confirmed_amount += amount

        exchanges = await self.exchange_ledger.count_confirmed_exchanges(start, end, member_id)

        report = PerformanceReport(
            start=start,
            end=end,
            granularity=report_range.granularity,
            referral_type=type_filter.value if type_filter else None,
            member_id=member_id,
            totals=totals,
            by_type=by_type,
            exchanges_confirmed=exchanges,
            conversion_rates=ConversionRates(
                sent_to_confirmed=safe_ratio(totals.confirmed, totals.sent),
                confirmed_to_exchange=safe_ratio(exchanges, totals.confirmed),
                sent_to_exchange=safe_ratio(exchanges, totals.sent),
            ),
            buckets=[buckets[key] for key in sorted(buckets)],
        )
        logger.debug(f"Aggregated {len(referrals)} referrals into {len(report.buckets)} buckets")
        return report

    async def top_partners(
        self,
        report_range: ReportRange,
        direction: str = "sent",
        member_id: Optional[str] = None,
        limit: int = 5,
        referral_type: Optional[str] = None
    ) -> List[PartnerStat]:
        """
        Rank counterparts by referral volume

        direction "sent" groups by the referred member, "received" by the
        referrer. Ties are ordered by partner id.
        """
        if direction not in ("sent", "received"):
            raise ValidationError("direction must be 'sent' or 'received'")
        if limit < 1:
            raise ValidationError("limit must be positive")

        type_filter = self._parse_type(referral_type)
        start, end = self._bounds(report_range)

        if direction == "sent":
            partner_column, own_column = Referral.referred_to_id, Referral.referrer_id
        else:
            partner_column, own_column = Referral.referrer_id, Referral.referred_to_id

        total = func.count(Referral.id).label("total")
        confirmed = func.coalesce(
            func.sum(case((Referral.status == ReferralStatus.CONFIRMED, 1), else_=0)), 0
        ).label("confirmed")

        query = (
            select(partner_column.label("partner_id"), total, confirmed)
            .where(and_(Referral.created_at >= start, Referral.created_at <= end))
            .group_by(partner_column)
            .order_by(total.desc(), partner_column)
            .limit(limit)
        )
        if member_id:
            query = query.where(own_column == member_id)
        if type_filter:
            query = query.where(Referral.type == type_filter)

        rows = (await self.db.execute(query)).all()
        members = await self.directory.get_members(row.partner_id for row in rows)

        stats = []
        for row in rows:
            member = members.get(row.partner_id)
            stats.append(PartnerStat(
                partner_id=row.partner_id,
                partner=PartnerInfo(name=member.name, company=member.company) if member else None,
                total=row.total,
                confirmed=int(row.confirmed),
                conversion_rate=safe_ratio(int(row.confirmed), row.total),
            ))
        return stats

    async def relationship_graph(self, referral_type: Optional[str] = None) -> RelationshipGraph:
        """Node per member, edge per (referrer, referred) pair; recomputed on every call"""
        type_filter = self._parse_type(referral_type)

        query = (
            select(
                Referral.referrer_id,
                Referral.referred_to_id,
                func.count(Referral.id).label("count"),
                func.coalesce(
                    func.sum(case((Referral.status == ReferralStatus.CONFIRMED, 1), else_=0)), 0
                ).label("confirmed_count"),
            )
            .group_by(Referral.referrer_id, Referral.referred_to_id)
            .order_by(Referral.referrer_id, Referral.referred_to_id)
        )
        if type_filter:
            query = query.where(Referral.type == type_filter)

        rows = (await self.db.execute(query)).all()

        edges = [
            GraphEdge(
                source=row.referrer_id,
                target=row.referred_to_id,
                count=row.count,
                confirmed_count=int(row.confirmed_count),
            )
            for row in rows
        ]

        member_ids = sorted({e.source for e in edges} | {e.target for e in edges})
        members = await self.directory.get_members(member_ids)
        nodes = []
        for member_id in member_ids:
            member = members.get(member_id)
            nodes.append(GraphNode(
                id=member_id,
                name=member.name if member else None,
                company=member.company if member else None,
            ))

        return RelationshipGraph(nodes=nodes, edges=edges)

    @staticmethod
    def _bounds(report_range: ReportRange):
        return (
            report_range.start.astimezone(timezone.utc),
            report_range.end.astimezone(timezone.utc),
        )

    @staticmethod
    def _parse_type(referral_type: Optional[str]) -> Optional[ReferralType]:
        if referral_type is None:
            return None
        try:
            return ReferralType(referral_type)
        except ValueError:
            raise ValidationError(f"Unknown referral type: {referral_type}")
