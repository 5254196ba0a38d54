"""Dashboard reporting API routes"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from datetime import datetime

from app.core.exceptions import ValidationError
from app.schemas.analytics import ReportRange, PerformanceReport, PartnerStat, RelationshipGraph
from app.services.analytics import PerformanceAggregator
from app.utils.dependencies import CurrentMember, get_current_member, get_performance_aggregator

router = APIRouter()

def _report_range(
    period: str,
    start: Optional[datetime],
    end: Optional[datetime],
    granularity: str
) -> ReportRange:
    if start and end:
        try:
            return ReportRange(start=start, end=end, granularity=granularity)
        except ValueError as e:
            raise ValidationError(str(e))
    return ReportRange.for_period(period, granularity=granularity)

def _scope(current_member: CurrentMember, member_id: Optional[str]) -> Optional[str]:
    """Administrators may report on anyone or everyone; members see their own numbers"""
    if current_member.is_admin:
        return member_id
    return current_member.id

@router.get(
    "/report",
    response_model=PerformanceReport,
    summary="Get referral performance report"
)
async def get_performance_report(
    period: str = Query("monthly", pattern="^(monthly|semiannual|annual)$"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    granularity: str = Query("weekly", pattern="^(weekly|monthly)$"),
    referral_type: Optional[str] = Query(None, alias="type", pattern="^(network|deal)$"),
    member_id: Optional[str] = Query(None),
    current_member: CurrentMember = Depends(get_current_member),
    aggregator: PerformanceAggregator = Depends(get_performance_aggregator)
):
    """Time-bucketed sent/received/confirmed counts with conversion rates"""
    return await aggregator.aggregate(
        _report_range(period, start, end, granularity),
        referral_type=referral_type,
        member_id=_scope(current_member, member_id)
    )

@router.get(
    "/partners",
    response_model=List[PartnerStat],
    summary="Get top referral partners"
)
async def get_top_partners(
    direction: str = Query("sent", pattern="^(sent|received)$"),
    period: str = Query("monthly", pattern="^(monthly|semiannual|annual)$"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(5, ge=1, le=50),
    referral_type: Optional[str] = Query(None, alias="type", pattern="^(network|deal)$"),
    member_id: Optional[str] = Query(None),
    current_member: CurrentMember = Depends(get_current_member),
    aggregator: PerformanceAggregator = Depends(get_performance_aggregator)
):
    return await aggregator.top_partners(
        _report_range(period, start, end, "weekly"),
        direction=direction,
        member_id=_scope(current_member, member_id),
        limit=limit,
        referral_type=referral_type
    )

@router.get(
    "/graph",
    response_model=RelationshipGraph,
    summary="Get referral relationship graph"
)
async def get_relationship_graph(
    referral_type: Optional[str] = Query(None, alias="type", pattern="^(network|deal)$"),
    current_member: CurrentMember = Depends(get_current_member),
    aggregator: PerformanceAggregator = Depends(get_performance_aggregator)
):
    """Member nodes and referral edges, recomputed on every request"""
    return await aggregator.relationship_graph(referral_type)
