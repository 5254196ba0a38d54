"""Performance report schemas"""

from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Literal, Optional
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

Granularity = Literal["weekly", "monthly"]
PeriodName = Literal["monthly", "semiannual", "annual"]

def _subtract_months(value: datetime, months: int) -> datetime:
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    # Clamp day to the target month length
    day = value.day
    while True:
        try:
            return value.replace(year=year, month=month + 1, day=day)
        except ValueError:
            day -= 1

class ReportRange(BaseModel):
    """Inclusive time window for reports"""

    start: datetime
    end: datetime
    granularity: Granularity = "weekly"

    @model_validator(mode="after")
    def check_order(self):
        if self.start.tzinfo is None:
            self.start = self.start.replace(tzinfo=timezone.utc)
        if self.end.tzinfo is None:
            self.end = self.end.replace(tzinfo=timezone.utc)
        if self.end < self.start:
            raise ValueError("range end must not precede range start")
        return self

    @classmethod
    def for_period(
        cls,
        period: PeriodName = "monthly",
        now: Optional[datetime] = None,
        granularity: Granularity = "weekly"
    ) -> "ReportRange":
        """
        Build the standard dashboard periods

        monthly: current calendar month
        semiannual: the six months up to now
        annual: current calendar year
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if period == "annual":
            start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
            end = now.replace(month=12, day=31, hour=23, minute=59, second=59, microsecond=999999)
        elif period == "semiannual":
            start = _subtract_months(now, 6).replace(hour=0, minute=0, second=0, microsecond=0)
            end = now
        else:
            start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
            next_month = (start + timedelta(days=32)).replace(day=1)
            end = next_month - timedelta(microseconds=1)

        return cls(start=start, end=end, granularity=granularity)

class ReferralTally(BaseModel):
    sent: int = 0
    received: int = 0
    confirmed: int = 0
    confirmed_amount: Decimal = Decimal("0")

class ConversionRates(BaseModel):
    """None whenever the denominator is zero"""

    sent_to_confirmed: Optional[float] = None
    confirmed_to_exchange: Optional[float] = None
    sent_to_exchange: Optional[float] = None

class ReportBucket(BaseModel):
    bucket: date
    sent: int = 0
    received: int = 0
    confirmed: int = 0
    confirmed_amount: Decimal = Decimal("0")
    by_type: Dict[str, ReferralTally] = Field(default_factory=dict)

class PerformanceReport(BaseModel):
    start: datetime
    end: datetime
    granularity: Granularity
    referral_type: Optional[str] = None
    member_id: Optional[str] = None
    totals: ReferralTally = Field(default_factory=ReferralTally)
    by_type: Dict[str, ReferralTally] = Field(default_factory=dict)
    exchanges_confirmed: int = 0
    conversion_rates: ConversionRates = Field(default_factory=ConversionRates)
    buckets: List[ReportBucket] = Field(default_factory=list)

class PartnerInfo(BaseModel):
    name: Optional[str] = None
    company: Optional[str] = None

class PartnerStat(BaseModel):
    partner_id: str
    partner: Optional[PartnerInfo] = None
    total: int
    confirmed: int
    conversion_rate: Optional[float] = None

class GraphNode(BaseModel):
    id: str
    name: Optional[str] = None
    company: Optional[str] = None

class GraphEdge(BaseModel):
    source: str
    target: str
    count: int
    confirmed_count: int

class RelationshipGraph(BaseModel):
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
