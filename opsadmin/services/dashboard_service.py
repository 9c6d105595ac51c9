"""Dashboard aggregation over Loan and Payment entities, with a TTL cache.

``get_summary`` serves one cached ``DashboardSummary`` per cache window and
recomputes lazily once it expires; ``invalidate_cache`` drops the entry so the
next read recomputes. Both run under the same lock, so a reader never sees a
half-built entry.
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Callable, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from ..core.errors import DashboardAggregationError, DependencyUnavailableError
from ..models.conditions import match_all
from ..models.envelope import EntityWithMetadata
from ..models.registry import LOAN, PAYMENT
from .entity_service import EntityService


logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0
ACTIVE_LOAN_STATES = {"active", "funded"}
PORTFOLIO_TREND_MONTHS = 12
MONTHLY_PAYMENTS_MONTHS = 6

# Chart consumers expect JSON numbers, not decimal strings
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StatusDistribution(_CamelModel):
    labels: List[str] = Field(default_factory=list)
    values: List[int] = Field(default_factory=list)


class PortfolioTrend(_CamelModel):
    months: List[str] = Field(default_factory=list)
    values: List[Amount] = Field(default_factory=list)


class MonthlyPayments(_CamelModel):
    months: List[str] = Field(default_factory=list)
    amounts: List[Amount] = Field(default_factory=list)


class DashboardSummary(_CamelModel):
    total_portfolio_value: Amount = Field(alias="totalPortfolioValue")
    active_loans_count: int = Field(alias="activeLoansCount")
    outstanding_principal: Amount = Field(alias="outstandingPrincipal")
    active_borrowers_count: int = Field(alias="activeBorrowersCount")
    status_distribution: StatusDistribution = Field(alias="statusDistribution")
    portfolio_trend: PortfolioTrend = Field(alias="portfolioTrend")
    apr_distribution: List[Amount] = Field(alias="aprDistribution")
    monthly_payments: MonthlyPayments = Field(alias="monthlyPayments")


@dataclass(frozen=True)
class _CachedSummary:
    summary: DashboardSummary
    timestamp: float


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring non-numeric value in dashboard aggregation: {value!r}")
        return None


def _month_of(value: Any) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.year, value.month
    try:
        parsed = date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable date in dashboard aggregation: {value!r}")
        return None
    return parsed.year, parsed.month


def last_months(today: date, count: int) -> List[Tuple[int, int]]:
    """The ``count`` months ending with ``today``'s month, oldest first."""
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


def _format_month(year_month: Tuple[int, int]) -> str:
    return f"{year_month[0]:04d}-{year_month[1]:02d}"


def _monthly_sums(
    records: Iterable[dict],
    months: List[Tuple[int, int]],
    date_field: str,
    amount_field: str,
) -> List[Decimal]:
    totals = {month: Decimal("0") for month in months}
    for record in records:
        month = _month_of(record.get(date_field))
        amount = _decimal(record.get(amount_field))
        if month in totals and amount is not None:
            totals[month] += amount
    return [totals[month] for month in months]


def _is_active(loan: EntityWithMetadata) -> bool:
    return loan.state in ACTIVE_LOAN_STATES


def aggregate_dashboard(
    loans: List[EntityWithMetadata],
    payments: List[EntityWithMetadata],
    today: date,
) -> DashboardSummary:
    active = [loan for loan in loans if _is_active(loan)]

    total_portfolio = sum(
        (amount for amount in (_decimal(loan.entity.get("principalAmount")) for loan in loans) if amount is not None),
        Decimal("0"),
    )
    outstanding = sum(
        (amount for amount in (_decimal(loan.entity.get("outstandingPrincipal")) for loan in active) if amount is not None),
        Decimal("0"),
    )
    borrowers = {loan.entity.get("partyId") for loan in active if loan.entity.get("partyId") is not None}

    state_counts = Counter(loan.state if loan.state is not None else "unknown" for loan in loans)
    ordered_states = sorted(state_counts.items(), key=lambda item: item[1], reverse=True)

    trend_months = last_months(today, PORTFOLIO_TREND_MONTHS)
    payment_months = last_months(today, MONTHLY_PAYMENTS_MONTHS)

    return DashboardSummary(
        total_portfolio_value=total_portfolio,
        active_loans_count=len(active),
        outstanding_principal=outstanding,
        active_borrowers_count=len(borrowers),
        status_distribution=StatusDistribution(
            labels=[state for state, _ in ordered_states],
            values=[count for _, count in ordered_states],
        ),
        portfolio_trend=PortfolioTrend(
            months=[_format_month(m) for m in trend_months],
            values=_monthly_sums((loan.entity for loan in loans), trend_months, "fundingDate", "principalAmount"),
        ),
        apr_distribution=[
            apr for apr in (_decimal(loan.entity.get("apr")) for loan in loans) if apr is not None
        ],
        monthly_payments=MonthlyPayments(
            months=[_format_month(m) for m in payment_months],
            amounts=_monthly_sums(
                (payment.entity for payment in payments), payment_months, "valueDate", "paymentAmount"
            ),
        ),
    )


class DashboardService:
    def __init__(
        self,
        entity_service: EntityService,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ):
        self._entity_service = entity_service
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._today = today
        self._cached: Optional[_CachedSummary] = None
        self._lock = threading.Lock()

    def _is_fresh(self, cached: Optional[_CachedSummary]) -> bool:
        return cached is not None and self._clock() - cached.timestamp < self._ttl_seconds

    def get_summary(self) -> DashboardSummary:
        with self._lock:
            if self._is_fresh(self._cached):
                logger.debug(f"Returning cached dashboard data (age: {self._clock() - self._cached.timestamp:.1f}s)")
                return self._cached.summary

            logger.info("Cache miss or expired - fetching fresh dashboard data")
            summary = self._aggregate()
            self._cached = _CachedSummary(summary=summary, timestamp=self._clock())
            return summary

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cached = None
        logger.info("Dashboard cache manually invalidated")

    def _aggregate(self) -> DashboardSummary:
        try:
            loans = self._entity_service.search(LOAN, match_all())
            payments = self._entity_service.search(PAYMENT, match_all())
            logger.info(f"Retrieved {len(loans)} loans and {len(payments)} payments for dashboard aggregation")
            summary = aggregate_dashboard(loans, payments, self._today())
        except DependencyUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Failed to aggregate dashboard data: {e}", exc_info=True)
            raise DashboardAggregationError(f"Failed to retrieve dashboard data: {e}") from e

        logger.info(
            f"Dashboard aggregation complete - Portfolio: {summary.total_portfolio_value}, "
            f"Active Loans: {summary.active_loans_count}, Active Borrowers: {summary.active_borrowers_count}"
        )
        return summary
