import threading
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from opsadmin.app import create_app
from opsadmin.core.errors import DashboardAggregationError, DependencyUnavailableError
from opsadmin.models.conditions import match_all
from opsadmin.models.registry import LOAN, PAYMENT
from opsadmin.services.dashboard_service import DashboardService, DashboardSummary, aggregate_dashboard, last_months
from opsadmin.services.entity_service import InMemoryEntityService


STATE_TRANSITIONS = {"active": "activate", "funded": "fund", "closed": "close"}


def add_loan(service, loan_id, state, **fields):
    created = service.create(LOAN, {"loanId": loan_id, **fields})
    return service.update(LOAN, created.id, created.entity, STATE_TRANSITIONS[state])


def seed_portfolio(service) -> None:
    add_loan(service, "L-1", "active", principalAmount="1000.00", outstandingPrincipal="800.00",
             partyId="P-1", apr="5.5", fundingDate="2025-09-03")
    add_loan(service, "L-2", "funded", principalAmount="500", outstandingPrincipal="500",
             partyId="P-1", apr=7, fundingDate="2025-10-01")
    add_loan(service, "L-3", "closed", principalAmount="250", outstandingPrincipal="0",
             partyId="P-2", fundingDate="2023-01-10")
    add_loan(service, "L-4", "active", principalAmount="100", outstandingPrincipal="90",
             partyId="P-3")
    service.create(PAYMENT, {"paymentId": "PAY-1", "paymentAmount": "40.00", "valueDate": "2025-10-02"})
    service.create(PAYMENT, {"paymentId": "PAY-2", "paymentAmount": "60.00", "valueDate": "2025-05-20"})
    service.create(PAYMENT, {"paymentId": "PAY-3", "paymentAmount": "99.00", "valueDate": "2024-10-20"})


def test_last_months_crosses_year_boundary() -> None:
    assert last_months(date(2025, 2, 14), 4) == [(2024, 11), (2024, 12), (2025, 1), (2025, 2)]


def test_aggregation_metrics(entity_service, dashboard_service) -> None:
    seed_portfolio(entity_service)

    summary = dashboard_service.get_summary()

    assert summary.total_portfolio_value == Decimal("1850.00")
    assert summary.active_loans_count == 3
    assert summary.outstanding_principal == Decimal("1390.00")
    assert summary.active_borrowers_count == 2
    assert summary.status_distribution.labels[0] == "active"
    assert summary.status_distribution.values == [2, 1, 1]
    assert sorted(summary.apr_distribution) == [Decimal("5.5"), Decimal("7")]

    assert summary.portfolio_trend.months[0] == "2024-11"
    assert summary.portfolio_trend.months[-1] == "2025-10"
    assert summary.portfolio_trend.values[-2:] == [Decimal("1000.00"), Decimal("500")]
    assert sum(summary.portfolio_trend.values) == Decimal("1500.00")

    assert summary.monthly_payments.months == ["2025-05", "2025-06", "2025-07", "2025-08", "2025-09", "2025-10"]
    assert summary.monthly_payments.amounts[0] == Decimal("60.00")
    assert summary.monthly_payments.amounts[-1] == Decimal("40.00")


def test_unknown_state_bucket() -> None:
    service = InMemoryEntityService(initial_state=None)
    service.create(LOAN, {"loanId": "L-1"})
    summary = aggregate_dashboard(service.search(LOAN, match_all()), [], date(2025, 1, 1))
    assert summary.status_distribution.labels == ["unknown"]


def test_reads_within_ttl_are_cached(entity_service, dashboard_service, clock) -> None:
    seed_portfolio(entity_service)
    first = dashboard_service.get_summary()

    add_loan(entity_service, "L-5", "active", principalAmount="9999")
    clock.advance(299)
    second = dashboard_service.get_summary()

    assert second == first
    assert len(entity_service.calls_named("search")) == 2


def test_expired_cache_recomputes(entity_service, dashboard_service, clock) -> None:
    first = dashboard_service.get_summary()
    add_loan(entity_service, "L-5", "active", principalAmount="10")
    clock.advance(300)

    second = dashboard_service.get_summary()
    assert first.active_loans_count == 0
    assert second.active_loans_count == 1


def test_invalidate_forces_recompute(entity_service, dashboard_service) -> None:
    first = dashboard_service.get_summary()
    add_loan(entity_service, "L-5", "active", principalAmount="10")

    dashboard_service.invalidate_cache()
    second = dashboard_service.get_summary()

    assert first.total_portfolio_value == Decimal("0")
    assert second.total_portfolio_value == Decimal("10")


class FailingEntityService(InMemoryEntityService):
    def __init__(self, error):
        super().__init__()
        self.error = error

    def search(self, model, condition):
        raise self.error


def test_aggregation_failures_are_wrapped() -> None:
    service = DashboardService(FailingEntityService(RuntimeError("bad data")))
    with pytest.raises(DashboardAggregationError):
        service.get_summary()


def test_unavailable_source_propagates() -> None:
    service = DashboardService(FailingEntityService(DependencyUnavailableError("down")))
    with pytest.raises(DependencyUnavailableError):
        service.get_summary()


def test_summary_endpoint(client, entity_service) -> None:
    seed_portfolio(entity_service)

    response = client.get("/dashboard/summary")
    assert response.status_code == 200
    body = response.json()
    assert body["activeLoansCount"] == 3
    assert body["totalPortfolioValue"] == 1850.0
    assert body["outstandingPrincipal"] == 1390.0
    assert all(isinstance(value, (int, float)) for value in body["portfolioTrend"]["values"])
    assert sorted(body["aprDistribution"]) == [5.5, 7.0]
    assert body["monthlyPayments"]["amounts"][-1] == 40.0
    assert body["statusDistribution"]["labels"][0] == "active"
    assert len(body["portfolioTrend"]["months"]) == 12
    assert len(body["monthlyPayments"]["amounts"]) == 6


def test_summary_endpoint_serves_cache_until_invalidated(client, entity_service) -> None:
    first = client.get("/dashboard/summary").json()
    add_loan(entity_service, "L-9", "active", principalAmount="10")

    assert client.get("/dashboard/summary").json() == first

    assert client.post("/dashboard/cache/invalidate").status_code == 204
    assert client.get("/dashboard/summary").json()["activeLoansCount"] == 1


def test_summary_endpoint_error_statuses() -> None:
    unavailable = FailingEntityService(DependencyUnavailableError("down"))
    client = TestClient(create_app(entity_service=unavailable))
    assert client.get("/dashboard/summary").status_code == 503

    broken = FailingEntityService(RuntimeError("bad data"))
    client = TestClient(create_app(entity_service=broken))
    response = client.get("/dashboard/summary")
    assert response.status_code == 500
    assert "bad data" in response.json()["detail"]


def test_summary_without_dashboard_service_returns_503(entity_service) -> None:
    app = create_app(entity_service=entity_service)
    app.state.dashboard_service = None
    client = TestClient(app)

    assert client.get("/dashboard/summary").status_code == 503
    assert client.post("/dashboard/cache/invalidate").status_code == 204


def _run_threads(count, target):
    threads = [threading.Thread(target=target) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    assert not any(thread.is_alive() for thread in threads)


def test_concurrent_readers_share_one_aggregation(entity_service, dashboard_service) -> None:
    seed_portfolio(entity_service)
    barrier = threading.Barrier(8)
    results = []

    def reader():
        barrier.wait()
        results.append(dashboard_service.get_summary())

    _run_threads(8, reader)

    assert len(results) == 8
    assert all(result is results[0] for result in results)
    # One LOAN and one PAYMENT search for the whole burst
    assert len(entity_service.calls_named("search")) == 2


def test_reads_and_invalidations_interleave_safely(entity_service, dashboard_service) -> None:
    seed_portfolio(entity_service)
    barrier = threading.Barrier(6)
    results = []
    errors = []

    def worker(invalidate):
        barrier.wait()
        try:
            for _ in range(20):
                if invalidate:
                    dashboard_service.invalidate_cache()
                results.append(dashboard_service.get_summary())
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(index % 2 == 0,)) for index in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    assert not any(thread.is_alive() for thread in threads)

    assert errors == []
    assert len(results) == 120
    for summary in results:
        assert isinstance(summary, DashboardSummary)
        assert summary.active_loans_count == 3
        assert summary.total_portfolio_value == Decimal("1850.00")
        assert len(summary.portfolio_trend.months) == 12
        assert len(summary.monthly_payments.amounts) == 6

    # A read that starts after an invalidation always recomputes
    searches = len(entity_service.calls_named("search"))
    add_loan(entity_service, "L-NEW", "active", principalAmount="50")
    dashboard_service.invalidate_cache()
    fresh = dashboard_service.get_summary()
    assert len(entity_service.calls_named("search")) == searches + 2
    assert fresh.active_loans_count == 4
