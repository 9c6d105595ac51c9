from datetime import date

import pytest
from fastapi.testclient import TestClient

from opsadmin.app import create_app
from opsadmin.services.dashboard_service import DashboardService
from opsadmin.services.entity_service import InMemoryEntityService


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEntityService(InMemoryEntityService):
    """In-memory platform that remembers every call made through the contract."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def create(self, model, entity):
        self.calls.append(("create", model.name, entity.get(model.business_key)))
        return super().create(model, entity)

    def get_by_id(self, model, entity_id):
        self.calls.append(("get_by_id", model.name, entity_id))
        return super().get_by_id(model, entity_id)

    def find_by_business_id(self, model, value):
        self.calls.append(("find_by_business_id", model.name, value))
        return super().find_by_business_id(model, value)

    def update(self, model, entity_id, entity, transition=None):
        self.calls.append(("update", model.name, entity_id, transition))
        return super().update(model, entity_id, entity, transition)

    def update_by_business_id(self, model, value, entity, transition=None):
        self.calls.append(("update_by_business_id", model.name, value, transition))
        return super().update_by_business_id(model, value, entity, transition)

    def search(self, model, condition):
        self.calls.append(("search", model.name))
        return super().search(model, condition)

    def delete(self, model, entity_id):
        self.calls.append(("delete", model.name, entity_id))
        return super().delete(model, entity_id)

    def calls_named(self, name):
        return [call for call in self.calls if call[0] == name]


TODAY = date(2025, 10, 15)


@pytest.fixture
def entity_service():
    return RecordingEntityService(
        transition_states={
            "cancel_payment": "canceled",
            "mark_sent": "sent",
            "activate": "active",
            "fund": "funded",
            "close": "closed",
        }
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dashboard_service(entity_service, clock):
    return DashboardService(entity_service, ttl_seconds=300, clock=clock, today=lambda: TODAY)


@pytest.fixture
def app(entity_service, dashboard_service):
    return create_app(entity_service=entity_service, dashboard_service=dashboard_service)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
