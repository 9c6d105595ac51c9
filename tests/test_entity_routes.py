from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from opsadmin.app import create_app
from opsadmin.core.errors import DependencyUnavailableError
from opsadmin.models.registry import ACCRUAL, ENTITY_MODELS, STUDY
from opsadmin.services.entity_service import InMemoryEntityService


def sample(model, suffix="001", **fields):
    record = {model.business_key: f"{model.name.upper()}-{suffix}", "description": f"{model.name} sample"}
    record.update(fields)
    return record


def create(client, model, suffix="001", **fields):
    response = client.post(f"/{model.path}", json=sample(model, suffix, **fields))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.parametrize("model", ENTITY_MODELS, ids=lambda m: m.name)
def test_create_then_fetch_by_business_id(client, model) -> None:
    created = create(client, model)
    assert created["meta"]["id"]
    assert created["meta"]["modelKey"] == {"name": model.name, "version": 1}

    response = client.get(f"/{model.path}/business/{model.name.upper()}-001")
    assert response.status_code == 200
    body = response.json()
    assert body["entity"][model.business_key] == f"{model.name.upper()}-001"
    assert body["meta"]["id"] == created["meta"]["id"]


@pytest.mark.parametrize("model", ENTITY_MODELS, ids=lambda m: m.name)
def test_create_sets_location_header(client, model) -> None:
    response = client.post(f"/{model.path}", json=sample(model))
    assert response.status_code == 201
    entity_id = response.json()["meta"]["id"]
    assert response.headers["location"].endswith(f"/{model.path}/{entity_id}")


@pytest.mark.parametrize("model", ENTITY_MODELS, ids=lambda m: m.name)
def test_get_by_id_round_trip(client, model) -> None:
    created = create(client, model)
    response = client.get(f"/{model.path}/{created['meta']['id']}")
    assert response.status_code == 200
    assert response.json()["entity"] == created["entity"]


@pytest.mark.parametrize("model", ENTITY_MODELS, ids=lambda m: m.name)
def test_missing_entities_return_404(client, model) -> None:
    assert client.get(f"/{model.path}/{uuid4()}").status_code == 404
    assert client.get(f"/{model.path}/business/NOPE").status_code == 404


@pytest.mark.parametrize("model", ENTITY_MODELS, ids=lambda m: m.name)
def test_duplicate_business_id_returns_409(client, model) -> None:
    create(client, model)
    response = client.post(f"/{model.path}", json=sample(model))
    assert response.status_code == 409
    assert "already exists" in response.json()["detail"]


def test_create_requires_business_id(client) -> None:
    response = client.post("/accrual", json={"loanId": "LOAN-1"})
    assert response.status_code == 400
    assert response.json()["detail"] == "accrualId is required"

    response = client.post("/accrual", json={"accrualId": "   "})
    assert response.status_code == 400


def test_create_rejects_non_object_body(client) -> None:
    assert client.post("/site", json=["not", "an", "object"]).status_code == 400
    assert client.post("/site").status_code == 400


def test_create_with_transition_applies_it(client, entity_service) -> None:
    response = client.post("/accrual", params={"transition": "CALCULATE"}, json=sample(ACCRUAL))
    assert response.status_code == 201
    assert response.json()["meta"]["transitionForLatestSave"] == "CALCULATE"
    assert entity_service.calls_named("update")[-1][3] == "CALCULATE"


def test_create_with_blank_transition_does_not_update(client, entity_service) -> None:
    response = client.post("/accrual", params={"transition": "  "}, json=sample(ACCRUAL))
    assert response.status_code == 201
    assert entity_service.calls_named("update") == []


@pytest.mark.parametrize("transition", [None, "", "   "])
def test_update_without_transition_is_plain_update(client, entity_service, transition) -> None:
    created = create(client, STUDY)
    params = {} if transition is None else {"transition": transition}
    response = client.put(
        f"/study/{created['meta']['id']}",
        params=params,
        json=sample(STUDY, title="Renamed"),
    )
    assert response.status_code == 200
    assert response.json()["entity"]["title"] == "Renamed"
    assert response.json()["meta"]["transitionForLatestSave"] is None
    assert entity_service.calls_named("update")[-1][3] is None


def test_update_forwards_exact_transition_name(client, entity_service) -> None:
    created = create(client, STUDY)
    response = client.put(
        f"/study/{created['meta']['id']}",
        params={"transition": "activate_study"},
        json=sample(STUDY),
    )
    assert response.status_code == 200
    assert response.json()["meta"]["transitionForLatestSave"] == "activate_study"
    assert entity_service.calls_named("update")[-1][3] == "activate_study"


def test_update_missing_entity_returns_404(client, entity_service) -> None:
    response = client.put(f"/study/{uuid4()}", json=sample(STUDY))
    assert response.status_code == 404
    assert entity_service.calls_named("update") == []


def test_update_rejects_empty_body(client) -> None:
    created = create(client, STUDY)
    assert client.put(f"/study/{created['meta']['id']}", json={}).status_code == 400


def test_update_to_existing_business_id_returns_400(client) -> None:
    create(client, STUDY, "001")
    second = create(client, STUDY, "002")
    response = client.put(f"/study/{second['meta']['id']}", json=sample(STUDY, "001"))
    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_list_returns_everything_without_filters(client) -> None:
    create(client, ACCRUAL, "001")
    create(client, ACCRUAL, "002")
    create(client, STUDY, "001")

    response = client.get("/accrual")
    assert response.status_code == 200
    assert sorted(item["entity"]["accrualId"] for item in response.json()) == ["ACCRUAL-001", "ACCRUAL-002"]


def test_list_filters_on_declared_fields_and_state(client, entity_service) -> None:
    first = create(client, ACCRUAL, "001", loanId="LOAN-1")
    create(client, ACCRUAL, "002", loanId="LOAN-2")

    response = client.get("/accrual", params={"loanId": "LOAN-1"})
    assert [item["entity"]["accrualId"] for item in response.json()] == ["ACCRUAL-001"]

    # Undeclared fields are not filters
    response = client.get("/accrual", params={"description": "nothing matches"})
    assert len(response.json()) == 2

    assert client.get("/accrual", params={"state": "POSTED"}).json() == []
    response = client.get("/accrual", params={"state": first["meta"]["state"]})
    assert len(response.json()) == 2


def test_delete_then_get_returns_404(client) -> None:
    created = create(client, ACCRUAL)
    entity_id = created["meta"]["id"]

    response = client.delete(f"/accrual/{entity_id}")
    assert response.status_code == 204
    assert client.get(f"/accrual/{entity_id}").status_code == 404


def test_delete_missing_entity_returns_400(client) -> None:
    response = client.delete(f"/accrual/{uuid4()}")
    assert response.status_code == 400
    assert "Failed to delete accrual" in response.json()["detail"]


def test_malformed_uuid_returns_400(client) -> None:
    assert client.get("/accrual/not-a-uuid").status_code == 400


class UnavailableEntityService(InMemoryEntityService):
    def search(self, model, condition):
        raise DependencyUnavailableError("connection refused")

    def find_by_business_id(self, model, value):
        raise DependencyUnavailableError("connection refused")


def test_unavailable_platform_returns_503() -> None:
    client = TestClient(create_app(entity_service=UnavailableEntityService()))
    assert client.get("/accrual").status_code == 503
    assert client.get("/accrual/business/ACC-1").status_code == 503


class BrokenEntityService(InMemoryEntityService):
    def find_by_business_id(self, model, value):
        raise RuntimeError("boom")


def test_unexpected_failure_on_get_returns_400() -> None:
    client = TestClient(create_app(entity_service=BrokenEntityService()))
    response = client.get("/site/business/SITE-1")
    assert response.status_code == 400
    assert "boom" in response.json()["detail"]


def test_health_and_root(client) -> None:
    health = client.get("/health").json()
    assert health["status"] == "healthy"

    root = client.get("/").json()
    assert root["endpoints"]["shipment"] == "/shipment"
    assert root["endpoints"]["dashboard"] == "/dashboard/summary"
