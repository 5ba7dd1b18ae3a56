import importlib
from decimal import Decimal
from uuid import uuid4

import logfire
import pytest

import nybenchmark.main
from nybenchmark.schemas import EntityKind, VerificationStatus

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}


def test_root(client) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "NY Benchmark API"}


def test_llms_txt(client) -> None:
    response = client.get("/llms.txt")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "/api/rankings" in response.text


def test_logfire_instruments_app_when_token_set(monkeypatch) -> None:
    instrumented = []
    monkeypatch.setattr(logfire, "configure", lambda *args, **kwargs: None)
    monkeypatch.setattr(logfire, "instrument_fastapi", lambda app, **kwargs: instrumented.append(app))
    monkeypatch.setenv("LOGFIRE_TOKEN", "test-token")

    try:
        module = importlib.reload(nybenchmark.main)
        assert instrumented == [module.app]
    finally:
        monkeypatch.delenv("LOGFIRE_TOKEN")
        importlib.reload(nybenchmark.main)


# =============================================================================
# Comparisons
# =============================================================================


def test_rankings(client, factory) -> None:
    yonkers = factory.entity("Yonkers")
    factory.expenditure(yonkers, "osc_a1990_4", 2023, 1000)
    factory.balance(yonkers, "A917", 2023, 250)

    response = client.get("/api/rankings")

    assert response.status_code == 200
    body = response.json()
    assert body["year"] == 2023
    assert body["fund_balance"] == [{"name": "Yonkers", "slug": "yonkers", "value": 25.0}]
    assert body["per_capita"] == []


def test_non_filers(client, factory) -> None:
    albany = factory.entity("Albany")
    factory.entity("Troy")
    factory.expenditure(albany, "osc_a1990_4", 2024, 1000)

    body = client.get("/api/non-filers").json()

    assert body["as_of_year"] == 2024
    assert [e["name"] for e in body["chronic"]] == ["Troy"]
    assert body["filer_count"] == 1

    body = client.get("/api/non-filers", params={"as_of_year": 2026}).json()
    assert body["as_of_year"] == 2026
    assert [e["name"] for e in body["chronic"]] == ["Troy"]
    assert [e["name"] for e in body["sporadic"]] == ["Albany"]


def test_counties_without_data(client) -> None:
    body = client.get("/api/counties/compare", params={"year": 2024}).json()

    assert body["years"] == []
    assert body["year"] is None
    assert body["fund_balance"] == []


def test_counties_compare(client, factory) -> None:
    albany = factory.entity("Albany County", kind=EntityKind.COUNTY)
    factory.expenditure(albany, "osc_a1990_4", 2024, 1000)
    factory.balance(albany, "A917", 2024, 150)

    body = client.get("/api/counties/compare").json()

    assert body["year"] == 2024
    (series,) = body["fund_balance"]
    assert series["data"] == [{"x": 46.2, "y": 15.0, "name": "Albany County", "slug": "albany-county"}]


def test_school_districts_compare_normalizes_selections(client) -> None:
    response = client.get(
        "/api/school-districts/compare",
        params={"x_axis": "school_vibes", "min_enrollment": 75, "district_type": "charter"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["x_axis"] == "school_enrollment"
    assert body["y_axis"] == "school_per_pupil_spending"
    assert body["min_enrollment"] == 0
    assert body["district_type"] is None
    assert body["min_enrollment_options"] == [0, 50, 100, 250, 500, 1000]
    assert body["legal_type_labels"]["big_five"] == "Big Five"


def test_entity_trends(client, factory) -> None:
    yonkers = factory.entity("Yonkers")
    factory.expenditure(yonkers, "osc_a1990_4", 2023, 1000)
    factory.balance(yonkers, "A917", 2023, 100)
    factory.population(yonkers, 2020, 4)

    response = client.get("/api/entities/yonkers/trends")

    assert response.status_code == 200
    body = response.json()
    assert body["entity"] == {"name": "Yonkers", "slug": "yonkers", "kind": "city"}
    assert body["ratios"]["fund_balance_pct"]["data"] == {"2023": 10.0}
    assert body["hero"]["per_capita_spending"] == 250


def test_entity_trends_not_found(client) -> None:
    response = client.get("/api/entities/atlantis/trends")

    assert response.status_code == 404
    assert response.json()["detail"] == "Entity not found"


# =============================================================================
# Observations
# =============================================================================


@pytest.fixture
def yonkers_afr(factory):
    city = factory.entity("Yonkers")
    metric = factory.metric("osc_a1990_4")
    document = factory.document(city, 2023)
    return city, metric, document


def _payload(entity, metric, document, **overrides):
    payload = {
        "entity_id": str(entity.id),
        "metric_id": str(metric.id),
        "document_id": str(document.id),
        "value_numeric": "1234.50",
        "page_reference": "p. 12",
    }
    payload.update(overrides)
    return payload


def test_create_observation(client, yonkers_afr) -> None:
    response = client.post("/api/observations", json=_payload(*yonkers_afr))

    assert response.status_code == 201
    body = response.json()
    assert body["fiscal_year"] == 2023
    assert body["verification_status"] == VerificationStatus.PROVISIONAL.value
    assert Decimal(str(body["value_numeric"])) == Decimal("1234.50")


def test_create_observation_rejects_other_entity_document(client, yonkers_afr, factory) -> None:
    city, metric, _ = yonkers_afr
    other = factory.document(factory.entity("Albany"), 2023)

    response = client.post("/api/observations", json=_payload(city, metric, other))

    assert response.status_code == 422
    assert response.json() == {"detail": {"document_id": ["must belong to the same entity"]}}


def test_create_observation_needs_a_value(client, yonkers_afr) -> None:
    response = client.post("/api/observations", json=_payload(*yonkers_afr, value_numeric=None))

    assert response.status_code == 422


def _created_id(client, yonkers_afr) -> str:
    return client.post("/api/observations", json=_payload(*yonkers_afr)).json()["id"]


def test_verify_requires_admin_token(client, yonkers_afr) -> None:
    observation_id = _created_id(client, yonkers_afr)

    assert client.post(f"/api/observations/{observation_id}/verify").status_code == 401
    response = client.post(
        f"/api/observations/{observation_id}/verify",
        headers={"Authorization": "Bearer wrong"},
    )
    assert response.status_code == 403


def test_verify_observation(client, yonkers_afr) -> None:
    observation_id = _created_id(client, yonkers_afr)

    response = client.post(f"/api/observations/{observation_id}/verify", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["verification_status"] == "verified"
    assert response.json()["verified_by"] == "admin"


def test_flag_observation(client, yonkers_afr) -> None:
    observation_id = _created_id(client, yonkers_afr)

    response = client.post(
        f"/api/observations/{observation_id}/flag",
        json={"reason": "Amount is from the prior year column"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["verification_status"] == "flagged"

    missing_reason = client.post(f"/api/observations/{observation_id}/flag", json={}, headers=ADMIN_HEADERS)
    assert missing_reason.status_code == 422


def test_review_unknown_observation(client) -> None:
    response = client.post(f"/api/observations/{uuid4()}/verify", headers=ADMIN_HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "Observation not found"


def test_next_for_review(client, yonkers_afr, factory) -> None:
    city, _, _ = yonkers_afr
    observation_id = _created_id(client, yonkers_afr)

    assert client.get(f"/api/observations/{observation_id}/next", headers=ADMIN_HEADERS).json() is None

    other = factory.observation(city, "osc_a3120_4", 2023, 5, status=VerificationStatus.PROVISIONAL)
    response = client.get(f"/api/observations/{observation_id}/next", headers=ADMIN_HEADERS)
    assert response.json()["id"] == str(other.id)
