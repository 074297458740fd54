from fastapi.testclient import TestClient

from plantdesk.main import create_app


def _client() -> TestClient:
    return TestClient(create_app())


def test_ping_is_public():
    response = _client().get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_whoami_resolves_bearer_token():
    response = _client().get("/ping/whoami", headers={"Authorization": "Bearer manager-token"})

    assert response.status_code == 200
    assert response.json() == {
        "user_id": "manager-1",
        "role": "plant_manager",
        "tier": "plant",
        "tenant_id": "acme",
        "plant_ids": ["plant-1"],
    }


def test_unknown_token_is_rejected_by_middleware():
    response = _client().get("/ping", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication credentials"


def test_non_bearer_scheme_is_rejected():
    response = _client().get("/ping/whoami", headers={"Authorization": "Basic dXNlcjpwYXNz"})

    assert response.status_code == 401


def test_protected_route_without_credentials_is_unauthorized():
    response = _client().get("/ping/whoami")

    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


def test_metrics_snapshot_is_exposed():
    response = _client().get("/metrics")

    assert response.status_code == 200
    assert isinstance(response.json(), dict)
