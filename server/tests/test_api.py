from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gridtycoon.main import app
from gridtycoon.models.domain import TerritoryRecord
from gridtycoon.routers.sessions import get_territory_provider
from gridtycoon.services.coordinator import get_coordinator
from gridtycoon.services.overpass import StaticTerritoryProvider


@pytest.fixture
def client(coordinator):  # noqa: ANN001
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_territory_provider] = lambda: StaticTerritoryProvider(
        [TerritoryRecord("Goa", "IN-GA", 1656929)]
    )
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_root_health(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_then_list(client: TestClient) -> None:
    response = client.post("/sessions/s1/participants", json={"first_name": "Asha", "osm_username": "asha"})

    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] == "s1"
    assert body["participant"]["osm_username"] == "asha"

    listing = client.get("/sessions/s1/participants").json()
    assert [p["id"] for p in listing["participants"]] == [body["participant_id"]]


def test_register_validation_error(client: TestClient) -> None:
    response = client.post("/sessions/s1/participants", json={"first_name": " ", "osm_username": "asha"})

    assert response.status_code == 400
    assert response.json()["detail"] == "First name is required"


def test_setup_reports_incomplete_teams(client: TestClient) -> None:
    for index in range(4):
        client.post("/sessions/s1/participants", json={"first_name": f"M{index}", "osm_username": f"m{index}"})

    response = client.post("/sessions/s1/setup")

    assert response.status_code == 400
    assert "Add 2 more" in response.json()["detail"]


def test_setup_returns_summary(client: TestClient, store) -> None:  # noqa: ANN001
    store.procedures["create_teams_with_role_assignment"] = {"teams_created": 1}
    store.procedures["distribute_territories_to_teams"] = {"territories_distributed": 1}
    for index in range(3):
        client.post("/sessions/s1/participants", json={"first_name": f"M{index}", "osm_username": f"m{index}"})

    response = client.post("/sessions/s1/setup")

    assert response.status_code == 200
    body = response.json()
    assert body["participants_total"] == 3
    assert body["teams_created"] == 1
    assert body["territories_distributed"] == 1


def test_team_lookup_without_team(client: TestClient) -> None:
    response = client.get("/participants/p1/team")

    assert response.status_code == 200
    assert response.json() == {"participant_id": "p1", "team_info": None}


def test_missing_assignment_is_404(client: TestClient) -> None:
    response = client.get("/assignments/a1/overpass")

    assert response.status_code == 404


def test_status_update(client: TestClient, store) -> None:  # noqa: ANN001
    store.procedures["update_territory_assignment_status"] = {"status": "current"}

    response = client.post("/assignments/a1/status", json={"status": "current", "participant_id": "p1"})

    assert response.status_code == 200
    assert response.json()["data"] == {"status": "current"}
