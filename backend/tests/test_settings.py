from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from nomadsuite import models
from nomadsuite.config import settings
from nomadsuite.state import RuntimeState


def test_settings_defaults(client: TestClient) -> None:
    resp = client.get("/settings")
    assert resp.status_code == 200
    data = resp.json()
    assert data["residency_threshold_days"] == 183
    assert data["residency_warning_days"] == 150
    assert data["schengen_limit_days"] == 90
    assert data["schengen_window_days"] == 180
    assert data["schengen_warning_days"] == 72


def test_settings_update_is_persisted(client: TestClient, session: Session) -> None:
    resp = client.put("/settings", json={"schengen_warning_days": 60, "residency_warning_days": 120})
    assert resp.status_code == 200
    data = resp.json()
    assert data["schengen_warning_days"] == 60
    assert data["residency_warning_days"] == 120
    assert data["schengen_limit_days"] == 90

    stored = {item.key: item.value for item in session.query(models.AppSetting).all()}
    assert stored["schengen_warning_days"] == "60"
    assert stored["residency_warning_days"] == "120"

    reloaded = RuntimeState(settings)
    reloaded.load_from_db(session)
    assert reloaded.thresholds.schengen_warning_days == 60


def test_inconsistent_settings_are_rejected(client: TestClient) -> None:
    resp = client.put("/settings", json={"schengen_warning_days": 95})
    assert resp.status_code == 400
    assert "schengen_warning_days" in resp.json()["detail"]

    current = client.get("/settings").json()
    assert current["schengen_warning_days"] == 72


def test_out_of_range_settings_fail_validation(client: TestClient) -> None:
    resp = client.put("/settings", json={"residency_threshold_days": 0})
    assert resp.status_code == 422


def test_thresholds_drive_schengen_alerts(client: TestClient) -> None:
    resp = client.post(
        "/api/trips",
        json={"country": "Italy", "entry_date": "2024-05-01", "exit_date": "2024-06-29"},
    )
    assert resp.status_code == 201

    params = {"as_of": "2024-06-30"}
    before = client.get("/api/trips/calculations/schengen", params=params).json()
    assert before["days_used"] == 60
    assert before["alert_level"] == "none"

    assert client.put("/settings", json={"schengen_warning_days": 50}).status_code == 200
    after = client.get("/api/trips/calculations/schengen", params=params).json()
    assert after["alert_level"] == "yellow"
    assert after["days_remaining"] == 30


def test_oversized_schengen_window_fails_validation(client: TestClient, session: Session) -> None:
    resp = client.put("/settings", json={"schengen_window_days": 1000000})
    assert resp.status_code == 422
    assert session.query(models.AppSetting).count() == 0

    status_resp = client.get("/api/trips/calculations/schengen", params={"as_of": "2024-06-30"})
    assert status_resp.status_code == 200
    assert status_resp.json()["window_start"] == "2024-01-03"


def test_out_of_range_stored_threshold_is_rejected_on_load(session: Session) -> None:
    session.add(models.AppSetting(key="schengen_window_days", value="1000000"))
    session.commit()

    state = RuntimeState(settings)
    with pytest.raises(ValueError):
        state.load_from_db(session)
    assert state.thresholds.schengen_window_days == 180
