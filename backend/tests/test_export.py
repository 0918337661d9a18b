from __future__ import annotations

import datetime as dt
import io
import logging

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from nomadsuite import models


def test_travel_report_export(client: TestClient, session: Session) -> None:
    for payload in (
        {"country": "Thailand", "entry_date": "2024-01-01", "exit_date": "2024-02-15"},
        {"country": "Vietnam", "entry_date": "2024-02-15", "exit_date": "2024-03-15"},
        {"country": "Japan", "entry_date": "2024-03-15"},
    ):
        assert client.post("/api/trips", json=payload).status_code == 201

    resp = client.post(
        "/api/exports",
        json={"format": "xlsx", "range_start": "2024-01-01", "range_end": "2024-12-31"},
        params={"as_of": "2024-03-20"},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["download_path"] == f"/api/exports/{data['id']}"
    assert len(data["checksum"]) == 64

    record = session.get(models.ExportRecord, data["id"])
    assert record is not None
    assert record.path.endswith(".xlsx")

    download = client.get(data["download_path"])
    assert download.status_code == 200
    assert download.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )

    workbook = load_workbook(io.BytesIO(download.content))
    assert workbook.sheetnames == ["Trips", "Tax residency", "Summary"]
    trip_rows = list(workbook["Trips"].iter_rows(min_row=2, values_only=True))
    assert [row[1] for row in trip_rows] == ["TH", "VN", "JP"]
    assert trip_rows[2][3] == "ongoing"
    assert trip_rows[2][4] == 6
    residency_rows = list(workbook["Tax residency"].iter_rows(min_row=2, values_only=True))
    assert residency_rows[0][:3] == ("Thailand", "TH", 46)


def test_export_range_filters_trips(client: TestClient) -> None:
    client.post("/api/trips", json={"country": "Spain", "entry_date": "2023-05-01", "exit_date": "2023-05-10"})
    client.post("/api/trips", json={"country": "Mexico", "entry_date": "2024-05-01", "exit_date": "2024-05-10"})

    resp = client.post(
        "/api/exports",
        json={"range_start": "2024-01-01", "range_end": "2024-12-31"},
        params={"as_of": "2024-12-31"},
    )
    assert resp.status_code == 201
    download = client.get(resp.json()["download_path"])
    workbook = load_workbook(io.BytesIO(download.content))
    countries = [row[1] for row in workbook["Trips"].iter_rows(min_row=2, values_only=True)]
    assert countries == ["MX"]


def test_export_rejects_inverted_range(client: TestClient) -> None:
    resp = client.post("/api/exports", json={"range_start": "2024-12-31", "range_end": "2024-01-01"})
    assert resp.status_code == 422


def test_missing_export_returns_404(client: TestClient) -> None:
    resp = client.get("/api/exports/424242")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Export not found"}


def test_export_logs_each_malformed_trip_once(
    client: TestClient, session: Session, caplog: pytest.LogCaptureFixture
) -> None:
    session.add(models.Trip(country="ES", entry_date=dt.date(2024, 3, 10), exit_date=dt.date(2024, 3, 1)))
    session.commit()
    created = client.post(
        "/api/trips",
        json={"country": "Mexico", "entry_date": "2024-05-01", "exit_date": "2024-05-10"},
    )
    assert created.status_code == 201

    caplog.set_level(logging.WARNING, logger="nomadsuite.compliance")
    resp = client.post(
        "/api/exports",
        json={"range_start": "2024-01-01", "range_end": "2024-12-31"},
        params={"as_of": "2024-12-31"},
    )
    assert resp.status_code == 201
    skipped = [record for record in caplog.records if record.name == "nomadsuite.compliance"]
    assert len(skipped) == 1

    workbook = load_workbook(io.BytesIO(client.get(resp.json()["download_path"]).content))
    residency_rows = list(workbook["Tax residency"].iter_rows(min_row=2, values_only=True))
    assert [row[1] for row in residency_rows] == ["MX"]
