from __future__ import annotations

import json
import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from leadboard.logging import JsonLogFormatter, TextLogFormatter


@pytest.fixture()
def client(api_client: TestClient) -> TestClient:
    return api_client


def _create_lead(client: TestClient, correlation_id: str, payment_type: str | None = None) -> dict:
    response = client.post(
        "/api/leads",
        json={
            "customer_name": "Log Lead",
            "customer_phone": "0500000002",
            "payment_type": payment_type,
            "items": [{"product_type": "ft", "size": "A5"}],
        },
        headers={"X-Correlation-Id": correlation_id},
    )
    assert response.status_code == 201
    return response.json()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    lead_id = uuid.uuid4()
    path = f"/api/leads/{lead_id}"
    response = client.get(path, headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "leadboard.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_transition_context_and_correlation_id(
    client: TestClient,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    lead = _create_lead(client, "abc-456")

    response = client.post(
        "/api/board/transitions",
        json={"lead_id": lead["id"], "target": "production"},
        headers={"X-Correlation-Id": "abc-456"},
    )
    assert response.status_code == 422

    board_records = [record for record in caplog.records if record.name == "leadboard.board"]
    assert any(
        record.getMessage() == "board.transition_rejected"
        and getattr(record, "lead_id", None) == lead["id"]
        and getattr(record, "from_status", None) == "leads"
        and getattr(record, "to_status", None) == "production"
        and getattr(record, "correlation_id", None) == "abc-456"
        for record in board_records
    )


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "leadboard.board",
            "levelname": "INFO",
            "msg": "board.transition_applied",
            "lead_id": "lead-1",
            "to_status": "delivered",
            "customer_phone": "0500000000",
            "correlation_id": "fmt-1",
            "error": "x" * 600,
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "board.transition_applied"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"]["lead_id"] == "lead-1"
    assert payload["fields"]["to_status"] == "delivered"
    assert "customer_phone" not in payload["fields"]
    assert len(payload["fields"]["error"]) == 500


def test_text_formatter_appends_known_fields() -> None:
    record = logging.makeLogRecord(
        {
            "name": "leadboard.board",
            "levelname": "WARNING",
            "msg": "board.transition_rejected",
            "lead_id": "lead-2",
            "reason": "payment_type_missing",
            "customer_phone": "0500000000",
            "correlation_id": "fmt-2",
        }
    )

    line = TextLogFormatter().format(record)

    assert "leadboard.board [fmt-2] board.transition_rejected" in line
    assert line.endswith("lead_id=lead-2 reason=payment_type_missing")
    assert "customer_phone" not in line
