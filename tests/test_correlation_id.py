from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from leadboard import audit, events


@pytest.fixture()
def client(api_client: TestClient) -> TestClient:
    return api_client


def _create_lead(client: TestClient, correlation_id: str) -> dict:
    response = client.post(
        "/api/leads",
        json={
            "customer_name": "Corr Lead",
            "customer_phone": "0500000001",
            "items": [{"product_type": "fw", "size": "A3"}],
        },
        headers={"X-Correlation-Id": correlation_id},
    )
    assert response.status_code == 201
    return response.json()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_audit_uses_request_correlation_id(client: TestClient) -> None:
    _create_lead(client, "corr-audit-1")

    lead_audits = [entry for entry in audit.activity_entries if entry.get("entity_type") == "lead"]
    assert lead_audits
    assert lead_audits[-1]["correlation_id"] == "corr-audit-1"


def test_event_envelope_includes_correlation_id(client: TestClient) -> None:
    lead = _create_lead(client, "corr-event-1")

    response = client.post(
        "/api/board/transitions",
        json={"lead_id": lead["id"], "target": "photos_received"},
        headers={"X-Correlation-Id": "corr-event-2"},
    )
    assert response.status_code == 200

    changed = [item for item in events.published_events if item.get("event_type") == events.LEADS_CHANGED]
    assert [item.get("correlation_id") for item in changed] == ["corr-event-1", "corr-event-2"]
    assert changed[-1]["payload"] == {"operation": "update", "lead_ids": [lead["id"]]}


@pytest.mark.parametrize("supplied", ["", "   ", "has spaces inside", "x" * 129, "semi;colon"])
def test_unusable_correlation_id_is_replaced(client: TestClient, supplied: str) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": supplied})

    header_value = response.headers["x-correlation-id"]
    assert header_value != supplied.strip()
    assert uuid.UUID(header_value)
    assert response.json()["correlation_id"] == header_value
