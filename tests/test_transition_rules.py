from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from leadboard.board.rules import (
    Allowed,
    Rejected,
    can_transition,
    is_missing_payment_info,
    is_stage,
    needs_payment_info,
    order_total,
)
from leadboard.crm.schemas import LEAD_STATUSES, PAYMENT_TYPES, LeadItemRead, LeadRead


NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def _lead(
    status: str = "leads",
    payment_type: str | None = None,
    delivery_method: str | None = None,
    items: list[LeadItemRead] | None = None,
) -> LeadRead:
    return LeadRead(
        id=uuid.uuid4(),
        order_id="FW-0001",
        customer_name="Mariam Saleh",
        customer_phone="0501234567",
        status=status,
        created_by="user-1",
        payment_type=payment_type,
        delivery_method=delivery_method,
        last_status_change=NOW,
        created_at=NOW,
        updated_at=NOW,
        items=items or [],
    )


def _item(lead_id: uuid.UUID, price: str | None, quantity: int = 1) -> LeadItemRead:
    return LeadItemRead(
        id=uuid.uuid4(),
        lead_id=lead_id,
        product_type="fw",
        size="30x40",
        quantity=quantity,
        price_aed=Decimal(price) if price is not None else None,
        created_at=NOW,
        updated_at=NOW,
    )


UNGATED = [stage for stage in LEAD_STATUSES if stage not in {"production", "delivered"}]


@pytest.mark.parametrize("target", UNGATED)
@pytest.mark.parametrize("payment_type", [None, *PAYMENT_TYPES])
def test_ungated_stages_always_allowed(target: str, payment_type: str | None) -> None:
    decision = can_transition(_lead(status="price_shared", payment_type=payment_type), target)
    assert isinstance(decision, Allowed)
    assert decision


@pytest.mark.parametrize("target", ["production", "delivered"])
def test_gated_stages_rejected_without_payment_type(target: str) -> None:
    decision = can_transition(_lead(status="payment_done"), target)
    assert isinstance(decision, Rejected)
    assert not decision
    assert "payment type" in decision.reason


def test_rejection_reason_names_target_stage() -> None:
    assert can_transition(_lead(), "production") == Rejected("Please set payment type before moving to Production")
    assert can_transition(_lead(), "delivered") == Rejected("Please set payment type before moving to Delivered")


@pytest.mark.parametrize("target", ["production", "delivered"])
@pytest.mark.parametrize("delivery_method", [None, "courier", "store_collection"])
def test_gated_stages_ignore_delivery_method(target: str, delivery_method: str | None) -> None:
    decision = can_transition(_lead(status="payment_done", payment_type="cod", delivery_method=delivery_method), target)
    assert isinstance(decision, Allowed)


def test_is_stage() -> None:
    assert is_stage("mockup_done")
    assert not is_stage("archived")
    assert not is_stage(None)
    assert not is_stage(str(uuid.uuid4()))


def test_missing_payment_info_only_past_payment_stage() -> None:
    assert not needs_payment_info(_lead(status="price_shared"))
    assert not is_missing_payment_info(_lead(status="price_shared"))

    assert is_missing_payment_info(_lead(status="payment_done"))
    assert is_missing_payment_info(_lead(status="production", payment_type="cod"))
    assert is_missing_payment_info(_lead(status="delivered", delivery_method="courier"))
    assert not is_missing_payment_info(_lead(status="delivered", payment_type="cod", delivery_method="courier"))


def test_order_total_treats_missing_price_as_zero() -> None:
    lead = _lead()
    lead.items = [_item(lead.id, "150.00", quantity=2), _item(lead.id, None), _item(lead.id, "99.50")]
    assert order_total(lead) == Decimal("399.50")
    assert order_total(_lead()) == Decimal("0")
