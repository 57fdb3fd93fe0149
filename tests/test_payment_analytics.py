from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from leadboard.board.analytics import (
    average_processing_hours,
    conversion_rates,
    payment_breakdown,
    revenue_by_payment_type,
    stage_counts,
    summarize_payments,
)
from leadboard.crm.schemas import LeadItemRead, LeadRead, LeadStatusHistoryRead


NOW = datetime(2026, 5, 2, 10, 0, tzinfo=timezone.utc)


def _lead(status: str, payment_type: str | None = None, prices: tuple[str, ...] = ("100",)) -> LeadRead:
    lead_id = uuid.uuid4()
    items = [
        LeadItemRead(
            id=uuid.uuid4(),
            lead_id=lead_id,
            product_type="fw",
            size="A3",
            quantity=1,
            price_aed=Decimal(price),
            created_at=NOW,
            updated_at=NOW,
        )
        for price in prices
    ]
    return LeadRead(
        id=lead_id,
        order_id=f"FW-{lead_id.int % 10000:04d}",
        customer_name="Mariam Saeed",
        customer_phone="0547654321",
        status=status,
        created_by="user-1",
        payment_type=payment_type,
        last_status_change=NOW,
        created_at=NOW,
        updated_at=NOW,
        items=items,
    )


def _history(lead: LeadRead, new_status: str, at: datetime) -> LeadStatusHistoryRead:
    return LeadStatusHistoryRead(
        id=uuid.uuid4(),
        lead_id=lead.id,
        old_status=None,
        new_status=new_status,
        changed_by="user-1",
        changed_at=at,
    )


def test_payment_breakdown_counts_not_set_only_past_payment() -> None:
    leads = [
        _lead("leads"),
        _lead("payment_done"),
        _lead("production"),
        _lead("delivered", "cod"),
        _lead("production", "partial_payment"),
    ]

    breakdown = payment_breakdown(leads)

    assert breakdown == {"full_payment": 0, "partial_payment": 1, "cod": 1, "not_set": 2}


def test_conversion_rates_split_cod_and_prepaid() -> None:
    leads = [
        _lead("delivered", "cod"),
        _lead("production", "cod"),
        _lead("production", "cod"),
        _lead("delivered", "full_payment"),
        _lead("delivered", "partial_payment"),
    ]

    assert conversion_rates(leads) == (33.3, 100.0)
    assert conversion_rates([]) == (0.0, 0.0)


def test_revenue_by_payment_type_sums_item_prices() -> None:
    leads = [
        _lead("delivered", "cod", prices=("120.50", "79.50")),
        _lead("production", "full_payment", prices=("300",)),
        _lead("leads", prices=("999",)),
    ]

    revenue = revenue_by_payment_type(leads)

    assert revenue["cod"] == Decimal("200.00")
    assert revenue["full_payment"] == Decimal("300")
    assert revenue["partial_payment"] == Decimal("0")


def test_average_processing_hours_uses_first_entries() -> None:
    fast = _lead("delivered", "cod")
    slow = _lead("delivered", "full_payment")
    unpaid = _lead("delivered")
    history = [
        _history(fast, "payment_done", NOW),
        _history(fast, "delivered", NOW + timedelta(hours=10)),
        _history(fast, "delivered", NOW + timedelta(hours=50)),
        _history(slow, "payment_done", NOW),
        _history(slow, "delivered", NOW + timedelta(hours=31)),
        _history(unpaid, "payment_done", NOW),
        _history(unpaid, "delivered", NOW + timedelta(hours=500)),
    ]

    assert average_processing_hours([fast, slow, unpaid], history) == 20.5


def test_average_processing_hours_without_data_is_zero() -> None:
    lead = _lead("delivered", "cod")

    assert average_processing_hours([lead], []) == 0.0
    assert average_processing_hours([lead], [_history(lead, "delivered", NOW)]) == 0.0


def test_summarize_payments() -> None:
    delivered = _lead("delivered", "cod", prices=("150",))
    waiting = _lead("payment_done", prices=("50",))
    history = [
        _history(delivered, "payment_done", NOW),
        _history(delivered, "delivered", NOW + timedelta(hours=4)),
    ]

    summary = summarize_payments([delivered, waiting], history)

    assert summary.total_revenue == Decimal("200")
    assert summary.payment_breakdown["not_set"] == 1
    assert summary.cod_conversion_rate == 100.0
    assert summary.prepaid_conversion_rate == 0.0
    assert summary.average_processing_hours == 4.0
    assert summary.stage_counts == stage_counts([delivered, waiting])
    assert summary.stage_counts["payment_done"] == 1
