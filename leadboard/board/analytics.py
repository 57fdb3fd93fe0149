from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from leadboard.board.rules import needs_payment_info, order_total
from leadboard.crm.schemas import LEAD_STATUSES, PAYMENT_TYPES, LeadRead, LeadStatusHistoryRead, PaymentAnalyticsRead

NOT_SET = "not_set"
PREPAID_TYPES = frozenset({"full_payment", "partial_payment"})


def payment_breakdown(leads: Iterable[LeadRead]) -> dict[str, int]:
    """Count leads per payment type; ``not_set`` only counts leads past the payment stage."""
    counts = {payment_type: 0 for payment_type in PAYMENT_TYPES}
    counts[NOT_SET] = 0
    for lead in leads:
        if lead.payment_type:
            counts[lead.payment_type] += 1
        elif needs_payment_info(lead):
            counts[NOT_SET] += 1
    return counts


def _delivered_rate(leads: Sequence[LeadRead]) -> float:
    if not leads:
        return 0.0
    delivered = sum(1 for lead in leads if lead.status == "delivered")
    return round(delivered / len(leads) * 100, 1)


def conversion_rates(leads: Iterable[LeadRead]) -> tuple[float, float]:
    """Percentage of COD and of prepaid orders that reached delivery."""
    leads = list(leads)
    cod = [lead for lead in leads if lead.payment_type == "cod"]
    prepaid = [lead for lead in leads if lead.payment_type in PREPAID_TYPES]
    return _delivered_rate(cod), _delivered_rate(prepaid)


def revenue_by_payment_type(leads: Iterable[LeadRead]) -> dict[str, Decimal]:
    revenue = {payment_type: Decimal("0") for payment_type in PAYMENT_TYPES}
    for lead in leads:
        if lead.payment_type:
            revenue[lead.payment_type] += order_total(lead)
    return revenue


def average_processing_hours(leads: Iterable[LeadRead], history: Iterable[LeadStatusHistoryRead]) -> float:
    """Mean hours between entering payment_done and entering delivered, over delivered paid leads."""
    paid_at: dict[str, datetime] = {}
    delivered_at: dict[str, datetime] = {}
    for row in history:
        key = str(row.lead_id)
        # First time the lead entered each stage.
        if row.new_status == "payment_done":
            paid_at.setdefault(key, row.changed_at)
        elif row.new_status == "delivered":
            delivered_at.setdefault(key, row.changed_at)

    durations: list[float] = []
    for lead in leads:
        if lead.status != "delivered" or not lead.payment_type:
            continue
        key = str(lead.id)
        if key not in paid_at or key not in delivered_at:
            continue
        hours = (delivered_at[key] - paid_at[key]).total_seconds() / 3600
        if hours > 0:
            durations.append(hours)
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 1)


def stage_counts(leads: Iterable[LeadRead]) -> dict[str, int]:
    counts = {stage: 0 for stage in LEAD_STATUSES}
    for lead in leads:
        counts[lead.status] += 1
    return counts


def summarize_payments(leads: Sequence[LeadRead], history: Iterable[LeadStatusHistoryRead]) -> PaymentAnalyticsRead:
    cod_rate, prepaid_rate = conversion_rates(leads)
    revenue = revenue_by_payment_type(leads)
    return PaymentAnalyticsRead(
        payment_breakdown=payment_breakdown(leads),
        revenue_by_payment_type=revenue,
        cod_conversion_rate=cod_rate,
        prepaid_conversion_rate=prepaid_rate,
        average_processing_hours=average_processing_hours(leads, history),
        stage_counts=stage_counts(leads),
        total_revenue=sum((order_total(lead) for lead in leads), Decimal("0")),
    )
