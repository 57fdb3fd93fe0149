"""Stage transition rules for the board.

Every function here is pure: it only looks at the lead it is given.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from leadboard.crm.schemas import LEAD_STATUSES, STAGE_TITLES

PAYMENT_GATED_STATUSES = frozenset({"production", "delivered"})
PAYMENT_INFO_STATUSES = frozenset({"payment_done", "production", "delivered"})


@dataclass(frozen=True)
class Allowed:
    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    reason: str

    def __bool__(self) -> bool:
        return False


TransitionDecision = Allowed | Rejected


def is_stage(value: Any) -> bool:
    return isinstance(value, str) and value in LEAD_STATUSES


def can_transition(lead: Any, target_status: str) -> TransitionDecision:
    # Only payment_type is a hard gate; a missing delivery_method is surfaced
    # through the missing payment info counter instead.
    if target_status in PAYMENT_GATED_STATUSES and not lead.payment_type:
        return Rejected(f"Please set payment type before moving to {STAGE_TITLES[target_status]}")
    return Allowed()


def needs_payment_info(lead: Any) -> bool:
    return lead.status in PAYMENT_INFO_STATUSES


def is_missing_payment_info(lead: Any) -> bool:
    return needs_payment_info(lead) and (not lead.payment_type or not lead.delivery_method)


def order_total(lead: Any) -> Decimal:
    total = Decimal("0")
    for item in lead.items or []:
        if item.price_aed is not None:
            total += Decimal(str(item.price_aed)) * item.quantity
    return total
