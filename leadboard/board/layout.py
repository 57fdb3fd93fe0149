"""Column derivation and per-user column layout.

``filter_leads`` and ``build_columns`` are pure and order-preserving.
``ColumnLayout`` owns one user's ``ViewPreference`` and writes it back to a
``PreferenceStore`` on every change; continuous resize drags are coalesced.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

from leadboard.board.rules import is_missing_payment_info, order_total
from leadboard.core.config import Settings, get_settings
from leadboard.crm.errors import StoreError, UnknownColumnError
from leadboard.crm.schemas import LEAD_STATUSES, STAGE_TITLES, ColumnState, LeadRead, ViewPreference
from leadboard.crm.store import PreferenceStore


logger = logging.getLogger("leadboard.board")


@dataclass(frozen=True)
class BoardFilters:
    search: str = ""
    product_type: str | Literal["all"] = "all"
    status: str | Literal["all"] = "all"
    missing_payment_only: bool = False


@dataclass
class StageColumn:
    id: str
    title: str
    leads: list[LeadRead] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return sum((order_total(lead) for lead in self.leads), Decimal("0"))


def matches_search(lead: LeadRead, search: str) -> bool:
    if not search:
        return True
    needle = search.lower()
    return needle in lead.customer_name.lower() or needle in lead.order_id.lower() or search in lead.customer_phone


def matches_product_type(lead: LeadRead, product_type: str) -> bool:
    return product_type == "all" or any(item.product_type == product_type for item in lead.items)


def matches_status(lead: LeadRead, status: str) -> bool:
    return status == "all" or lead.status == status


def matches_payment_filter(lead: LeadRead, missing_payment_only: bool) -> bool:
    return not missing_payment_only or is_missing_payment_info(lead)


def filter_leads(leads: Iterable[LeadRead], filters: BoardFilters) -> list[LeadRead]:
    return [
        lead
        for lead in leads
        if matches_search(lead, filters.search)
        and matches_product_type(lead, filters.product_type)
        and matches_status(lead, filters.status)
        and matches_payment_filter(lead, filters.missing_payment_only)
    ]


def build_columns(leads: Iterable[LeadRead], filters: BoardFilters | None = None) -> list[StageColumn]:
    visible = filter_leads(leads, filters or BoardFilters())
    return [
        StageColumn(id=stage, title=STAGE_TITLES[stage], leads=[lead for lead in visible if lead.status == stage])
        for stage in LEAD_STATUSES
    ]


def missing_payment_info_count(leads: Iterable[LeadRead]) -> int:
    return sum(1 for lead in leads if is_missing_payment_info(lead))


def default_preference(settings: Settings | None = None) -> ViewPreference:
    settings = settings or get_settings()
    return ViewPreference(
        column_widths={stage: settings.column_default_width for stage in LEAD_STATUSES},
        column_states={stage: ColumnState.NORMAL for stage in LEAD_STATUSES},
    )


def preference_from_flags(
    column_widths: dict[str, int],
    minimized_columns: Sequence[str],
    maximized_column: str | None,
    settings: Settings | None = None,
) -> ViewPreference:
    """Build a preference from the two-flag form (minimized set, one maximized id)."""
    settings = settings or get_settings()
    preference = default_preference(settings)
    for column, width in column_widths.items():
        _require_column(column)
        preference.column_widths[column] = clamp_width(width, settings)
    for column in minimized_columns:
        _require_column(column)
        preference.column_states[column] = ColumnState.MINIMIZED
    if maximized_column is not None:
        _require_column(maximized_column)
        preference.column_states[maximized_column] = ColumnState.MAXIMIZED
    return preference


def clamp_width(width: int, settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    return max(settings.column_min_width, min(settings.column_max_width, int(width)))


def _require_column(column: str) -> None:
    if column not in LEAD_STATUSES:
        raise UnknownColumnError(f"unknown column: {column}")


class ColumnLayout:
    def __init__(
        self,
        user_id: str,
        preference: ViewPreference,
        store: PreferenceStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.user_id = user_id
        self.preference = preference
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        self._resizing: str | None = None
        self._dirty = False
        self._last_write: float | None = None

    @classmethod
    def load(
        cls,
        store: PreferenceStore,
        user_id: str,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> ColumnLayout:
        settings = settings or get_settings()
        stored = store.get(user_id)
        preference = default_preference(settings)
        if stored is not None:
            for column, width in stored.column_widths.items():
                if column in LEAD_STATUSES:
                    preference.column_widths[column] = width
            for column, state in stored.column_states.items():
                if column in LEAD_STATUSES:
                    preference.column_states[column] = state
        layout = cls(user_id, preference, store=store, settings=settings, clock=clock)
        # Older rows may carry more than one maximized column; keep the first.
        maximized = [column for column in LEAD_STATUSES if layout.state(column) is ColumnState.MAXIMIZED]
        for column in maximized[1:]:
            layout.preference.column_states[column] = ColumnState.NORMAL
        return layout

    def state(self, column: str) -> ColumnState:
        _require_column(column)
        return self.preference.column_states.get(column, ColumnState.NORMAL)

    def width(self, column: str) -> int:
        _require_column(column)
        return self.preference.column_widths.get(column, self.settings.column_default_width)

    def display_width(self, column: str) -> int:
        state = self.state(column)
        if state is ColumnState.MINIMIZED:
            return self.settings.column_minimized_width
        if state is ColumnState.MAXIMIZED:
            return self.settings.column_max_width
        return self.width(column)

    @property
    def maximized_column(self) -> str | None:
        for column in LEAD_STATUSES:
            if self.state(column) is ColumnState.MAXIMIZED:
                return column
        return None

    @property
    def minimized_columns(self) -> list[str]:
        return [column for column in LEAD_STATUSES if self.state(column) is ColumnState.MINIMIZED]

    def minimize(self, column: str) -> None:
        _require_column(column)
        self.preference.column_states[column] = ColumnState.MINIMIZED
        self._persist()

    def maximize(self, column: str) -> None:
        _require_column(column)
        current = self.maximized_column
        if current is not None and current != column:
            self.preference.column_states[current] = ColumnState.NORMAL
        self.preference.column_states[column] = ColumnState.MAXIMIZED
        self._persist()

    def restore(self, column: str) -> None:
        """Back to normal view: un-minimizes ``column`` and clears any maximized column."""
        _require_column(column)
        current = self.maximized_column
        if current is not None:
            self.preference.column_states[current] = ColumnState.NORMAL
        self.preference.column_states[column] = ColumnState.NORMAL
        self._persist()

    def begin_resize(self, column: str) -> None:
        _require_column(column)
        self._resizing = column

    def resize(self, column: str, width: int) -> int:
        _require_column(column)
        clamped = clamp_width(width, self.settings)
        self.preference.column_widths[column] = clamped
        if self._resizing == column:
            self._dirty = True
            if self._last_write is None or self._clock() - self._last_write >= self.settings.layout_flush_interval_seconds:
                self._persist()
        else:
            self._persist()
        return clamped

    def end_resize(self) -> None:
        self._resizing = None
        if self._dirty:
            self._persist()

    def set_width(self, column: str, width: int) -> int:
        self.begin_resize(column)
        clamped = self.resize(column, width)
        self.end_resize()
        return clamped

    def _persist(self) -> None:
        self._dirty = True
        if self.store is None:
            return
        try:
            self.store.upsert(self.user_id, self.preference)
        except StoreError as exc:
            # Layout stays applied locally; the next mutation retries the write.
            logger.warning("layout.persist_failed", extra={"user_id": self.user_id, "error": str(exc)})
            return
        self._dirty = False
        self._last_write = self._clock()
