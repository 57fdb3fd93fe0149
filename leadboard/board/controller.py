"""Board state controller.

Holds the authoritative in-memory list of leads visible to one user and keeps
it in line with the lead store:

* ``load`` replaces the whole collection with what the store returns; a failed
  load leaves the previous collection in place.
* ``subscribe`` refetches on every change notification from the store. There
  is no incremental patching and no sequence numbering, so whichever load
  completes last wins.
* ``begin_transition`` is the drag-and-drop entry point. It validates, applies
  the new status optimistically, then writes it to the store. When the write
  fails the optimistic value is discarded by a full resync rather than by
  undoing the single field.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from leadboard.board.layout import BoardFilters, StageColumn, build_columns, missing_payment_info_count
from leadboard.board.rules import Rejected, can_transition, is_stage
from leadboard.core.events import InternalEvent
from leadboard.crm.access import AuthContext
from leadboard.crm.errors import CRMError, StoreError
from leadboard.crm.models import utcnow
from leadboard.crm.schemas import STAGE_TITLES, LeadRead
from leadboard.crm.store import LeadStore
from leadboard.metrics import observe_board_load, observe_transition
from leadboard.otel import annotate_span


logger = logging.getLogger("leadboard.board")
tracer = trace.get_tracer("leadboard.board")

TransitionResult = Literal["applied", "unchanged", "rejected", "failed", "ignored"]


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...


@dataclass(frozen=True)
class Notice:
    level: Literal["success", "error", "info"]
    message: str


@dataclass
class NoticeLog:
    """Collects user-facing notices; the API returns them, tests inspect them."""

    notices: list[Notice] = field(default_factory=list)

    def success(self, message: str) -> None:
        self.notices.append(Notice("success", message))

    def error(self, message: str) -> None:
        self.notices.append(Notice("error", message))

    def info(self, message: str) -> None:
        self.notices.append(Notice("info", message))

    @property
    def last(self) -> Notice | None:
        return self.notices[-1] if self.notices else None


@dataclass(frozen=True)
class TransitionOutcome:
    result: TransitionResult
    lead_id: str
    status: str | None = None
    message: str | None = None
    error: CRMError | None = field(default=None, compare=False)


class BoardController:
    def __init__(self, store: LeadStore, ctx: AuthContext, notifier: Notifier | None = None) -> None:
        self.store = store
        self.ctx = ctx
        self.notifier: Notifier = notifier or NoticeLog()
        self._leads: list[LeadRead] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def leads(self) -> list[LeadRead]:
        return list(self._leads)

    def get(self, lead_id: uuid.UUID | str) -> LeadRead | None:
        key = str(lead_id)
        for lead in self._leads:
            if str(lead.id) == key:
                return lead
        return None

    def load(self, *, raise_errors: bool = True) -> list[LeadRead]:
        started = time.perf_counter()
        with tracer.start_as_current_span("board.load") as span:
            annotate_span(span, self.ctx.user_id, self.ctx.correlation_id)
            try:
                leads = self.store.select()
            except StoreError as exc:
                observe_board_load("error", time.perf_counter() - started)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.warning("board.load_failed", extra={"user_id": self.ctx.user_id, "error": str(exc)})
                self.notifier.error("Failed to fetch leads")
                if raise_errors:
                    raise
                return self.leads
            self._leads = list(leads)
            span.set_attribute("lead_count", len(leads))
        observe_board_load("ok", time.perf_counter() - started)
        logger.debug("board.loaded", extra={"user_id": self.ctx.user_id, "lead_count": len(leads)})
        return self.leads

    def subscribe(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_remote_change)

    def unsubscribe(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def subscribed(self) -> bool:
        return self._unsubscribe is not None

    def _on_remote_change(self, event: InternalEvent) -> None:
        self.load(raise_errors=False)

    def resolve_target(self, drop_target: str) -> str | None:
        """A stage id is used as is; dropping on a card adopts that card's status."""
        if is_stage(drop_target):
            return drop_target
        target_lead = self.get(drop_target)
        return target_lead.status if target_lead is not None else None

    def begin_transition(self, lead_id: uuid.UUID | str, drop_target: str) -> TransitionOutcome:
        key = str(lead_id)
        with tracer.start_as_current_span("board.transition") as span:
            annotate_span(span, self.ctx.user_id, self.ctx.correlation_id, lead_id=key)
            outcome = self._transition(key, drop_target)
            span.set_attribute("outcome", outcome.result)
        observe_transition(outcome.result)
        return outcome

    def _transition(self, lead_id: str, drop_target: str) -> TransitionOutcome:
        target = self.resolve_target(drop_target)
        lead = self.get(lead_id)
        if target is None or lead is None:
            return TransitionOutcome("ignored", lead_id)
        if lead.status == target:
            return TransitionOutcome("unchanged", lead_id, status=lead.status)

        decision = can_transition(lead, target)
        if isinstance(decision, Rejected):
            self.notifier.error(decision.reason)
            logger.info(
                "board.transition_rejected",
                extra={"lead_id": lead_id, "from_status": lead.status, "to_status": target, "reason": decision.reason},
            )
            return TransitionOutcome("rejected", lead_id, status=lead.status, message=decision.reason)

        self._apply_status(lead_id, target)
        try:
            self.store.update(lead.id, {"status": target})
        except CRMError as exc:
            logger.warning(
                "board.transition_failed",
                extra={"lead_id": lead_id, "from_status": lead.status, "to_status": target, "error": str(exc)},
            )
            self.notifier.error("Failed to update lead status")
            self.load(raise_errors=False)
            current = self.get(lead_id)
            return TransitionOutcome(
                "failed",
                lead_id,
                status=current.status if current is not None else None,
                message=exc.message,
                error=exc,
            )

        self.notifier.success("Lead status updated")
        logger.info(
            "board.transition_applied",
            extra={"lead_id": lead_id, "from_status": lead.status, "to_status": target},
        )
        return TransitionOutcome("applied", lead_id, status=target, message=f"Moved to {STAGE_TITLES[target]}")

    def _apply_status(self, lead_id: str, status: str) -> None:
        self._leads = [
            lead.model_copy(update={"status": status, "last_status_change": utcnow()})
            if str(lead.id) == lead_id
            else lead
            for lead in self._leads
        ]

    def columns(self, filters: BoardFilters | None = None) -> list[StageColumn]:
        return build_columns(self._leads, filters)

    def missing_payment_info_count(self) -> int:
        return missing_payment_info_count(self._leads)

    def snapshot_source(self, lead_ids: Sequence[uuid.UUID | str]) -> list[LeadRead]:
        wanted = {str(lead_id) for lead_id in lead_ids}
        return [lead for lead in self._leads if str(lead.id) in wanted]
