"""Multi-select over board cards and the bulk soft delete built on it.

A soft delete always writes the ``deleted_lead`` snapshots first and removes
the live rows second. If the snapshot write fails nothing is deleted; if the
delete fails afterwards the selection is kept so the action can be retried,
at the cost of a duplicate snapshot.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from leadboard.board.controller import BoardController
from leadboard.core.config import Settings, get_settings
from leadboard.crm.access import can_delete
from leadboard.crm.errors import CRMError
from leadboard.crm.models import utcnow
from leadboard.crm.schemas import LeadRead
from leadboard.crm.store import LeadStore
from leadboard.metrics import observe_soft_deleted


logger = logging.getLogger("leadboard.board")


def build_snapshot(lead: LeadRead, deleted_by: str, now: datetime, window_days: int) -> dict[str, Any]:
    return {
        "lead_id": lead.id,
        "lead_data": lead.model_dump(mode="json", exclude={"items"}),
        "lead_items": [item.model_dump(mode="json") for item in lead.items],
        "deleted_by": deleted_by,
        "deleted_at": now,
        "restore_deadline": now + timedelta(days=window_days),
    }


@dataclass
class BulkDeleteResult:
    requested: int
    deleted: int = 0
    snapshot_ids: list[uuid.UUID] = field(default_factory=list)
    failed_step: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_step is None


class SelectionManager:
    def __init__(
        self,
        controller: BoardController,
        store: LeadStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.controller = controller
        self.store = store or controller.store
        self.settings = settings or get_settings()
        self._clock = clock
        self._active = False
        self._selected: set[str] = set()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def selected_ids(self) -> list[str]:
        return sorted(self._selected)

    def enter_selection_mode(self) -> None:
        self._active = True

    def exit_selection_mode(self) -> None:
        self._active = False
        self._selected.clear()

    def toggle(self, lead_id: uuid.UUID | str, selected: bool) -> None:
        if selected:
            self._selected.add(str(lead_id))
        else:
            self._selected.discard(str(lead_id))

    def bulk_soft_delete(self, lead_ids: Iterable[uuid.UUID | str] | None = None) -> BulkDeleteResult:
        wanted = [str(lead_id) for lead_id in lead_ids] if lead_ids is not None else self.selected_ids
        result = BulkDeleteResult(requested=len(wanted))
        # Snapshots come from the board's own copy of each lead.
        leads = self.controller.snapshot_source(wanted)
        if not leads:
            return result

        ctx = self.controller.ctx
        user_id = ctx.user_id
        if any(not can_delete(ctx, lead) for lead in leads):
            self.controller.notifier.error("You can only delete leads you created")
            result.failed_step = "access"
            return result

        now = self._clock()
        snapshots = [build_snapshot(lead, user_id, now, self.settings.restore_window_days) for lead in leads]
        try:
            inserted = self.store.insert_snapshots(snapshots)
        except CRMError as exc:
            logger.warning("selection.snapshot_failed", extra={"user_id": user_id, "error": str(exc)})
            self.controller.notifier.error(exc.message or "Failed to delete leads")
            result.failed_step = "snapshot"
            return result
        result.snapshot_ids = [row.id for row in inserted]

        try:
            result.deleted = self.store.delete([lead.id for lead in leads])
        except CRMError as exc:
            logger.warning(
                "selection.delete_failed",
                extra={"user_id": user_id, "lead_count": len(leads), "error": str(exc)},
            )
            self.controller.notifier.error(exc.message or "Failed to delete leads")
            result.failed_step = "delete"
            return result

        observe_soft_deleted(result.deleted)
        logger.info("selection.soft_deleted", extra={"user_id": user_id, "lead_count": result.deleted})
        self.controller.notifier.success(
            f"{len(leads)} leads deleted (can be restored within {self.settings.restore_window_days} days)"
        )
        self.exit_selection_mode()
        self.controller.load(raise_errors=False)
        return result
