from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from leadboard.board.controller import BoardController, NoticeLog
from leadboard.board.selection import SelectionManager, build_snapshot
from leadboard.core.config import Settings
from leadboard.core.events import InternalEvent
from leadboard.crm.access import AuthContext
from leadboard.crm.errors import StoreError
from leadboard.crm.schemas import DeletedLeadRead, LeadItemRead, LeadRead


NOW = datetime(2026, 10, 18, 8, 30, tzinfo=timezone.utc)


def _lead(created_by: str = "user-1") -> LeadRead:
    lead_id = uuid.uuid4()
    return LeadRead(
        id=lead_id,
        order_id=f"FW-{lead_id.int % 10000:04d}",
        customer_name="Sara Ibrahim",
        customer_phone="0521234567",
        status="mockup_done",
        created_by=created_by,
        assigned_to="user-1",
        last_status_change=NOW,
        created_at=NOW,
        updated_at=NOW,
        items=[
            LeadItemRead(
                id=uuid.uuid4(),
                lead_id=lead_id,
                product_type="fw",
                size="50x70",
                quantity=2,
                price_aed=Decimal("250.00"),
                created_at=NOW,
                updated_at=NOW,
            )
        ],
    )


class FakeLeadStore:
    def __init__(self, leads: Sequence[LeadRead]) -> None:
        self.rows = {str(lead.id): lead for lead in leads}
        self.snapshots: list[DeletedLeadRead] = []
        self.delete_calls: list[list[uuid.UUID]] = []
        self.fail_snapshots = False
        self.fail_delete = False

    def select(self, lead_filter: Any = None) -> list[LeadRead]:
        return list(self.rows.values())

    def insert_snapshots(self, snapshots: Sequence[Mapping[str, Any]]) -> list[DeletedLeadRead]:
        if self.fail_snapshots:
            raise StoreError("lead store insert_snapshots failed")
        rows = [DeletedLeadRead(id=uuid.uuid4(), **snapshot) for snapshot in snapshots]
        self.snapshots.extend(rows)
        return rows

    def delete(self, lead_ids: Sequence[uuid.UUID]) -> int:
        self.delete_calls.append(list(lead_ids))
        if self.fail_delete:
            raise StoreError("lead store delete failed")
        removed = 0
        for lead_id in lead_ids:
            if self.rows.pop(str(lead_id), None) is not None:
                removed += 1
        return removed

    def subscribe(self, handler: Callable[[InternalEvent], None]) -> Callable[[], None]:
        return lambda: None


@pytest.fixture()
def settings() -> Settings:
    return Settings(restore_window_days=30)


def _manager(
    store: FakeLeadStore, settings: Settings, ctx: AuthContext | None = None
) -> tuple[SelectionManager, BoardController, NoticeLog]:
    notices = NoticeLog()
    controller = BoardController(store, ctx or AuthContext(user_id="user-1", roles=["sales_staff"]), notices)
    controller.load()
    return SelectionManager(controller, settings=settings, clock=lambda: NOW), controller, notices


def test_toggle_is_idempotent_and_exit_clears() -> None:
    store = FakeLeadStore([])
    manager, _, _ = _manager(store, Settings())
    lead_id = uuid.uuid4()

    manager.enter_selection_mode()
    manager.toggle(lead_id, True)
    manager.toggle(lead_id, True)
    assert manager.selected_ids == [str(lead_id)]

    manager.toggle(lead_id, False)
    manager.toggle(lead_id, False)
    assert manager.selected_ids == []

    manager.toggle(lead_id, True)
    manager.exit_selection_mode()
    assert not manager.active
    assert manager.selected_ids == []


def test_bulk_soft_delete_snapshots_then_deletes(settings: Settings) -> None:
    leads = [_lead(), _lead(), _lead()]
    keep = _lead()
    store = FakeLeadStore([*leads, keep])
    manager, controller, notices = _manager(store, settings)
    manager.enter_selection_mode()
    for lead in leads:
        manager.toggle(lead.id, True)

    result = manager.bulk_soft_delete()

    assert result.ok
    assert result.requested == 3
    assert result.deleted == 3
    assert len(store.snapshots) == 3
    assert all(row.restore_deadline == NOW + timedelta(days=30) for row in store.snapshots)
    assert {row.lead_id for row in store.snapshots} == {lead.id for lead in leads}
    assert [lead.id for lead in controller.leads] == [keep.id]
    assert manager.selected_ids == []
    assert not manager.active
    assert notices.last.message == "3 leads deleted (can be restored within 30 days)"


def test_snapshot_failure_deletes_nothing(settings: Settings) -> None:
    leads = [_lead(), _lead(), _lead()]
    store = FakeLeadStore(leads)
    store.fail_snapshots = True
    manager, controller, notices = _manager(store, settings)
    manager.enter_selection_mode()
    for lead in leads:
        manager.toggle(lead.id, True)

    result = manager.bulk_soft_delete()

    assert result.failed_step == "snapshot"
    assert store.delete_calls == []
    assert len(store.rows) == 3
    assert len(controller.leads) == 3
    assert len(manager.selected_ids) == 3
    assert notices.last.level == "error"


def test_delete_failure_keeps_selection_for_retry(settings: Settings) -> None:
    leads = [_lead(), _lead()]
    store = FakeLeadStore(leads)
    store.fail_delete = True
    manager, _, _ = _manager(store, settings)
    manager.enter_selection_mode()
    for lead in leads:
        manager.toggle(lead.id, True)

    first = manager.bulk_soft_delete()
    assert first.failed_step == "delete"
    assert len(store.snapshots) == 2
    assert len(manager.selected_ids) == 2

    store.fail_delete = False
    second = manager.bulk_soft_delete()
    assert second.ok
    assert second.deleted == 2
    assert store.rows == {}
    # The retry writes a second set of snapshots.
    assert len(store.snapshots) == 4


def test_only_leads_on_the_board_are_deleted(settings: Settings) -> None:
    lead = _lead()
    store = FakeLeadStore([lead])
    manager, _, _ = _manager(store, settings)

    result = manager.bulk_soft_delete([lead.id, uuid.uuid4()])

    assert result.requested == 2
    assert result.deleted == 1
    assert store.delete_calls == [[lead.id]]


def test_leads_created_by_someone_else_are_not_touched(settings: Settings) -> None:
    own = _lead()
    foreign = _lead(created_by="user-2")
    store = FakeLeadStore([own, foreign])
    manager, _, notices = _manager(store, settings)

    result = manager.bulk_soft_delete([own.id, foreign.id])

    assert result.failed_step == "access"
    assert store.snapshots == []
    assert store.delete_calls == []
    assert notices.last.level == "error"


def test_build_snapshot_captures_lead_and_items() -> None:
    lead = _lead()

    snapshot = build_snapshot(lead, "user-9", NOW, 30)

    assert snapshot["lead_id"] == lead.id
    assert snapshot["deleted_by"] == "user-9"
    assert snapshot["lead_data"]["order_id"] == lead.order_id
    assert "items" not in snapshot["lead_data"]
    assert snapshot["lead_items"][0]["size"] == "50x70"
    assert snapshot["restore_deadline"] == NOW + timedelta(days=30)
