"""Lead and preference stores.

The board never talks to the database directly: it goes through a
``LeadStore`` (rows of leads plus their order items, and the snapshots
written on soft delete) and a ``PreferenceStore`` (per-user layout). Each
call is a single request against the remote data and commits on its own.
Every committed change to the ``lead`` table is announced on the in-process
event bus as ``crm.leads.changed``; the notification carries no guarantees
about its payload, subscribers are expected to refetch.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from leadboard import audit, events
from leadboard.core.events import InternalEvent, event_bus
from leadboard.crm.access import AuthContext, apply_read_scope, can_delete, can_edit, can_manage_snapshot, can_view
from leadboard.crm.errors import AccessDeniedError, LeadNotFoundError, StoreError
from leadboard.crm.models import DeletedLead, Lead, LeadItem, LeadStatusHistory, UserPreference, utcnow
from leadboard.crm.schemas import DeletedLeadRead, LeadRead, LeadStatusHistoryRead, ViewPreference


logger = logging.getLogger("leadboard.store")

ChangeHandler = Callable[[InternalEvent], None]

UPDATABLE_FIELDS = frozenset(
    {
        "customer_name",
        "customer_email",
        "customer_phone",
        "customer_address",
        "notes",
        "assigned_to",
        "status",
        "payment_type",
        "delivery_method",
        "tracking_number",
        "tracking_status",
        "tracking_updated_at",
        "packing_date",
    }
)


@dataclass(frozen=True)
class LeadFilter:
    status: str | None = None
    exclude_status: str | None = None
    lead_ids: tuple[uuid.UUID, ...] | None = None
    status_changed_from: datetime | None = None
    status_changed_to: datetime | None = None


class LeadStore(Protocol):
    def select(self, lead_filter: LeadFilter | None = None) -> list[LeadRead]: ...

    def get(self, lead_id: uuid.UUID) -> LeadRead | None: ...

    def insert(
        self,
        values: Mapping[str, Any],
        items: Sequence[Mapping[str, Any]] = (),
        *,
        action: str = "lead_created",
    ) -> LeadRead: ...

    def update(self, lead_id: uuid.UUID, fields: Mapping[str, Any]) -> LeadRead: ...

    def replace_items(self, lead_id: uuid.UUID, items: Sequence[Mapping[str, Any]]) -> LeadRead: ...

    def delete(self, lead_ids: Sequence[uuid.UUID]) -> int: ...

    def insert_snapshots(self, snapshots: Sequence[Mapping[str, Any]]) -> list[DeletedLeadRead]: ...

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]: ...


class PreferenceStore(Protocol):
    def get(self, user_id: str) -> ViewPreference | None: ...

    def upsert(self, user_id: str, preference: ViewPreference) -> None: ...


class SqlLeadStore:
    def __init__(self, session: Session, ctx: AuthContext) -> None:
        self.session = session
        self.ctx = ctx

    @contextmanager
    def _remote_call(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning("store.call_failed", extra={"reason": operation, "error": str(exc)})
            raise StoreError(f"lead store {operation} failed") from exc

    def select(self, lead_filter: LeadFilter | None = None) -> list[LeadRead]:
        lead_filter = lead_filter or LeadFilter()
        stmt = apply_read_scope(select(Lead).options(selectinload(Lead.items)), self.ctx)
        if lead_filter.status is not None:
            stmt = stmt.where(Lead.status == lead_filter.status)
        if lead_filter.exclude_status is not None:
            stmt = stmt.where(Lead.status != lead_filter.exclude_status)
        if lead_filter.lead_ids is not None:
            stmt = stmt.where(Lead.id.in_(lead_filter.lead_ids))
        if lead_filter.status_changed_from is not None:
            stmt = stmt.where(Lead.last_status_change >= lead_filter.status_changed_from)
        if lead_filter.status_changed_to is not None:
            stmt = stmt.where(Lead.last_status_change <= lead_filter.status_changed_to)

        with self._remote_call("select"):
            rows = self.session.scalars(stmt.order_by(Lead.created_at.desc())).all()
            return [LeadRead.model_validate(row) for row in rows]

    def get(self, lead_id: uuid.UUID) -> LeadRead | None:
        with self._remote_call("get"):
            lead = self._load_visible(lead_id)
            return LeadRead.model_validate(lead) if lead is not None else None

    def insert(
        self,
        values: Mapping[str, Any],
        items: Sequence[Mapping[str, Any]] = (),
        *,
        action: str = "lead_created",
    ) -> LeadRead:
        with self._remote_call("insert"):
            lead = Lead(**values)
            lead.items = [LeadItem(**item) for item in items]
            self.session.add(lead)
            self.session.flush()
            self.session.add(
                LeadStatusHistory(lead_id=lead.id, old_status=None, new_status=lead.status, changed_by=self.ctx.user_id)
            )
            lead_id = lead.id
            details = {"order_id": lead.order_id, "customer_name": lead.customer_name, "status": lead.status}
            self.session.commit()

        audit.record(self.ctx.user_id, action, "lead", str(lead_id), details, self.ctx.correlation_id)
        self._notify("insert", [lead_id])
        return self._read(lead_id)

    def update(self, lead_id: uuid.UUID, fields: Mapping[str, Any]) -> LeadRead:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        with self._remote_call("update"):
            lead = self._load_visible(lead_id)
            if lead is None:
                raise LeadNotFoundError("lead not found")
            if not can_edit(self.ctx, lead, fields.keys()):
                raise AccessDeniedError("not allowed to update this lead")

            old_status = lead.status
            for name, value in fields.items():
                setattr(lead, name, value)
            changes: dict[str, Any] = {}
            if "status" in fields and fields["status"] != old_status:
                lead.last_status_change = utcnow()
                self.session.add(
                    LeadStatusHistory(
                        lead_id=lead.id,
                        old_status=old_status,
                        new_status=fields["status"],
                        changed_by=self.ctx.user_id,
                    )
                )
                changes["status"] = {"old": old_status, "new": fields["status"]}
            details = {"order_id": lead.order_id, "customer_name": lead.customer_name, "changes": changes}
            self.session.commit()

        audit.record(self.ctx.user_id, "lead_updated", "lead", str(lead_id), details, self.ctx.correlation_id)
        self._notify("update", [lead_id])
        return self._read(lead_id)

    def replace_items(self, lead_id: uuid.UUID, items: Sequence[Mapping[str, Any]]) -> LeadRead:
        with self._remote_call("replace_items"):
            lead = self._load_visible(lead_id)
            if lead is None:
                raise LeadNotFoundError("lead not found")
            if not can_edit(self.ctx, lead, {"items"}):
                raise AccessDeniedError("not allowed to update this lead")
            lead.items.clear()
            lead.items.extend(LeadItem(**item) for item in items)
            lead.updated_at = utcnow()
            self.session.commit()

        self._notify("update", [lead_id])
        return self._read(lead_id)

    def delete(self, lead_ids: Sequence[uuid.UUID]) -> int:
        if not lead_ids:
            return 0

        with self._remote_call("delete"):
            stmt = apply_read_scope(select(Lead).where(Lead.id.in_(lead_ids)), self.ctx)
            leads = self.session.scalars(stmt).all()
            denied = [str(lead.id) for lead in leads if not can_delete(self.ctx, lead)]
            if denied:
                raise AccessDeniedError(f"not allowed to delete leads: {', '.join(denied)}")
            if not leads:
                return 0

            found_ids = [lead.id for lead in leads]
            details = {lead.id: {"order_id": lead.order_id, "customer_name": lead.customer_name} for lead in leads}
            self.session.execute(delete(LeadStatusHistory).where(LeadStatusHistory.lead_id.in_(found_ids)))
            self.session.execute(delete(LeadItem).where(LeadItem.lead_id.in_(found_ids)))
            self.session.execute(delete(Lead).where(Lead.id.in_(found_ids)))
            self.session.commit()

        for lead_id in found_ids:
            audit.record(
                self.ctx.user_id, "lead_deleted", "lead", str(lead_id), details[lead_id], self.ctx.correlation_id
            )
        self._notify("delete", found_ids)
        return len(found_ids)

    def insert_snapshots(self, snapshots: Sequence[Mapping[str, Any]]) -> list[DeletedLeadRead]:
        with self._remote_call("insert_snapshots"):
            rows = [DeletedLead(**snapshot) for snapshot in snapshots]
            self.session.add_all(rows)
            self.session.commit()
            return [DeletedLeadRead.model_validate(row) for row in rows]

    def list_snapshots(self) -> list[DeletedLeadRead]:
        stmt = select(DeletedLead)
        if not self.ctx.is_admin:
            stmt = stmt.where(DeletedLead.deleted_by == self.ctx.user_id)
        with self._remote_call("list_snapshots"):
            rows = self.session.scalars(stmt.order_by(DeletedLead.deleted_at.desc())).all()
            return [DeletedLeadRead.model_validate(row) for row in rows]

    def get_snapshot(self, snapshot_id: uuid.UUID) -> DeletedLeadRead | None:
        with self._remote_call("get_snapshot"):
            row = self.session.get(DeletedLead, snapshot_id)
            if row is None or not can_manage_snapshot(self.ctx, row.deleted_by):
                return None
            return DeletedLeadRead.model_validate(row)

    def delete_snapshots(self, snapshot_ids: Sequence[uuid.UUID]) -> int:
        with self._remote_call("delete_snapshots"):
            result = self.session.execute(delete(DeletedLead).where(DeletedLead.id.in_(snapshot_ids)))
            self.session.commit()
            return result.rowcount or 0

    def delete_expired_snapshots(self, now: datetime) -> int:
        with self._remote_call("delete_expired_snapshots"):
            result = self.session.execute(delete(DeletedLead).where(DeletedLead.restore_deadline < now))
            self.session.commit()
            return result.rowcount or 0

    def list_history(self, lead_ids: Sequence[uuid.UUID] | None = None) -> list[LeadStatusHistoryRead]:
        visible = select(Lead.id)
        if lead_ids is not None:
            visible = visible.where(Lead.id.in_(lead_ids))
        visible = apply_read_scope(visible, self.ctx)
        stmt = (
            select(LeadStatusHistory)
            .where(LeadStatusHistory.lead_id.in_(visible))
            .order_by(LeadStatusHistory.changed_at, LeadStatusHistory.id)
        )
        with self._remote_call("list_history"):
            rows = self.session.scalars(stmt).all()
            return [LeadStatusHistoryRead.model_validate(row) for row in rows]

    def order_id_exists(self, order_id: str, include_trash: bool = True) -> bool:
        """Whether ``order_id`` is taken by a live lead or, by default, a restorable one."""
        with self._remote_call("order_id_exists"):
            if self.session.scalar(select(Lead.id).where(Lead.order_id == order_id)) is not None:
                return True
            if not include_trash:
                return False
            stmt = select(DeletedLead.id).where(DeletedLead.lead_data["order_id"].as_string() == order_id).limit(1)
            return self.session.scalar(stmt) is not None

    def lead_exists(self, lead_id: uuid.UUID) -> bool:
        with self._remote_call("lead_exists"):
            return self.session.get(Lead, lead_id) is not None

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        return event_bus.subscribe(events.LEADS_CHANGED, handler)

    def _load_visible(self, lead_id: uuid.UUID) -> Lead | None:
        lead = self.session.scalar(select(Lead).where(Lead.id == lead_id).options(selectinload(Lead.items)))
        if lead is None or not can_view(self.ctx, lead):
            return None
        return lead

    def _read(self, lead_id: uuid.UUID) -> LeadRead:
        with self._remote_call("get"):
            lead = self.session.scalar(select(Lead).where(Lead.id == lead_id).options(selectinload(Lead.items)))
            if lead is None:
                raise LeadNotFoundError("lead not found")
            return LeadRead.model_validate(lead)

    def _notify(self, operation: str, lead_ids: Sequence[uuid.UUID]) -> None:
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": events.LEADS_CHANGED,
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": self.ctx.user_id,
                "correlation_id": self.ctx.correlation_id,
                "payload": {"operation": operation, "lead_ids": [str(lead_id) for lead_id in lead_ids]},
            }
        )


class SqlPreferenceStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: str) -> ViewPreference | None:
        try:
            row = self.session.scalar(select(UserPreference).where(UserPreference.user_id == user_id))
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("preference store get failed") from exc
        if row is None or not row.preferences:
            return None
        return ViewPreference.model_validate(row.preferences)

    def upsert(self, user_id: str, preference: ViewPreference) -> None:
        payload = preference.model_dump(mode="json")
        try:
            row = self.session.scalar(select(UserPreference).where(UserPreference.user_id == user_id))
            if row is None:
                self.session.add(UserPreference(user_id=user_id, preferences=payload))
            else:
                row.preferences = payload
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("preference store upsert failed") from exc
