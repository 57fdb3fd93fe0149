from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timedelta, timezone

from opentelemetry import trace
from sqlalchemy.orm import Session

from leadboard.board.analytics import summarize_payments
from leadboard.board.controller import BoardController, NoticeLog
from leadboard.board.layout import BoardFilters, ColumnLayout, preference_from_flags
from leadboard.board.rules import Rejected, can_transition
from leadboard.board.selection import BulkDeleteResult, SelectionManager
from leadboard.core.config import Settings, get_settings
from leadboard.crm.access import AuthContext, can_delete
from leadboard.crm.errors import (
    AccessDeniedError,
    LeadNotFoundError,
    OrderIdConflictError,
    OrderIdExhaustedError,
    RestoreExpiredError,
    StoreError,
    TransitionRejectedError,
)
from leadboard.crm.models import utcnow
from leadboard.crm.schemas import (
    BoardRead,
    BulkDeleteResponse,
    DeletedLeadRead,
    FollowUpRead,
    LeadCreate,
    LeadItemRead,
    LeadItemsReplace,
    LeadRead,
    LeadStatusHistoryRead,
    LeadTrackingUpdate,
    LeadUpdate,
    PaymentAnalyticsRead,
    StageColumnRead,
    TransitionRequest,
    TransitionResponse,
    ViewPreferenceRead,
    ViewPreferenceUpdate,
)
from leadboard.crm.store import LeadFilter, SqlLeadStore, SqlPreferenceStore
from leadboard.metrics import observe_restored
from leadboard.otel import annotate_span


logger = logging.getLogger("leadboard.crm")
tracer = trace.get_tracer("leadboard.crm")

ORDER_ID_PREFIXES = {"fp_pro": "FP-PRO", "fw": "FW", "ft": "FT"}


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back without tzinfo; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _bulk_response(result: BulkDeleteResult, notices: NoticeLog) -> BulkDeleteResponse:
    if result.failed_step == "access":
        raise AccessDeniedError(notices.last.message if notices.last else "not allowed to delete these leads")
    if result.failed_step is not None:
        raise StoreError(notices.last.message if notices.last else "Failed to delete leads")
    return BulkDeleteResponse(requested=result.requested, deleted=result.deleted, snapshot_ids=result.snapshot_ids)


class LeadService:
    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def generate_order_id(self, store: SqlLeadStore, product_type: str, settings: Settings | None = None) -> str:
        settings = settings or get_settings()
        prefix = ORDER_ID_PREFIXES[product_type]
        for _ in range(settings.order_id_max_attempts):
            candidate = f"{prefix}-{self.rng.randrange(10000):04d}"
            if not store.order_id_exists(candidate):
                return candidate
        raise OrderIdExhaustedError(
            f"Could not generate unique order ID after {settings.order_id_max_attempts} attempts"
        )

    def create_lead(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadRead:
        store = SqlLeadStore(session, ctx)
        # The order id prefix follows the first item's product line.
        order_id = self.generate_order_id(store, dto.items[0].product_type)
        values = dto.model_dump(exclude={"items"})
        values["customer_email"] = str(dto.customer_email) if dto.customer_email is not None else None
        values["assigned_to"] = dto.assigned_to or ctx.user_id
        values.update(order_id=order_id, created_by=ctx.user_id, status="leads")
        lead = store.insert(values, [item.model_dump() for item in dto.items])
        logger.info("lead.created", extra={"user_id": ctx.user_id, "lead_id": str(lead.id)})
        return lead

    def list_leads(self, session: Session, ctx: AuthContext, status: str | None = None) -> list[LeadRead]:
        return SqlLeadStore(session, ctx).select(LeadFilter(status=status))

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadRead:
        lead = SqlLeadStore(session, ctx).get(lead_id)
        if lead is None:
            raise LeadNotFoundError("lead not found")
        return lead

    def update_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        store = SqlLeadStore(session, ctx)
        current = store.get(lead_id)
        if current is None:
            raise LeadNotFoundError("lead not found")

        fields = dto.model_dump(exclude_unset=True)
        if "customer_email" in fields and fields["customer_email"] is not None:
            fields["customer_email"] = str(fields["customer_email"])
        if not fields:
            return current
        target = fields.get("status")
        if target is not None and target != current.status:
            # Payment info set in the same edit counts towards the gate.
            decision = can_transition(current.model_copy(update=fields), target)
            if isinstance(decision, Rejected):
                raise TransitionRejectedError(decision.reason)
        return store.update(lead_id, fields)

    def replace_items(
        self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadItemsReplace
    ) -> LeadRead:
        return SqlLeadStore(session, ctx).replace_items(lead_id, [item.model_dump() for item in dto.items])

    def update_tracking(
        self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadTrackingUpdate
    ) -> LeadRead:
        store = SqlLeadStore(session, ctx)
        fields = dto.model_dump(exclude_unset=True)
        if not fields:
            return self.get_lead(session, ctx, lead_id)
        fields["tracking_updated_at"] = utcnow()
        return store.update(lead_id, fields)

    def list_history(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> list[LeadStatusHistoryRead]:
        store = SqlLeadStore(session, ctx)
        if store.get(lead_id) is None:
            raise LeadNotFoundError("lead not found")
        return store.list_history([lead_id])

    def find_follow_ups(
        self, session: Session, ctx: AuthContext, now: datetime | None = None
    ) -> list[FollowUpRead]:
        """Undelivered leads whose stage changed within the follow-up window."""
        now = now or utcnow()
        window = timedelta(hours=get_settings().follow_up_window_hours)
        leads = SqlLeadStore(session, ctx).select(
            LeadFilter(exclude_status="delivered", status_changed_from=now - window, status_changed_to=now)
        )
        for lead in leads:
            logger.info("lead.follow_up_due", extra={"lead_id": str(lead.id), "user_id": lead.assigned_to})
        return [
            FollowUpRead(
                lead_id=lead.id,
                order_id=lead.order_id,
                customer_name=lead.customer_name,
                status=lead.status,
                assigned_to=lead.assigned_to,
                last_status_change=lead.last_status_change,
            )
            for lead in leads
        ]


class TrashService:
    def soft_delete_leads(self, session: Session, ctx: AuthContext, lead_ids: list[uuid.UUID]) -> BulkDeleteResponse:
        notices = NoticeLog()
        controller = BoardController(SqlLeadStore(session, ctx), ctx, notices)
        controller.load()
        selection = SelectionManager(controller)
        selection.enter_selection_mode()
        for lead_id in lead_ids:
            selection.toggle(lead_id, True)
        if not controller.snapshot_source(selection.selected_ids):
            raise LeadNotFoundError("no matching leads")
        return _bulk_response(selection.bulk_soft_delete(), notices)

    def soft_delete_all(self, session: Session, ctx: AuthContext) -> BulkDeleteResponse:
        """Move every lead the caller may delete to the trash."""
        notices = NoticeLog()
        controller = BoardController(SqlLeadStore(session, ctx), ctx, notices)
        controller.load()
        lead_ids = [lead.id for lead in controller.leads if can_delete(ctx, lead)]
        if not lead_ids:
            notices.info("No leads to delete")
            return BulkDeleteResponse(requested=0, deleted=0, snapshot_ids=[])
        return _bulk_response(SelectionManager(controller).bulk_soft_delete(lead_ids), notices)

    def list_deleted(self, session: Session, ctx: AuthContext) -> list[DeletedLeadRead]:
        return SqlLeadStore(session, ctx).list_snapshots()

    def restore(
        self, session: Session, ctx: AuthContext, deleted_id: uuid.UUID, now: datetime | None = None
    ) -> LeadRead:
        store = SqlLeadStore(session, ctx)
        snapshot = store.get_snapshot(deleted_id)
        if snapshot is None:
            raise LeadNotFoundError("deleted lead not found")
        now = now or utcnow()
        if as_utc(snapshot.restore_deadline) < now:
            raise RestoreExpiredError("restore window has expired")

        with tracer.start_as_current_span("trash.restore") as span:
            annotate_span(span, ctx.user_id, ctx.correlation_id, lead_id=str(snapshot.lead_id))
            if store.lead_exists(snapshot.lead_id):
                # Left behind by a delete that failed after its snapshot was written.
                store.delete_snapshots([snapshot.id])
                return self._read_restored(store, snapshot.lead_id)
            order_id = snapshot.lead_data.get("order_id")
            if order_id and store.order_id_exists(order_id, include_trash=False):
                raise OrderIdConflictError(f"order id {order_id} is already used by another lead")

            values = LeadRead.model_validate({**snapshot.lead_data, "id": snapshot.lead_id, "items": []}).model_dump(
                exclude={"items"}
            )
            items = [LeadItemRead.model_validate(item).model_dump() for item in snapshot.lead_items]
            lead = store.insert(values, items, action="lead_restored")
            store.delete_snapshots([snapshot.id])

        observe_restored()
        logger.info("trash.restored", extra={"user_id": ctx.user_id, "lead_id": str(lead.id)})
        return lead

    def purge(self, session: Session, ctx: AuthContext, deleted_id: uuid.UUID) -> None:
        if not ctx.is_admin:
            raise AccessDeniedError("only admins can permanently delete leads")
        store = SqlLeadStore(session, ctx)
        if store.get_snapshot(deleted_id) is None:
            raise LeadNotFoundError("deleted lead not found")
        store.delete_snapshots([deleted_id])
        logger.info("trash.purged", extra={"user_id": ctx.user_id, "lead_id": str(deleted_id)})

    def purge_expired(self, session: Session, ctx: AuthContext, now: datetime | None = None) -> int:
        if not ctx.is_admin:
            raise AccessDeniedError("only admins can purge the trash")
        purged = SqlLeadStore(session, ctx).delete_expired_snapshots(now or utcnow())
        logger.info("trash.purged_expired", extra={"user_id": ctx.user_id, "lead_count": purged})
        return purged

    def _read_restored(self, store: SqlLeadStore, lead_id: uuid.UUID) -> LeadRead:
        lead = store.get(lead_id)
        if lead is None:
            raise LeadNotFoundError("lead not found")
        return lead


class BoardService:
    def get_board(self, session: Session, ctx: AuthContext, filters: BoardFilters) -> BoardRead:
        controller = BoardController(SqlLeadStore(session, ctx), ctx)
        controller.load()
        layout = ColumnLayout.load(SqlPreferenceStore(session), ctx.user_id)
        columns = [
            StageColumnRead(
                id=column.id,
                title=column.title,
                state=layout.state(column.id),
                width=layout.width(column.id),
                display_width=layout.display_width(column.id),
                count=len(column.leads),
                total_value=column.total_value,
                leads=column.leads,
            )
            for column in controller.columns(filters)
        ]
        return BoardRead(
            columns=columns,
            total_leads=len(controller.leads),
            filtered_count=sum(column.count for column in columns),
            missing_payment_info_count=controller.missing_payment_info_count(),
        )

    def transition(self, session: Session, ctx: AuthContext, request: TransitionRequest) -> TransitionResponse:
        controller = BoardController(SqlLeadStore(session, ctx), ctx)
        controller.load()
        if controller.get(request.lead_id) is None:
            raise LeadNotFoundError("lead not found")
        outcome = controller.begin_transition(request.lead_id, request.target)
        if outcome.result == "rejected":
            raise TransitionRejectedError(outcome.message or "transition rejected")
        if outcome.result == "failed" and outcome.error is not None:
            raise outcome.error
        return TransitionResponse(
            outcome=outcome.result,
            lead_id=request.lead_id,
            status=outcome.status,
            message=outcome.message,
        )

    def get_layout(self, session: Session, ctx: AuthContext) -> ViewPreferenceRead:
        return self._layout_read(ColumnLayout.load(SqlPreferenceStore(session), ctx.user_id))

    def replace_layout(self, session: Session, ctx: AuthContext, dto: ViewPreferenceUpdate) -> ViewPreferenceRead:
        preference = preference_from_flags(dto.column_widths, dto.minimized_columns, dto.maximized_column)
        store = SqlPreferenceStore(session)
        store.upsert(ctx.user_id, preference)
        return self._layout_read(ColumnLayout(ctx.user_id, preference, store=store))

    def change_column_state(self, session: Session, ctx: AuthContext, column: str, action: str) -> ViewPreferenceRead:
        layout = ColumnLayout.load(SqlPreferenceStore(session), ctx.user_id)
        if action == "minimize":
            layout.minimize(column)
        elif action == "maximize":
            layout.maximize(column)
        elif action == "restore":
            layout.restore(column)
        else:
            raise ValueError(f"unknown column action: {action}")
        return self._layout_read(layout)

    def set_column_width(self, session: Session, ctx: AuthContext, column: str, width: int) -> ViewPreferenceRead:
        layout = ColumnLayout.load(SqlPreferenceStore(session), ctx.user_id)
        layout.set_width(column, width)
        return self._layout_read(layout)

    def _layout_read(self, layout: ColumnLayout) -> ViewPreferenceRead:
        return ViewPreferenceRead(
            column_widths=dict(layout.preference.column_widths),
            column_states=dict(layout.preference.column_states),
            minimized_columns=layout.minimized_columns,
            maximized_column=layout.maximized_column,
        )


class AnalyticsService:
    def payment_analytics(self, session: Session, ctx: AuthContext) -> PaymentAnalyticsRead:
        store = SqlLeadStore(session, ctx)
        leads = store.select()
        history = store.list_history([lead.id for lead in leads]) if leads else []
        return summarize_payments(leads, history)
