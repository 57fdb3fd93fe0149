from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadboard.board.layout import BoardFilters
from leadboard.context import get_correlation_id
from leadboard.core.auth import AuthUser, get_current_user as get_auth_user
from leadboard.core.database import get_db
from leadboard.crm.access import AuthContext
from leadboard.crm.errors import CRMError
from leadboard.crm.schemas import (
    BoardRead,
    BulkDeleteRequest,
    BulkDeleteResponse,
    ColumnWidthUpdate,
    DeletedLeadRead,
    FollowUpRead,
    LeadCreate,
    LeadItemsReplace,
    LeadRead,
    LeadStatusHistoryRead,
    LeadTrackingUpdate,
    LeadUpdate,
    PaymentAnalyticsRead,
    TransitionRequest,
    TransitionResponse,
    ViewPreferenceRead,
    ViewPreferenceUpdate,
)
from leadboard.crm.service import AnalyticsService, BoardService, LeadService, TrashService

board_router = APIRouter(prefix="/api/board", tags=["board"])
leads_router = APIRouter(prefix="/api/leads", tags=["leads"])
trash_router = APIRouter(prefix="/api/deleted-leads", tags=["trash"])
analytics_router = APIRouter(prefix="/api/analytics", tags=["analytics"])
board_service = BoardService()
lead_service = LeadService()
trash_service = TrashService()
analytics_service = AnalyticsService()

ColumnAction = Literal["minimize", "maximize", "restore"]


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def failure_response(request: Request, exc: CRMError | HTTPException, code: str) -> JSONResponse:
    if isinstance(exc, CRMError):
        return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> AuthContext:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    request.state.user_id = auth_user.sub
    return AuthContext(
        user_id=auth_user.sub,
        roles=[str(role).lower() for role in auth_user.roles],
        correlation_id=correlation_id,
    )


def require_authenticated(user: AuthContext) -> None:
    if user.user_id == "anonymous" or not user.roles:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")


@board_router.get("", response_model=BoardRead)
def get_board(
    request: Request,
    q: str = Query(default=""),
    product_type: str = Query(default="all"),
    status_filter: str = Query(default="all", alias="status"),
    missing_payment_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> BoardRead | JSONResponse:
    try:
        require_authenticated(user)
        filters = BoardFilters(
            search=q,
            product_type=product_type,
            status=status_filter,
            missing_payment_only=missing_payment_only,
        )
        return board_service.get_board(db, user, filters)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_get_failed")


@board_router.post("/transitions", response_model=TransitionResponse)
def transition_lead(
    request: Request,
    dto: TransitionRequest,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> TransitionResponse | JSONResponse:
    try:
        require_authenticated(user)
        return board_service.transition(db, user, dto)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_transition_failed")


@board_router.post("/bulk-delete", response_model=BulkDeleteResponse)
def bulk_delete_leads(
    request: Request,
    dto: BulkDeleteRequest,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> BulkDeleteResponse | JSONResponse:
    try:
        require_authenticated(user)
        return trash_service.soft_delete_leads(db, user, dto.lead_ids)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_bulk_delete_failed")


@board_router.get("/layout", response_model=ViewPreferenceRead)
def get_layout(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ViewPreferenceRead | JSONResponse:
    try:
        require_authenticated(user)
        return board_service.get_layout(db, user)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_layout_get_failed")


@board_router.put("/layout", response_model=ViewPreferenceRead)
def replace_layout(
    request: Request,
    dto: ViewPreferenceUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ViewPreferenceRead | JSONResponse:
    try:
        require_authenticated(user)
        return board_service.replace_layout(db, user, dto)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_layout_update_failed")


@board_router.post("/layout/{column}/{action}", response_model=ViewPreferenceRead)
def change_column_state(
    request: Request,
    column: str,
    action: ColumnAction,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ViewPreferenceRead | JSONResponse:
    try:
        require_authenticated(user)
        return board_service.change_column_state(db, user, column, action)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_layout_update_failed")


@board_router.put("/layout/{column}/width", response_model=ViewPreferenceRead)
def set_column_width(
    request: Request,
    column: str,
    dto: ColumnWidthUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ViewPreferenceRead | JSONResponse:
    try:
        require_authenticated(user)
        return board_service.set_column_width(db, user, column, dto.width)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "board_layout_update_failed")


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.list_leads(db, user, status=status_filter)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_list_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.create_lead(db, user, dto)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_create_failed")


@leads_router.delete("", response_model=BulkDeleteResponse)
def delete_all_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> BulkDeleteResponse | JSONResponse:
    try:
        require_authenticated(user)
        return trash_service.soft_delete_all(db, user)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_delete_all_failed")


@leads_router.get("/follow-ups", response_model=list[FollowUpRead])
def list_follow_ups(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[FollowUpRead] | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.find_follow_ups(db, user)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_follow_ups_failed")


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.get_lead(db, user, lead_id)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_get_failed")


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.update_lead(db, user, lead_id, dto)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_update_failed")


@leads_router.put("/{lead_id}/items", response_model=LeadRead)
def replace_lead_items(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadItemsReplace,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.replace_items(db, user, lead_id, dto)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_items_update_failed")


@leads_router.patch("/{lead_id}/tracking", response_model=LeadRead)
def patch_lead_tracking(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadTrackingUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.update_tracking(db, user, lead_id, dto)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_tracking_update_failed")


@leads_router.get("/{lead_id}/history", response_model=list[LeadStatusHistoryRead])
def get_lead_history(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[LeadStatusHistoryRead] | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.list_history(db, user, lead_id)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "leads_history_failed")


@trash_router.get("", response_model=list[DeletedLeadRead])
def list_deleted_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[DeletedLeadRead] | JSONResponse:
    try:
        require_authenticated(user)
        return trash_service.list_deleted(db, user)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "trash_list_failed")


@trash_router.post("/purge-expired", response_model=None)
def purge_expired_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> Any:
    try:
        require_authenticated(user)
        return {"purged": trash_service.purge_expired(db, user)}
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "trash_purge_expired_failed")


@trash_router.post("/{deleted_id}/restore", response_model=LeadRead)
def restore_lead(
    request: Request,
    deleted_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return trash_service.restore(db, user, deleted_id)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "trash_restore_failed")


@trash_router.delete("/{deleted_id}", status_code=status.HTTP_200_OK, response_model=None)
def purge_deleted_lead(
    request: Request,
    deleted_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> Any:
    try:
        require_authenticated(user)
        trash_service.purge(db, user, deleted_id)
        return {"status": "deleted"}
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "trash_purge_failed")


@analytics_router.get("/payments", response_model=PaymentAnalyticsRead)
def payment_analytics(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> PaymentAnalyticsRead | JSONResponse:
    try:
        require_authenticated(user)
        return analytics_service.payment_analytics(db, user)
    except (CRMError, HTTPException) as exc:
        return failure_response(request, exc, "analytics_payments_failed")
