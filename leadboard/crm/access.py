from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import Select, or_

from leadboard.crm.models import Lead
from leadboard.crm.schemas import TRACKING_FIELDS

ROLE_ADMIN = "admin"
ROLE_PRODUCTION_MANAGER = "production_manager"

PRODUCTION_VISIBLE_STATUSES = ("production", "delivered")


@dataclass(slots=True)
class AuthContext:
    """Identity of the user a board, store or service acts for."""

    user_id: str
    roles: list[str] = field(default_factory=list)
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_production_manager(self) -> bool:
        return ROLE_PRODUCTION_MANAGER in self.roles


class _LeadLike(Protocol):
    status: Any
    created_by: Any
    assigned_to: Any


def _is_own(ctx: AuthContext, lead: _LeadLike) -> bool:
    return ctx.user_id in {lead.created_by, lead.assigned_to}


def can_view(ctx: AuthContext, lead: _LeadLike) -> bool:
    if ctx.is_admin or _is_own(ctx, lead):
        return True
    return ctx.is_production_manager and lead.status in PRODUCTION_VISIBLE_STATUSES


def can_edit(ctx: AuthContext, lead: _LeadLike, fields: Iterable[str]) -> bool:
    if ctx.is_admin or _is_own(ctx, lead):
        return True
    # Production managers only maintain courier tracking on orders they can see.
    changed = set(fields)
    return bool(changed) and changed <= TRACKING_FIELDS and ctx.is_production_manager and can_view(ctx, lead)


def can_delete(ctx: AuthContext, lead: _LeadLike) -> bool:
    return ctx.is_admin or lead.created_by == ctx.user_id


def can_manage_snapshot(ctx: AuthContext, deleted_by: str) -> bool:
    return ctx.is_admin or deleted_by == ctx.user_id


def apply_read_scope(stmt: Select[Any], ctx: AuthContext) -> Select[Any]:
    if ctx.is_admin:
        return stmt
    own = or_(Lead.created_by == ctx.user_id, Lead.assigned_to == ctx.user_id)
    if ctx.is_production_manager:
        return stmt.where(or_(own, Lead.status.in_(PRODUCTION_VISIBLE_STATUSES)))
    return stmt.where(own)
