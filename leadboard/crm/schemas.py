from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


LeadStatus = Literal[
    "leads",
    "photos_received",
    "mockup_done",
    "price_shared",
    "payment_done",
    "production",
    "delivered",
]
ProductType = Literal["fp_pro", "fw", "ft"]
PaymentType = Literal["full_payment", "partial_payment", "cod"]
DeliveryMethod = Literal["courier", "store_collection"]
TrackingStatus = Literal["pending_pickup", "in_transit", "out_for_delivery", "delivered", "failed"]

LEAD_STATUSES: tuple[str, ...] = (
    "leads",
    "photos_received",
    "mockup_done",
    "price_shared",
    "payment_done",
    "production",
    "delivered",
)
STAGE_TITLES: dict[str, str] = {
    "leads": "Leads",
    "photos_received": "Photos Received",
    "mockup_done": "Mockup Done",
    "price_shared": "Price Shared",
    "payment_done": "Payment Done",
    "production": "Production",
    "delivered": "Delivered",
}
PAYMENT_TYPES: tuple[str, ...] = ("full_payment", "partial_payment", "cod")

TRACKING_FIELDS = frozenset({"tracking_number", "tracking_status", "tracking_updated_at", "packing_date"})


class LeadItemCreate(BaseModel):
    product_type: ProductType
    size: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    price_aed: Decimal | None = Field(default=None, ge=0)


class LeadItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    product_type: ProductType
    size: str
    quantity: int
    price_aed: Decimal | None
    created_at: datetime
    updated_at: datetime


class LeadCreate(BaseModel):
    customer_name: str = Field(min_length=1)
    customer_email: EmailStr | None = None
    customer_phone: str = Field(min_length=10)
    customer_address: str | None = None
    notes: str | None = None
    assigned_to: str | None = None
    payment_type: PaymentType | None = None
    delivery_method: DeliveryMethod | None = None
    items: list[LeadItemCreate] = Field(min_length=1)


class LeadUpdate(BaseModel):
    customer_name: str | None = Field(default=None, min_length=1)
    customer_email: EmailStr | None = None
    customer_phone: str | None = Field(default=None, min_length=10)
    customer_address: str | None = None
    notes: str | None = None
    assigned_to: str | None = None
    status: LeadStatus | None = None
    payment_type: PaymentType | None = None
    delivery_method: DeliveryMethod | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "LeadUpdate":
        # Omitting these is fine; clearing them is not.
        cleared = [
            name
            for name in ("customer_name", "customer_phone", "status")
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class LeadItemsReplace(BaseModel):
    items: list[LeadItemCreate] = Field(min_length=1)


class LeadTrackingUpdate(BaseModel):
    tracking_number: str | None = None
    tracking_status: TrackingStatus | None = None
    packing_date: date | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str
    customer_name: str
    customer_email: str | None = None
    customer_phone: str
    customer_address: str | None = None
    notes: str | None = None
    status: LeadStatus
    assigned_to: str | None = None
    created_by: str
    payment_type: PaymentType | None = None
    delivery_method: DeliveryMethod | None = None
    tracking_number: str | None = None
    tracking_status: TrackingStatus | None = None
    tracking_updated_at: datetime | None = None
    packing_date: date | None = None
    last_status_change: datetime
    created_at: datetime
    updated_at: datetime
    items: list[LeadItemRead] = Field(default_factory=list)


class LeadStatusHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    old_status: LeadStatus | None
    new_status: LeadStatus
    changed_by: str
    changed_at: datetime


class DeletedLeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    lead_data: dict[str, Any]
    lead_items: list[dict[str, Any]]
    deleted_by: str
    deleted_at: datetime
    restore_deadline: datetime


class FollowUpRead(BaseModel):
    lead_id: UUID
    order_id: str
    customer_name: str
    status: LeadStatus
    assigned_to: str | None
    last_status_change: datetime


class BulkDeleteRequest(BaseModel):
    lead_ids: list[UUID] = Field(min_length=1)


class BulkDeleteResponse(BaseModel):
    requested: int
    deleted: int
    snapshot_ids: list[UUID]


class TransitionRequest(BaseModel):
    lead_id: UUID
    target: str = Field(min_length=1, description="A stage id, or the id of the lead the card was dropped on")


class TransitionResponse(BaseModel):
    outcome: Literal["applied", "unchanged", "rejected", "failed", "ignored"]
    lead_id: UUID
    status: LeadStatus | None
    message: str | None


class ColumnState(str, Enum):
    NORMAL = "normal"
    MINIMIZED = "minimized"
    MAXIMIZED = "maximized"


class ViewPreference(BaseModel):
    column_widths: dict[str, int] = Field(default_factory=dict)
    column_states: dict[str, ColumnState] = Field(default_factory=dict)


class ViewPreferenceRead(BaseModel):
    column_widths: dict[str, int]
    column_states: dict[str, ColumnState]
    minimized_columns: list[str]
    maximized_column: str | None


class ViewPreferenceUpdate(BaseModel):
    column_widths: dict[str, int] = Field(default_factory=dict)
    minimized_columns: list[str] = Field(default_factory=list)
    maximized_column: str | None = None


class ColumnWidthUpdate(BaseModel):
    width: int


class StageColumnRead(BaseModel):
    id: LeadStatus
    title: str
    state: ColumnState
    width: int
    display_width: int
    count: int
    total_value: Decimal
    leads: list[LeadRead]


class BoardRead(BaseModel):
    columns: list[StageColumnRead]
    total_leads: int
    filtered_count: int
    missing_payment_info_count: int


class PaymentAnalyticsRead(BaseModel):
    payment_breakdown: dict[str, int]
    revenue_by_payment_type: dict[str, Decimal]
    cod_conversion_rate: float
    prepaid_conversion_rate: float
    average_processing_hours: float
    stage_counts: dict[str, int]
    total_revenue: Decimal
