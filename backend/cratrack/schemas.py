from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer
from typing_extensions import Literal

from . import lifecycle


def _serialize_datetime(value: Optional[dt.datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class ReportCreateRequest(BaseModel):
    month: int
    year: int
    currency: str = "EUR"
    description: Optional[str] = None


class ReportUpdateRequest(BaseModel):
    # Unknown keys are kept so the service can reject them by name.
    model_config = ConfigDict(extra="allow")
    description: Optional[str] = None
    currency: Optional[str] = None


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: str
    month: int
    year: int
    currency: str
    description: Optional[str]
    status: Literal["draft", "submitted", "locked"]
    total_days: Decimal
    total_amount: int
    mission_ids: List[str] = Field(default_factory=list)
    submitted_at: Optional[dt.datetime] = None
    locked_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    @computed_field
    @property
    def allowed_operations(self) -> List[str]:
        return lifecycle.allowed_operations(self.status)

    @field_serializer("total_days")
    def _serialize_total_days(self, value: Decimal) -> str:
        return f"{value:.2f}"

    @field_serializer("submitted_at", "locked_at", "created_at", "updated_at")
    def _serialize_timestamps(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value)


class EntryCreateRequest(BaseModel):
    mission_id: str
    date: dt.date
    quantity: Decimal
    unit_price: int
    description: Optional[str] = None


class EntryUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")
    date: Optional[dt.date] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[int] = None
    description: Optional[str] = None


class EntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    report_id: str
    mission_id: str
    date: dt.date
    quantity: Decimal
    unit_price: int
    line_total: int
    description: Optional[str]
    created_at: dt.datetime
    updated_at: dt.datetime

    @field_serializer("quantity")
    def _serialize_quantity(self, value: Decimal) -> str:
        return f"{value:.2f}"

    @field_serializer("created_at", "updated_at")
    def _serialize_timestamps(self, value: dt.datetime) -> Optional[str]:
        return _serialize_datetime(value)


class ReportPageResponse(BaseModel):
    items: List[ReportResponse]
    total: int
    page: int
    per_page: int
    pages: int


class EntryPageResponse(BaseModel):
    items: List[EntryResponse]
    total: int
    page: int
    per_page: int
    pages: int


class LedgerCommitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    report_id: str
    snapshot_reference: str
    parent_reference: str
    committed_at: dt.datetime

    @field_serializer("committed_at")
    def _serialize_committed_at(self, value: dt.datetime) -> Optional[str]:
        return _serialize_datetime(value)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail = Field(...)
