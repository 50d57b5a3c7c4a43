"""Pydantic schemas for Loads, Comments and load change events."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator

from loadflow.core.lifecycle import LoadStatus, as_utc

# Rows from older backends use camelCase keys or call the client name "title".
_CLIENT_NAME = AliasChoices("client_name", "clientName", "title")
_CLIENT_NUMBER = AliasChoices("client_number", "clientNumber")
_EMPLOYEE_COUNT = AliasChoices("employee_count", "employeeCount")
_ASSIGNED_TO = AliasChoices("assigned_to", "assignedTo")


def _required_text(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be empty")
    return v


# ── Load ────────────────────────────────────────────────────────────
class LoadCreate(BaseModel):
    client_name: str = Field(validation_alias=_CLIENT_NAME, max_length=200)
    client_number: str = Field(validation_alias=_CLIENT_NUMBER, max_length=64)
    employee_count: int = Field(default=1, ge=1, validation_alias=_EMPLOYEE_COUNT)
    assigned_to: int | None = Field(default=None, validation_alias=_ASSIGNED_TO)
    status: LoadStatus = LoadStatus.PENDING

    model_config = {"populate_by_name": True}

    @field_validator("client_name", "client_number")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _required_text(v)


class LoadUpdate(BaseModel):
    client_name: str | None = Field(default=None, validation_alias=_CLIENT_NAME, max_length=200)
    client_number: str | None = Field(default=None, validation_alias=_CLIENT_NUMBER, max_length=64)
    employee_count: int | None = Field(default=None, ge=1, validation_alias=_EMPLOYEE_COUNT)
    assigned_to: int | None = Field(default=None, validation_alias=_ASSIGNED_TO)
    status: LoadStatus | None = None

    model_config = {"populate_by_name": True}

    @field_validator("client_name", "client_number")
    @classmethod
    def _not_blank(cls, v: str | None) -> str | None:
        return _required_text(v) if v is not None else None


class LoadRecord(BaseModel):
    """Canonical load shape shared by the API responses and the client store."""

    id: int
    client_name: str
    client_number: str
    status: LoadStatus
    employee_count: int = Field(default=1, ge=1)
    assigned_to: int | None = None
    assigned_to_name: str | None = None
    assigned_to_email: str | None = None
    created_by: int
    created_by_name: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# ── Comments ────────────────────────────────────────────────────────
class CommentCreate(BaseModel):
    content: str = Field(max_length=5000)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _required_text(v)


class CommentRead(BaseModel):
    id: int
    load_id: int
    user_id: int
    user_name: str | None = None
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# ── Change events ───────────────────────────────────────────────────
EventType = Literal["insert", "update", "delete"]


class LoadEventMessage(BaseModel):
    """One change notification on the load event stream.

    ``record`` is the row after the change (for deletes, the last state
    of the removed row); ``old_record`` is the row before an update or
    delete.
    """

    type: EventType
    record: LoadRecord
    old_record: LoadRecord | None = None


# ── Export ──────────────────────────────────────────────────────────
ExportFilterType = Literal["all", "paused", "allocated"]


class ExportFilters(BaseModel):
    filter_type: ExportFilterType = "all"
    date_from: date | None = None
    date_to: date | None = None
