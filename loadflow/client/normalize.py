"""
Backend row normalisation.

Backends disagree on field names: the SQL service answers with
snake_case, older deployments with camelCase, and the hosted variant calls
the client name ``title``. Everything entering the client core goes
through here and comes out as a canonical ``LoadRecord``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loadflow.core.exceptions import ValidationError
from loadflow.schemas.load import LoadEventMessage, LoadRecord
from loadflow.schemas.user import UserRead

_LOAD_KEYS: dict[str, str] = {
    "title": "client_name",
    "clientName": "client_name",
    "clientNumber": "client_number",
    "employeeCount": "employee_count",
    "assignedTo": "assigned_to",
    "assignedToName": "assigned_to_name",
    "assignedToEmail": "assigned_to_email",
    "createdBy": "created_by",
    "createdByName": "created_by_name",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

_USER_KEYS: dict[str, str] = {"createdAt": "created_at"}


def _rename(row: Mapping[str, Any], keys: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in row.items():
        canonical = keys.get(key, key)
        # an explicit canonical key wins over a legacy alias
        if canonical in out and key != canonical:
            continue
        out[canonical] = value
    return out


def normalize_load_row(row: Mapping[str, Any] | LoadRecord) -> LoadRecord:
    if isinstance(row, LoadRecord):
        return row
    data = _rename(row, _LOAD_KEYS)
    if not data.get("client_name"):
        data["client_name"] = row.get("title") or row.get("client_name") or ""
    data["client_number"] = data.get("client_number") or ""
    data["employee_count"] = data.get("employee_count") or 1
    try:
        return LoadRecord.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed load row: {exc.errors()[0]['msg']}") from exc


def normalize_user_row(row: Mapping[str, Any]) -> UserRead:
    try:
        return UserRead.model_validate(_rename(row, _USER_KEYS))
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed user row: {exc.errors()[0]['msg']}") from exc


def parse_event(payload: Mapping[str, Any]) -> LoadEventMessage:
    record = payload.get("record") or payload.get("new")
    old = payload.get("old_record") or payload.get("old")
    event_type = str(payload.get("type") or payload.get("eventType") or "").lower()
    if record is None and old is not None:
        record = old
    if record is None:
        raise ValidationError("Event carries no record")
    try:
        return LoadEventMessage(
            type=event_type,  # type: ignore[arg-type]
            record=normalize_load_row(record),
            old_record=normalize_load_row(old) if old else None,
        )
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed event: {exc.errors()[0]['msg']}") from exc
