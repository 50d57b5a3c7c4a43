"""Pydantic schemas for User CRUD."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from loadflow.core.lifecycle import as_utc
from loadflow.core.permissions import ROLE_TOKENS


def _check_role(v: str) -> str:
    if v not in ROLE_TOKENS:
        raise ValueError(f"Role must be one of: {', '.join(ROLE_TOKENS)}")
    return v


def _check_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v:
        raise ValueError("Invalid email address")
    return v


class UserCreate(BaseModel):
    email: str
    password: str
    name: str
    role: str

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str) -> str:
        return _check_role(v)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("name", "password")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class UserRead(BaseModel):
    id: int
    email: str
    name: str
    role: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class UserUpdate(BaseModel):
    email: str | None = None
    name: str | None = None
    role: str | None = None
    password: str | None = None

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str | None) -> str | None:
        return _check_role(v) if v is not None else None

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str | None) -> str | None:
        return _check_email(v) if v is not None else None
