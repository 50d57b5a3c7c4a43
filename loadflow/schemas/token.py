"""Pydantic schemas for JWT tokens and session responses."""

from __future__ import annotations

from pydantic import BaseModel

from loadflow.schemas.user import UserRead


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserRead | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


class VerifyResponse(BaseModel):
    valid: bool
    user: UserRead


class MessageResponse(BaseModel):
    message: str
    success: bool = True
