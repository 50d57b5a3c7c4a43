"""
Load CRUD, comments and spreadsheet export.

Every route resolves the target load before checking permissions, so a
missing id is a 404 for every role.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from loadflow.api.v1.deps import get_current_actor, get_db, require_permission
from loadflow.core.lifecycle import LoadStatus
from loadflow.core.permissions import Action, Actor
from loadflow.models.load import Comment, Load
from loadflow.models.user import User
from loadflow.schemas.load import (CommentCreate, CommentRead, ExportFilters,
                                   ExportFilterType, LoadCreate, LoadRecord,
                                   LoadUpdate)
from loadflow.schemas.token import MessageResponse
from loadflow.services import export as export_service
from loadflow.services import loads as load_service

router = APIRouter(prefix="/loads", tags=["loads"])


@router.get("", response_model=list[LoadRecord])
async def list_loads(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[Load]:
    """All loads for privileged roles; only assigned loads for employees."""
    return await load_service.list_loads(db, actor)


@router.get("/export")
async def export_loads(
    filter_type: ExportFilterType = "all",
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission(Action.EXPORT_LOADS)),
) -> Response:
    """Download the filtered load list as an .xlsx workbook."""
    filters = ExportFilters(filter_type=filter_type, date_from=date_from, date_to=date_to)
    loads = await load_service.list_loads(db, Actor.of(user))
    rows = export_service.filter_for_export(
        [load_service.to_record(l) for l in loads], filters
    )
    return Response(
        content=export_service.build_workbook(rows),
        media_type=export_service.XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f"attachment; filename={export_service.export_filename(filters)}"
        },
    )


@router.get("/status/{status}", response_model=list[LoadRecord])
async def list_loads_by_status(
    status: LoadStatus,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[Load]:
    return await load_service.list_loads(db, actor, status=status)


@router.get("/{load_id}", response_model=LoadRecord)
async def get_load(
    load_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Load:
    return await load_service.read_load(db, actor, load_id)


@router.post("", response_model=LoadRecord, status_code=201)
async def create_load(
    body: LoadCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Load:
    return await load_service.create_load(db, actor, body)


@router.put("/{load_id}", response_model=LoadRecord)
async def update_load(
    load_id: int,
    body: LoadUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Load:
    """Privileged roles may change any field; employees only the status of their own loads."""
    return await load_service.update_load(db, actor, load_id, body)


@router.delete("/{load_id}", response_model=MessageResponse)
async def delete_load(
    load_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageResponse:
    await load_service.delete_load(db, actor, load_id)
    return MessageResponse(message="Load deleted successfully")


# ── Comments ────────────────────────────────────────────────────────
@router.get("/{load_id}/comments", response_model=list[CommentRead])
async def list_comments(
    load_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[Comment]:
    return await load_service.list_comments(db, actor, load_id)


@router.post("/{load_id}/comments", response_model=CommentRead, status_code=201)
async def add_comment(
    load_id: int,
    body: CommentCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Comment:
    return await load_service.add_comment(db, actor, load_id, body)
