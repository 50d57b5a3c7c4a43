"""Tests for auth and user management endpoints."""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers, create_load_via_api
from loadflow.core.permissions import Actor
from loadflow.core.security import create_refresh_token
from loadflow.models.load import Load
from loadflow.realtime.broker import broker


# ── Auth ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_login_sets_cookies_and_returns_user(async_client: AsyncClient, make_user):
    user = await make_user("allocator", email="alloc@example.com", password="pa55word")
    resp = await async_client.post(
        "/api/v1/auth/login", data={"username": "ALLOC@example.com ", "password": "pa55word"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["id"] == user.id
    assert "access_token" in resp.cookies

    # cookie alone is enough for subsequent requests
    me = await async_client.get("/api/v1/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "alloc@example.com"


@pytest.mark.asyncio
async def test_login_with_wrong_password(async_client: AsyncClient, make_user):
    await make_user(email="x@example.com", password="right")
    resp = await async_client.post(
        "/api/v1/auth/login", data={"username": "x@example.com", "password": "wrong"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_refresh_token_cannot_be_used_as_access_token(async_client: AsyncClient, employee):
    refresh = create_refresh_token(employee.id)
    resp = await async_client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh}"}
    )
    assert resp.status_code == 401

    renewed = await async_client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
    assert renewed.status_code == 200
    assert renewed.json()["user"]["id"] == employee.id


@pytest.mark.asyncio
async def test_verify_and_logout(async_client: AsyncClient, employee):
    verify = await async_client.get("/api/v1/auth/verify", headers=auth_headers(employee))
    assert verify.json()["valid"] is True
    out = await async_client.post("/api/v1/auth/logout")
    assert out.json() == {"message": "Logged out", "success": True}


# ── Users ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_user_listing_roles(async_client: AsyncClient, allocator, employee):
    assert (await async_client.get("/api/v1/users", headers=auth_headers(allocator))).status_code == 200
    assert (await async_client.get("/api/v1/users", headers=auth_headers(employee))).status_code == 403


@pytest.mark.asyncio
async def test_create_user_and_duplicate_email(async_client: AsyncClient, supervisor):
    headers = auth_headers(supervisor)
    body = {"email": "New@Example.com", "name": "Nia", "password": "pw123456", "role": "employee"}
    created = await async_client.post("/api/v1/users", json=body, headers=headers)
    assert created.status_code == 201
    assert created.json()["email"] == "new@example.com"
    assert "hashed_password" not in created.json()

    dup = await async_client.post("/api/v1/users", json=body, headers=headers)
    assert dup.status_code == 409
    assert dup.json()["field"] == "email"


@pytest.mark.asyncio
async def test_create_user_rejects_unknown_role(async_client: AsyncClient, admin):
    resp = await async_client.post(
        "/api/v1/users",
        json={"email": "r@example.com", "name": "R", "password": "pw", "role": "owner"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_allocator_cannot_manage_users(async_client: AsyncClient, allocator, employee):
    resp = await async_client.put(
        f"/api/v1/users/{employee.id}", json={"name": "X"}, headers=auth_headers(allocator)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_update_user(async_client: AsyncClient, admin, employee):
    headers = auth_headers(admin)
    resp = await async_client.put(
        f"/api/v1/users/{employee.id}", json={"role": "allocator"}, headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "allocator"

    empty = await async_client.put(f"/api/v1/users/{employee.id}", json={}, headers=headers)
    assert empty.status_code == 422

    missing = await async_client.put("/api/v1/users/9999", json={"name": "Z"}, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_delete_user_releases_assignments(
    async_client: AsyncClient, db_session: AsyncSession, admin, employee
):
    load = await create_load_via_api(async_client, admin, assigned_to=employee.id)

    async with broker.subscribe(Actor.of(admin)) as events:
        resp = await async_client.delete(f"/api/v1/users/{employee.id}", headers=auth_headers(admin))
        assert resp.status_code == 200
        message = events.queue.get_nowait()

    assert message.type == "update"
    assert message.record.assigned_to is None
    assert message.old_record.assigned_to == employee.id

    fresh = (await db_session.execute(select(Load).where(Load.id == load["id"]))).unique().scalar_one()
    assert fresh.assigned_to is None


@pytest.mark.asyncio
async def test_cannot_delete_creator_or_self(async_client: AsyncClient, admin, allocator):
    await create_load_via_api(async_client, allocator)
    headers = auth_headers(admin)

    creator = await async_client.delete(f"/api/v1/users/{allocator.id}", headers=headers)
    assert creator.status_code == 409

    myself = await async_client.delete(f"/api/v1/users/{admin.id}", headers=headers)
    assert myself.status_code == 409
