"""
HTTP adapter between the client core and the Loadflow service.

``LoadBackend`` is the interface the store, reconciler and actions depend
on; ``LoadsApi`` implements it over ``httpx``. Every row that comes back
is normalised to the canonical schemas before it reaches the core.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Hashable, Mapping
from typing import Any, Protocol

import httpx

from loadflow.client.config import ClientSettings, client_settings
from loadflow.client.errors import (StreamDisconnected, error_from_response,
                                    raise_for_status)
from loadflow.client.normalize import (normalize_load_row, normalize_user_row,
                                       parse_event)
from loadflow.core.exceptions import AuthenticationError, ValidationError
from loadflow.core.lifecycle import LoadStatus
from loadflow.schemas.load import CommentRead, LoadEventMessage, LoadRecord
from loadflow.schemas.user import UserRead

logger = logging.getLogger(__name__)


class EventSubscription(Protocol):
    async def open(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[LoadEventMessage]: ...

    async def close(self) -> None: ...


class LoadBackend(Protocol):
    async def fetch_all(self, status: LoadStatus | None = None) -> list[LoadRecord]: ...

    async def insert(self, fields: Mapping[str, Any]) -> LoadRecord: ...

    async def update(self, load_id: Hashable, patch: Mapping[str, Any]) -> LoadRecord: ...

    async def delete(self, load_id: Hashable) -> None: ...

    def subscribe(self) -> EventSubscription: ...


class SseSubscription:
    """One connection to ``GET /loads/events``, parsed into events.

    Iteration ends by raising: ``StreamDisconnected`` when the server
    closes the stream, or an ``httpx.TransportError`` when the network
    drops.
    """

    def __init__(self, client: httpx.AsyncClient, path: str, read_timeout: float) -> None:
        self._client = client
        self._path = path
        self._read_timeout = read_timeout
        self._response: httpx.Response | None = None

    async def open(self) -> None:
        request = self._client.build_request(
            "GET",
            self._path,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self._client.timeout.connect, read=self._read_timeout),
        )
        response = await self._client.send(request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            raise error_from_response(response)
        self._response = response

    async def __aiter__(self) -> AsyncIterator[LoadEventMessage]:
        if self._response is None:
            raise RuntimeError("subscription is not open")
        data_lines: list[str] = []
        async for line in self._response.aiter_lines():
            if not line:
                if data_lines:
                    payload = "\n".join(data_lines)
                    data_lines = []
                    try:
                        yield parse_event(json.loads(payload))
                    except (ValueError, ValidationError) as exc:
                        logger.warning("Dropping malformed event: %s", exc)
                continue
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if field == "data":
                data_lines.append(value[1:] if value.startswith(" ") else value)
        raise StreamDisconnected("event stream closed by server")

    async def close(self) -> None:
        if self._response is not None:
            await self._response.aclose()
            self._response = None

    async def __aenter__(self) -> "SseSubscription":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class LoadsApi:
    """Async client for the Loadflow HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        settings: ClientSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or client_settings
        self._client = httpx.AsyncClient(
            base_url=base_url or self.settings.API_URL,
            timeout=self.settings.REQUEST_TIMEOUT,
            transport=transport,
        )
        self.token: str | None = None
        if token:
            self.set_token(token)

    # ── Session ─────────────────────────────────────────────────────
    def set_token(self, token: str) -> None:
        self.token = token
        self._client.headers["Authorization"] = f"Bearer {token}"

    def clear_token(self) -> None:
        self.token = None
        self._client.headers.pop("Authorization", None)
        self._client.cookies.clear()

    async def login(self, email: str, password: str) -> UserRead:
        response = raise_for_status(
            await self._client.post("/auth/login", data={"username": email, "password": password})
        )
        body = response.json()
        self.set_token(body["access_token"])
        return normalize_user_row(body["user"])

    async def logout(self) -> None:
        try:
            await self._client.post("/auth/logout")
        finally:
            self.clear_token()

    async def current_user(self) -> UserRead | None:
        if self.token is None:
            return None
        response = await self._client.get("/auth/me")
        if response.status_code == 401:
            return None
        return normalize_user_row(raise_for_status(response).json())

    # ── Loads ───────────────────────────────────────────────────────
    async def fetch_all(self, status: LoadStatus | None = None) -> list[LoadRecord]:
        path = "/loads" if status is None else f"/loads/status/{LoadStatus(status).value}"
        response = raise_for_status(await self._client.get(path))
        return [normalize_load_row(row) for row in response.json()]

    async def fetch_one(self, load_id: Hashable) -> LoadRecord:
        response = raise_for_status(await self._client.get(f"/loads/{load_id}"))
        return normalize_load_row(response.json())

    async def insert(self, fields: Mapping[str, Any]) -> LoadRecord:
        response = raise_for_status(await self._client.post("/loads", json=_jsonable(fields)))
        return normalize_load_row(response.json())

    async def update(self, load_id: Hashable, patch: Mapping[str, Any]) -> LoadRecord:
        response = raise_for_status(
            await self._client.put(f"/loads/{load_id}", json=_jsonable(patch))
        )
        return normalize_load_row(response.json())

    async def delete(self, load_id: Hashable) -> None:
        raise_for_status(await self._client.delete(f"/loads/{load_id}"))

    async def export(self, filter_type: str = "all", date_from=None, date_to=None) -> bytes:
        params = {"filter_type": filter_type}
        if date_from is not None:
            params["date_from"] = date_from.isoformat()
        if date_to is not None:
            params["date_to"] = date_to.isoformat()
        response = raise_for_status(await self._client.get("/loads/export", params=params))
        return response.content

    def subscribe(self) -> SseSubscription:
        if self.token is None:
            raise AuthenticationError("Not signed in")
        return SseSubscription(self._client, "/loads/events", self.settings.STREAM_READ_TIMEOUT)

    # ── Comments ────────────────────────────────────────────────────
    async def list_comments(self, load_id: Hashable) -> list[CommentRead]:
        response = raise_for_status(await self._client.get(f"/loads/{load_id}/comments"))
        return [CommentRead.model_validate(row) for row in response.json()]

    async def add_comment(self, load_id: Hashable, content: str) -> CommentRead:
        response = raise_for_status(
            await self._client.post(f"/loads/{load_id}/comments", json={"content": content})
        )
        return CommentRead.model_validate(response.json())

    # ── Users ───────────────────────────────────────────────────────
    async def list_users(self) -> list[UserRead]:
        response = raise_for_status(await self._client.get("/users"))
        return [normalize_user_row(row) for row in response.json()]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "LoadsApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _jsonable(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, LoadStatus) else v) for k, v in fields.items()}
