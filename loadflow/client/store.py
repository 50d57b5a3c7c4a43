"""
Client-side cache of the loads the current actor may see.

The store keeps two layers per load:

* the *base*: the latest record the server has vouched for (from a fetch,
  an event or a confirmed mutation);
* the *visible* record: the base with every still-pending optimistic
  patch re-applied on top, in the order the patches were made.

Optimistic mutations are two-phase. ``apply_optimistic`` returns a
``RollbackToken``; the caller later either ``confirm``s it (the server
accepted the write) or ``rollback``s it (the server refused). Because the
visible record is always recomputed from base + pending patches, a server
event that lands while a mutation is in flight never clobbers the local
edit, and a rollback restores exactly what the server last said.

Server records are merged last-writer-wins on ``updated_at``: a record
older than the base already held for that id is ignored.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Hashable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loadflow.core.exceptions import NotFoundError, ValidationError
from loadflow.core.permissions import Actor, can_view
from loadflow.schemas.load import LoadRecord, LoadUpdate

logger = logging.getLogger(__name__)

Listener = Callable[["LoadStore"], None]


@dataclass(frozen=True)
class RollbackToken:
    """Handle on one pending optimistic mutation."""

    seq: int
    load_id: Hashable
    patch: Mapping[str, Any] = field(repr=False)
    snapshot: LoadRecord = field(repr=False)


def validation_error_from(exc: PydanticValidationError) -> ValidationError:
    first = exc.errors()[0]
    loc = first.get("loc") or ()
    return ValidationError(first["msg"], field=str(loc[-1]) if loc else None)


def canonical_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Validate *patch* and rename its keys to ``LoadRecord`` field names."""
    try:
        parsed = LoadUpdate.model_validate(dict(patch))
    except PydanticValidationError as exc:
        raise validation_error_from(exc) from exc
    return parsed.model_dump(exclude_unset=True)


def _apply_patch(record: LoadRecord, patch: Mapping[str, Any]) -> LoadRecord:
    data = record.model_dump()
    if "assigned_to" in patch and patch["assigned_to"] != record.assigned_to:
        # display names are joined server-side; unknown until confirmed
        data["assigned_to_name"] = None
        data["assigned_to_email"] = None
    data.update(patch)
    try:
        return LoadRecord.model_validate(data)
    except PydanticValidationError as exc:
        raise validation_error_from(exc) from exc


class LoadStore:
    def __init__(self, actor: Actor | None = None) -> None:
        self.actor = actor
        self.version = 0
        self._base: dict[Hashable, LoadRecord] = {}
        self._records: dict[Hashable, LoadRecord] = {}
        self._pending: dict[Hashable, list[RollbackToken]] = {}
        self._seq = itertools.count(1)
        self._listeners: list[Listener] = []

    # ── Reading ─────────────────────────────────────────────────────
    def get(self, load_id: Hashable) -> LoadRecord | None:
        return self._records.get(load_id)

    def server_record(self, load_id: Hashable) -> LoadRecord | None:
        return self._base.get(load_id)

    @property
    def records(self) -> list[LoadRecord]:
        return list(self._records.values())

    def has_pending(self, load_id: Hashable | None = None) -> bool:
        if load_id is None:
            return bool(self._pending)
        return bool(self._pending.get(load_id))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, load_id: object) -> bool:
        return load_id in self._records

    def __iter__(self) -> Iterator[LoadRecord]:
        return iter(list(self._records.values()))

    # ── Listeners ───────────────────────────────────────────────────
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self) -> None:
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Load store listener failed")

    # ── Internals ───────────────────────────────────────────────────
    def _visible(self, load_id: Hashable) -> LoadRecord:
        record = self._base[load_id]
        for token in self._pending.get(load_id, ()):
            record = _apply_patch(record, token.patch)
        return record

    def _allowed(self, record: LoadRecord) -> bool:
        return self.actor is None or can_view(self.actor, record)

    # ── Server-driven updates ───────────────────────────────────────
    def load(self, initial: Iterable[LoadRecord]) -> None:
        """Replace the whole set with a fresh fetch.

        Pending optimistic patches survive for loads that are still
        present; those for loads that vanished are dropped.
        """
        base: dict[Hashable, LoadRecord] = {}
        for record in initial:
            if not self._allowed(record):
                continue
            held = self._base.get(record.id)
            if held is not None and held.updated_at > record.updated_at:
                record = held
            base[record.id] = record

        self._pending = {k: v for k, v in self._pending.items() if k in base}
        self._base = base
        self._records = {load_id: self._visible(load_id) for load_id in base}
        self._changed()

    def upsert(self, record: LoadRecord, prepend: bool = False) -> bool:
        """Merge one server record; returns False if it was stale.

        A record the actor may no longer see is removed instead.
        New records go to the front when *prepend* is set.
        """
        if not self._allowed(record):
            self.remove(record.id)
            return True
        held = self._base.get(record.id)
        if held is not None and record.updated_at < held.updated_at:
            logger.debug("Ignoring stale record for load %s", record.id)
            return False

        self._base[record.id] = record
        visible = self._visible(record.id)
        if record.id in self._records or not prepend:
            self._records[record.id] = visible
        else:
            self._records = {record.id: visible, **self._records}
        self._changed()
        return True

    def remove(self, load_id: Hashable) -> bool:
        """Drop a load and any pending mutation on it. Idempotent."""
        self._pending.pop(load_id, None)
        self._base.pop(load_id, None)
        if self._records.pop(load_id, None) is None:
            return False
        self._changed()
        return True

    # ── Optimistic mutations ────────────────────────────────────────
    def apply_optimistic(self, load_id: Hashable, patch: Mapping[str, Any]) -> RollbackToken:
        current = self._records.get(load_id)
        if current is None:
            raise NotFoundError("Load not found")
        clean = canonical_patch(patch)
        updated = _apply_patch(current, clean)

        token = RollbackToken(next(self._seq), load_id, clean, current)
        self._pending.setdefault(load_id, []).append(token)
        self._records[load_id] = updated
        self._changed()
        return token

    def _take(self, token: RollbackToken) -> bool:
        tokens = self._pending.get(token.load_id)
        if not tokens or token not in tokens:
            return False
        tokens.remove(token)
        if not tokens:
            del self._pending[token.load_id]
        return True

    def confirm(self, token: RollbackToken, server_record: LoadRecord | None = None) -> None:
        """The server accepted *token*'s write.

        With *server_record* the server's copy becomes the new base;
        without one the patch is folded into the base as-is.
        """
        if not self._take(token):
            if server_record is not None and token.load_id in self._base:
                self.upsert(server_record)
            return
        if token.load_id not in self._base:
            return
        if server_record is not None and self.upsert(server_record):
            return
        if server_record is not None:
            # a newer write already replaced the base; just drop our patch
            self._records[token.load_id] = self._visible(token.load_id)
            self._changed()
            return
        self._base[token.load_id] = _apply_patch(self._base[token.load_id], token.patch)
        self._records[token.load_id] = self._visible(token.load_id)
        self._changed()

    def rollback(self, token: RollbackToken) -> None:
        """Undo *token*; later pending patches on the same load are kept."""
        if not self._take(token):
            return
        if token.load_id not in self._base:
            return
        self._records[token.load_id] = self._visible(token.load_id)
        self._changed()
