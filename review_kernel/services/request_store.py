"""
review_kernel.services.request_store -- Persistence for request documents.

Responsibility:
    Atomic read-modify-write of event request documents with optimistic
    concurrency, and append-only writing of their status history.

Architecture position:
    Kernel > Services. May import from domain/, models/, db/.

Invariants enforced:
    - A write succeeds only against the version the caller read. A losing
      writer gets OptimisticLockError and must re-read; nothing is
      overwritten blindly.
    - Status history only grows: entries already persisted are never
      rewritten, new ones are appended in order.
    - Deleting a request keeps its history.

Failure modes:
    - RequestNotFoundError for an unknown request id.
    - OptimisticLockError when the stored version moved.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from review_kernel.domain.request import EventRequest, StatusHistoryEntry
from review_kernel.exceptions import OptimisticLockError, RequestNotFoundError
from review_kernel.logging_config import get_logger
from review_kernel.models.event_request import EventRequestModel, StatusHistoryModel

logger = get_logger("services.request_store")

Mutation = Callable[[EventRequest], None]


class RequestStore(Protocol):
    """The persistence collaborator consumed by the workflow service."""

    def add(self, request: EventRequest) -> EventRequest:
        ...

    def find(self, request_id: UUID) -> EventRequest | None:
        ...

    def get(self, request_id: UUID) -> EventRequest:
        ...

    def find_and_update(
        self, request_id: UUID, expected_version: int, mutation: Mutation,
    ) -> EventRequest:
        ...

    def delete(self, request_id: UUID) -> None:
        ...

    def list_requests(self) -> list[EventRequest]:
        ...

    def history_for(self, request_id: UUID) -> list[StatusHistoryEntry]:
        ...


def _apply(current: EventRequest, mutation: Mutation) -> tuple[EventRequest, list[StatusHistoryEntry]]:
    """Run ``mutation`` on a copy; return it with its new history entries."""
    persisted = len(current.status_history)
    updated = current.clone()
    mutation(updated)
    if len(updated.status_history) < persisted:
        raise ValueError("Mutation removed status history entries")
    updated.status_history[:persisted] = current.status_history
    updated.version = current.version + 1
    return updated, updated.status_history[persisted:]


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryRequestStore:
    """Lock-protected dict store. Returned requests are always copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[UUID, EventRequest] = {}
        self._history: dict[UUID, list[StatusHistoryEntry]] = {}

    def add(self, request: EventRequest) -> EventRequest:
        with self._lock:
            stored = request.clone()
            stored.version = 1
            self._requests[stored.id] = stored
            self._history[stored.id] = list(stored.status_history)
            return stored.clone()

    def find(self, request_id: UUID) -> EventRequest | None:
        with self._lock:
            stored = self._requests.get(request_id)
            return stored.clone() if stored is not None else None

    def get(self, request_id: UUID) -> EventRequest:
        found = self.find(request_id)
        if found is None:
            raise RequestNotFoundError(str(request_id))
        return found

    def find_and_update(
        self, request_id: UUID, expected_version: int, mutation: Mutation,
    ) -> EventRequest:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise RequestNotFoundError(str(request_id))
            if current.version != expected_version:
                raise OptimisticLockError("EventRequest", str(request_id), expected_version)
            updated, appended = _apply(current, mutation)
            self._requests[request_id] = updated
            self._history[request_id].extend(appended)
            return updated.clone()

    def delete(self, request_id: UUID) -> None:
        with self._lock:
            if self._requests.pop(request_id, None) is None:
                raise RequestNotFoundError(str(request_id))

    def list_requests(self) -> list[EventRequest]:
        with self._lock:
            return [r.clone() for r in self._requests.values()]

    def history_for(self, request_id: UUID) -> list[StatusHistoryEntry]:
        with self._lock:
            return list(self._history.get(request_id, []))


# ---------------------------------------------------------------------------
# SQLAlchemy store
# ---------------------------------------------------------------------------


class SqlRequestStore:
    """SQLAlchemy-backed store.

    Writes are flushed, not committed; the caller owns the transaction
    (``session_scope``).
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _load_row(self, request_id: UUID) -> EventRequestModel | None:
        return self._session.get(
            EventRequestModel, request_id, populate_existing=True,
        )

    def _load_history(self, request_id: UUID) -> list[StatusHistoryModel]:
        return list(
            self._session.scalars(
                select(StatusHistoryModel)
                .where(StatusHistoryModel.request_id == request_id)
                .order_by(StatusHistoryModel.sequence)
            )
        )

    def _append_history(
        self, request_id: UUID, start: int, entries: list[StatusHistoryEntry],
    ) -> None:
        for offset, entry in enumerate(entries):
            self._session.add(
                StatusHistoryModel.from_dto(request_id, start + offset, entry)
            )

    def add(self, request: EventRequest) -> EventRequest:
        stored = request.clone()
        stored.version = 1
        self._session.add(EventRequestModel.from_dto(stored))
        self._append_history(stored.id, 0, stored.status_history)
        self._session.flush()
        logger.debug(
            "request_inserted",
            extra={"request_id": str(stored.id), "status": stored.status.value},
        )
        return stored

    def find(self, request_id: UUID) -> EventRequest | None:
        row = self._load_row(request_id)
        if row is None:
            return None
        return row.to_dto(self._load_history(request_id))

    def get(self, request_id: UUID) -> EventRequest:
        found = self.find(request_id)
        if found is None:
            raise RequestNotFoundError(str(request_id))
        return found

    def find_and_update(
        self, request_id: UUID, expected_version: int, mutation: Mutation,
    ) -> EventRequest:
        current = self.get(request_id)
        if current.version != expected_version:
            raise OptimisticLockError("EventRequest", str(request_id), expected_version)

        updated, appended = _apply(current, mutation)
        result = self._session.execute(
            update(EventRequestModel)
            .where(
                EventRequestModel.id == request_id,
                EventRequestModel.version == expected_version,
            )
            .values(version=updated.version, **EventRequestModel.columns_from_dto(updated))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "optimistic_lock_conflict",
                extra={"request_id": str(request_id), "expected_version": expected_version},
            )
            raise OptimisticLockError("EventRequest", str(request_id), expected_version)

        self._append_history(request_id, len(current.status_history), appended)
        self._session.flush()
        return updated

    def delete(self, request_id: UUID) -> None:
        row = self._load_row(request_id)
        if row is None:
            raise RequestNotFoundError(str(request_id))
        self._session.delete(row)
        self._session.flush()

    def list_requests(self) -> list[EventRequest]:
        rows = self._session.scalars(
            select(EventRequestModel).order_by(EventRequestModel.created_at)
        ).all()
        return [row.to_dto(self._load_history(row.id)) for row in rows]

    def history_for(self, request_id: UUID) -> list[StatusHistoryEntry]:
        return [h.to_dto() for h in self._load_history(request_id)]
