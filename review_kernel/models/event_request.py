"""
Module: review_kernel.models.event_request
Responsibility: ORM persistence for event request documents and their
    status history.

Architecture position: Kernel > Models. May import from db/base.py and
    domain value objects only.

Invariants enforced:
    - Optimistic concurrency: ``version`` is bumped on every write; the
      request store updates with ``WHERE id = :id AND version = :expected``.
    - Valid status values: DB check constraint on canonical states.
    - Append-only history: ``StatusHistoryModel`` rows are protected by the
      ORM listeners in db/immutability.py and carry no foreign key, so they
      survive deletion of the request document.

Failure modes:
    - IntegrityError on duplicate (request_id, sequence) history rows.
    - ImmutabilityViolationError on history UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from review_kernel.db.base import Base, UUIDString
from review_kernel.domain.request import EventRequest, StatusHistoryEntry
from review_kernel.domain.states import RequestState

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequestState)


class EventRequestModel(Base):
    """Persistent event request document.

    Nested value objects live in the ``document`` JSON column; the fields
    used for filtering are denormalized into their own columns.
    """

    __tablename__ = "event_requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_event_requests_valid_status",
        ),
        Index("ix_event_requests_requester", "requester_id"),
        Index("ix_event_requests_reviewer_status", "reviewer_id", "status"),
        Index("ix_event_requests_location", "location_id"),
    )

    status: Mapped[str] = mapped_column(String(50), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reviewer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    active_responder_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coverage_area_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<EventRequest {self.id} status={self.status} "
            f"version={self.version}>"
        )

    @staticmethod
    def columns_from_dto(dto: EventRequest) -> dict[str, Any]:
        """Column values for an INSERT or versioned UPDATE."""
        document = dto.to_dict()
        for key in ("id", "status", "status_history", "version", "created_at", "updated_at"):
            document.pop(key, None)
        return {
            "status": dto.status.value,
            "requester_id": dto.requester.user_id,
            "reviewer_id": dto.reviewer_id,
            "active_responder_id": (
                dto.active_responder.user_id if dto.active_responder else None
            ),
            "location_id": dto.location_id,
            "organization_id": dto.organization_id,
            "coverage_area_id": dto.coverage_area_id,
            "document": document,
            "created_at": dto.created_at,
            "updated_at": dto.updated_at or dto.created_at,
        }

    @classmethod
    def from_dto(cls, dto: EventRequest) -> EventRequestModel:
        return cls(id=dto.id, version=dto.version, **cls.columns_from_dto(dto))

    def to_dto(self, history: list[StatusHistoryModel] | None = None) -> EventRequest:
        """Rebuild the domain aggregate; ``history`` must be in sequence order."""
        data = dict(self.document)
        data.update(
            id=str(self.id),
            status=self.status,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            status_history=[],
        )
        request = EventRequest.from_dict(data)
        request.status_history = [h.to_dto() for h in history or []]
        return request


class StatusHistoryModel(Base):
    """Status history row. Append-only."""

    __tablename__ = "event_request_status_history"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_event_request_status_history_seq",
        ),
        Index("ix_event_request_status_history_request", "request_id"),
    )

    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str | None] = mapped_column(String(50), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StatusHistory request={self.request_id} "
            f"#{self.sequence} {self.status}>"
        )

    def to_dto(self) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            status=RequestState(self.status),
            changed_at=self.changed_at,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            action=self.action,
            note=self.note,
        )

    @classmethod
    def from_dto(
        cls, request_id: UUID, sequence: int, dto: StatusHistoryEntry,
    ) -> StatusHistoryModel:
        return cls(
            request_id=request_id,
            sequence=sequence,
            status=dto.status.value,
            action=dto.action,
            actor_id=dto.actor_id,
            actor_name=dto.actor_name,
            note=dto.note,
            changed_at=dto.changed_at,
        )
