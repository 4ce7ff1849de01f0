"""ORM models for the review kernel."""

from review_kernel.models.event_request import EventRequestModel, StatusHistoryModel

__all__ = [
    "EventRequestModel",
    "StatusHistoryModel",
]
