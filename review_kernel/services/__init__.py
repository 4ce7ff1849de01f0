"""Kernel services: persistence collaborators for request documents."""

from review_kernel.services.request_store import (
    InMemoryRequestStore,
    RequestStore,
    SqlRequestStore,
)

__all__ = [
    "InMemoryRequestStore",
    "RequestStore",
    "SqlRequestStore",
]
