"""
Pytest fixtures for the review kernel test suite.

Provides:
- In-memory SQLite sessions (fresh schema per test)
- A static directory seeded with one user per authority tier
- The default routing configuration
- Workflow services over the in-memory and SQL stores
- Captured JSON log records
"""

import json
import logging
from io import StringIO

import pytest

from review_config import get_routing_config
from review_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from review_kernel.db.immutability import unregister_immutability_listeners
from review_kernel.domain.clock import DeterministicClock
from review_kernel.domain.directory import StaticDirectory
from review_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from review_kernel.services.request_store import InMemoryRequestStore, SqlRequestStore
from review_services.request_workflow import RequestWorkflowService

REQUESTER_PERMISSIONS = (
    "request.create",
    "request.read",
    "request.reschedule",
    "request.confirm",
    "request.cancel",
    "request.update",
    "request.delete",
)

REVIEWER_PERMISSIONS = (
    "request.review",
    "request.approve",
    "request.read",
    "request.reschedule",
    "request.cancel",
    "request.manage-staff",
)


def build_cast() -> StaticDirectory:
    """One user per tier, plus three coordinators with different coverage.

    Insertion order matters: ``colin`` (org-y / muni-n) is listed before
    ``cora`` (org-x / muni-m) so a matching test cannot pass on pool order.
    """
    d = StaticDirectory()
    d.add_user(
        "basil", authority=20, first_name="Basil", last_name="Brook",
        permissions=REQUESTER_PERMISSIONS,
        organizations=("org-x",), coverage_areas=("muni-m",), roles=("basic",),
    )
    d.add_user(
        "sam", authority=30, first_name="Sam", last_name="Stone",
        email="sam@example.org",
        permissions=REQUESTER_PERMISSIONS,
        organizations=("org-x",), coverage_areas=("muni-m",), roles=("stakeholder",),
    )
    d.add_user(
        "colin", authority=60, first_name="Colin", last_name="Marsh",
        permissions=REVIEWER_PERMISSIONS,
        organizations=("org-y",), coverage_areas=("muni-n",), roles=("coordinator",),
    )
    d.add_user(
        "cora", authority=60, first_name="Cora", last_name="Vale",
        permissions=REVIEWER_PERMISSIONS + ("request.create", "request.confirm"),
        organizations=("org-x",), coverage_areas=("muni-m",), roles=("coordinator",),
    )
    d.add_user(
        "cole", authority=65, first_name="Cole", last_name="Reed",
        permissions=REVIEWER_PERMISSIONS,
        organizations=("org-x",), coverage_areas=("muni-m",), roles=("coordinator",),
    )
    d.add_user(
        "opal", authority=80, first_name="Opal", last_name="Hart",
        permissions=("request.*",), roles=("operational-admin",),
    )
    d.add_user(
        "sysa", authority=100, first_name="Sys", last_name="Admin",
        permissions=("*.*",), roles=("system-admin",),
    )
    return d


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture review_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.create_request("sam")
            logs = captured_logs()
            assert any(r["message"] == "request_action" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("review_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def directory() -> StaticDirectory:
    return build_cast()


@pytest.fixture(scope="session")
def routing_config():
    return get_routing_config()


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session():
    """A session on a fresh in-memory SQLite schema, torn down after the test."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    sess = get_session()
    yield sess
    try:
        sess.close()
    finally:
        unregister_immutability_listeners()
        drop_tables()
        reset_engine()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


@pytest.fixture
def sql_store(session) -> SqlRequestStore:
    return SqlRequestStore(session)


@pytest.fixture
def workflow(memory_store, directory, routing_config, deterministic_clock):
    """Workflow over the in-memory store with the seeded directory."""
    return RequestWorkflowService(
        memory_store, directory, directory, directory,
        config=routing_config, clock=deterministic_clock,
    )


@pytest.fixture
def sql_workflow(sql_store, directory, routing_config, deterministic_clock):
    """Workflow over the SQLAlchemy store."""
    return RequestWorkflowService(
        sql_store, directory, directory, directory,
        config=routing_config, clock=deterministic_clock,
    )


@pytest.fixture
def broadcast_request(workflow):
    """Stakeholder request coordinated by cora (reviewer) and cole.

    colin shares neither sam's organization nor coverage area and is left out.
    """
    return workflow.create_request("sam", {"title": "Harvest fair"})
