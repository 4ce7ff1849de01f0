"""
review_services -- Package init and public API.

Responsibility:
    Orchestration services that compose the pure engines
    (review_engines/) with the directory collaborators, the routing
    configuration and the request store.

Architecture position:
    Services -- stateful orchestration over engines + kernel + config.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        review_services/ -> review_engines/   (allowed)
        review_services/ -> review_kernel/    (allowed)
        review_services/ -> review_config/    (allowed)
        review_engines/  -> review_services/  (FORBIDDEN)
        review_kernel/   -> review_services/  (FORBIDDEN)

Audit relevance:
    This package is the canonical import surface for embedders.
"""

from review_services.action_validator import ActionCheck, ActionValidator, DenialReason
from review_services.broadcast_access import BroadcastAccessService
from review_services.rbac_authority import (
    ACTION_TO_PERMISSIONS,
    check_capability,
    get_permissions_for_action,
)
from review_services.request_workflow import RequestWorkflowService
from review_services.reviewer_assignment import (
    AssignmentContext,
    ReviewerAssignmentService,
)

__all__ = [
    "ACTION_TO_PERMISSIONS",
    "ActionCheck",
    "ActionValidator",
    "AssignmentContext",
    "BroadcastAccessService",
    "DenialReason",
    "RequestWorkflowService",
    "ReviewerAssignmentService",
    "check_capability",
    "get_permissions_for_action",
]
