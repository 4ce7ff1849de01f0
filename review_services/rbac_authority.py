"""
review_services.rbac_authority -- Action capability check.

Responsibility:
    Map each request action to the permissions that grant it and check an
    actor against the permission directory, scoped to the request's
    location.

Architecture position:
    Services layer. Called by ActionValidator (capability step) and by
    the workflow service for delete.

Invariants:
    - Any-of semantics: holding one mapped permission is enough.
    - An action with no mapping is denied, never allowed by default.
    - Reschedule accepts ``request.review`` as well as
      ``request.reschedule`` so reviewers holding only the review grant
      keep working.
"""

from __future__ import annotations

from review_kernel.domain.directory import PermissionDirectory, split_permission
from review_kernel.domain.states import RequestAction, coerce_action

ACTION_TO_PERMISSIONS: dict[RequestAction, tuple[str, ...]] = {
    RequestAction.VIEW: ("request.read",),
    RequestAction.ACCEPT: ("request.review", "request.approve"),
    RequestAction.REJECT: ("request.review", "request.approve"),
    RequestAction.DECLINE: ("request.review", "request.confirm", "request.create"),
    RequestAction.RESCHEDULE: ("request.reschedule", "request.review"),
    RequestAction.CONFIRM: ("request.confirm", "request.create", "request.initiate"),
    RequestAction.CANCEL: ("request.cancel",),
    RequestAction.EDIT: ("request.update",),
    RequestAction.MANAGE_STAFF: ("request.manage-staff",),
    RequestAction.DELETE: ("request.delete",),
}


def get_permissions_for_action(action: RequestAction | str) -> tuple[str, ...]:
    """Permissions any one of which grants ``action``; empty if unmapped."""
    act = coerce_action(action)
    if act is None:
        return ()
    return ACTION_TO_PERMISSIONS.get(act, ())


def check_capability(
    directory: PermissionDirectory,
    actor_id: str,
    action: RequestAction | str,
    location_id: str | None = None,
) -> tuple[bool, str]:
    """Check whether the actor holds a permission granting ``action``.

    Returns:
        (allowed, reason). reason is empty when allowed.
    """
    permissions = get_permissions_for_action(action)
    if not permissions:
        return (False, f"RBAC: no permission mapped for action '{action}'")

    for permission in permissions:
        resource, verb = split_permission(permission)
        if directory.has_permission(actor_id, resource, verb, location_id):
            return (True, "")

    scope = f" at location {location_id}" if location_id else ""
    return (
        False,
        f"RBAC: actor lacks any of {', '.join(permissions)}{scope}",
    )
