"""
Typed Exception Hierarchy for the Review Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every refusal the workflow produces has to reach a boundary layer that
turns it into a user-facing message. Parsing message strings for that is
fragile, so each failure has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (request id, actor, tiers involved)

Example:
    try:
        workflow.execute_action(request_id, actor_id, "accept")
    except NotActiveResponderError as e:
        api_response(code=e.code, waiting_on=e.active_responder_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ReviewKernelError:

    ReviewKernelError (base)
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |
    +-- AuthorizationError
    |   +-- SelfActionForbiddenError
    |   +-- NotActiveResponderError
    |   +-- InsufficientPermissionError
    |   +-- AuthorityInsufficientError
    |
    +-- AssignmentError
    |   +-- NoReviewerAvailableError
    |   +-- UserNotFoundError
    |
    +-- ClaimError
    |   +-- ClaimConflictError
    |   +-- StaleClaimError
    |   +-- ClaimNotApplicableError
    |
    +-- RequestError
    |   +-- RequestNotFoundError
    |   +-- InvalidActionPayloadError
    |   +-- RequestNotDeletableError
    |   +-- UnknownStatusError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Transition      | INVALID_TRANSITION          | (state, action) not in transition table
----------------|-----------------------------|-----------------------------------------
Authorization   | SELF_ACTION_FORBIDDEN       | Requester deciding their own request
                | NOT_ACTIVE_RESPONDER        | Someone else must respond next
                | INSUFFICIENT_PERMISSION     | Actor lacks the action's capability
                | AUTHORITY_INSUFFICIENT      | Actor tier below requester snapshot
----------------|-----------------------------|-----------------------------------------
Assignment      | NO_REVIEWER_AVAILABLE       | Routing and every fallback exhausted
                | USER_NOT_FOUND              | Directory has no such user
----------------|-----------------------------|-----------------------------------------
Claim           | CLAIM_CONFLICT              | Live claim held by another user
                | STALE_CLAIM                 | Release attempted by a non-holder
                | CLAIM_NOT_APPLICABLE        | Request is not broadcast / not eligible
----------------|-----------------------------|-----------------------------------------
Request         | REQUEST_NOT_FOUND           | Request ID doesn't exist
                | INVALID_ACTION_PAYLOAD      | Action data missing a required field
                | REQUEST_NOT_DELETABLE       | Delete outside pending/terminal states
                | UNKNOWN_STATUS              | Stored status is no known alias
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Version moved under a writer
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying status history

===============================================================================
HANDLING PATTERNS
===============================================================================

1. AUTHORIZATION ERRORS are expected and recoverable. Surface e.code.

2. NoReviewerAvailableError means the directory lacks role coverage.
   It is logged at ERROR with alert=True; the caller should still answer
   the user normally.

3. OptimisticLockError has already been retried by the workflow service
   by the time it propagates; treat it as "try again later".

4. ImmutabilityViolationError is a programming error against the audit
   log and should never be caught and ignored.

===============================================================================
"""


class ReviewKernelError(Exception):
    """
    Base exception for all review kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "REVIEW_KERNEL_ERROR"


# Transition exceptions


class TransitionError(ReviewKernelError):
    """Base exception for state machine errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """The action is not legal from the request's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, request_id: str | None, from_state: str, action: str):
        self.request_id = request_id
        self.from_state = from_state
        self.action = action
        super().__init__(
            f"Action '{action}' is not allowed from state '{from_state}'"
        )


# Authorization exceptions


class AuthorizationError(ReviewKernelError):
    """Base exception for actor authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class SelfActionForbiddenError(AuthorizationError):
    """Actor may not review or decide their own request."""

    code: str = "SELF_ACTION_FORBIDDEN"

    def __init__(self, request_id: str | None, actor_id: str, action: str):
        self.request_id = request_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} may not '{action}' their own request"
        )


class NotActiveResponderError(AuthorizationError):
    """Another party must respond before this actor may act."""

    code: str = "NOT_ACTIVE_RESPONDER"

    def __init__(
        self,
        request_id: str | None,
        actor_id: str,
        action: str,
        active_responder_id: str | None = None,
    ):
        self.request_id = request_id
        self.actor_id = actor_id
        self.action = action
        self.active_responder_id = active_responder_id
        super().__init__(
            f"Actor {actor_id} is not the active responder "
            f"(waiting on {active_responder_id})"
        )


class InsufficientPermissionError(AuthorizationError):
    """Actor holds none of the permissions that grant the action."""

    code: str = "INSUFFICIENT_PERMISSION"

    def __init__(
        self,
        actor_id: str,
        action: str,
        required_permissions: tuple[str, ...] = (),
        location_id: str | None = None,
    ):
        self.actor_id = actor_id
        self.action = action
        self.required_permissions = tuple(required_permissions)
        self.location_id = location_id
        required = ", ".join(self.required_permissions) or "(none mapped)"
        super().__init__(
            f"Actor {actor_id} lacks permission for '{action}': "
            f"requires one of {required}"
        )


class AuthorityInsufficientError(AuthorizationError):
    """Actor's live authority is below the requester's snapshot authority."""

    code: str = "AUTHORITY_INSUFFICIENT"

    def __init__(self, actor_id: str, actor_authority: int, required_authority: int):
        self.actor_id = actor_id
        self.actor_authority = actor_authority
        self.required_authority = required_authority
        super().__init__(
            f"Actor {actor_id} authority {actor_authority} is below "
            f"required {required_authority}"
        )


# Assignment exceptions


class AssignmentError(ReviewKernelError):
    """Base exception for reviewer routing errors."""

    code: str = "ASSIGNMENT_ERROR"


class NoReviewerAvailableError(AssignmentError):
    """
    Routing and every fallback step produced no eligible reviewer.

    Indicates missing role coverage in the directory; escalate.
    """

    code: str = "NO_REVIEWER_AVAILABLE"

    def __init__(self, requester_id: str, steps_tried: tuple[str, ...] = ()):
        self.requester_id = requester_id
        self.steps_tried = tuple(steps_tried)
        super().__init__(
            f"No reviewer available for requester {requester_id} "
            f"after fallback steps {list(self.steps_tried)}"
        )


class UserNotFoundError(AssignmentError):
    """User directory has no record of this user."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# Claim exceptions


class ClaimError(ReviewKernelError):
    """Base exception for broadcast claim errors."""

    code: str = "CLAIM_ERROR"


class ClaimConflictError(ClaimError):
    """A live claim is held by another user."""

    code: str = "CLAIM_CONFLICT"

    def __init__(self, request_id: str | None, holder_id: str, claim_timeout_at):
        self.request_id = request_id
        self.holder_id = holder_id
        self.claim_timeout_at = claim_timeout_at
        super().__init__(
            f"Request {request_id} is claimed by {holder_id} "
            f"until {claim_timeout_at}"
        )


class StaleClaimError(ClaimError):
    """Release attempted by a user who does not hold the claim."""

    code: str = "STALE_CLAIM"

    def __init__(self, request_id: str | None, user_id: str, holder_id: str | None):
        self.request_id = request_id
        self.user_id = user_id
        self.holder_id = holder_id
        super().__init__(
            f"User {user_id} does not hold the claim on request {request_id} "
            f"(holder: {holder_id})"
        )


class ClaimNotApplicableError(ClaimError):
    """Claiming does not apply to this request or this user."""

    code: str = "CLAIM_NOT_APPLICABLE"

    def __init__(self, request_id: str | None, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Claim not applicable on request {request_id}: {reason}")


# Request exceptions


class RequestError(ReviewKernelError):
    """Base exception for request document errors."""

    code: str = "REQUEST_ERROR"


class RequestNotFoundError(RequestError):
    """Request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class InvalidActionPayloadError(RequestError):
    """Action data is missing or malformed."""

    code: str = "INVALID_ACTION_PAYLOAD"

    def __init__(self, action: str, field: str, reason: str):
        self.action = action
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid payload for '{action}': {field} {reason}")


class RequestNotDeletableError(RequestError):
    """Deletion is only allowed from pending-review or a terminal state."""

    code: str = "REQUEST_NOT_DELETABLE"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Request {request_id} cannot be deleted in state '{status}'")


class UnknownStatusError(RequestError):
    """Status string is neither canonical nor a known legacy alias."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Unknown request status: {status!r}")


# Concurrency exceptions


class ConcurrencyError(ReviewKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Stored version moved between read and write."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id} "
            f"(expected version {expected_version})"
        )


# Immutability exceptions


class ImmutabilityError(ReviewKernelError):
    """Base exception for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted update or delete of an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
