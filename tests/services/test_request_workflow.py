"""
Request workflow end to end: create, act, reschedule loop, claims,
override, delete, visibility and optimistic retries.
"""

from uuid import uuid4

import pytest

from review_kernel.domain.request import ResponderRelationship
from review_kernel.domain.states import RequestAction, RequestState
from review_kernel.exceptions import (
    ClaimConflictError,
    ClaimNotApplicableError,
    InsufficientPermissionError,
    InvalidActionPayloadError,
    InvalidTransitionError,
    NotActiveResponderError,
    OptimisticLockError,
    RequestNotDeletableError,
    RequestNotFoundError,
    SelfActionForbiddenError,
    StaleClaimError,
)
from review_kernel.logging_config import LogContext
from review_services.request_workflow import RequestWorkflowService

RESCHEDULE = {"proposed_date": "2024-07-01", "proposed_start_time": "10:00", "notes": "rain"}


def _traces(records, action=None):
    return [
        r for r in records
        if r["message"] == "request_action" and (action is None or r["action"] == action)
    ]


class _ConflictingStore:
    """Delegating store where another writer slips in before the next N writes."""

    def __init__(self, inner, conflicts, interloper=None):
        self._inner = inner
        self.conflicts = conflicts
        self.attempts = 0
        self._interloper = interloper or (
            lambda request_id, version: inner.find_and_update(request_id, version, lambda doc: None)
        )

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def find_and_update(self, request_id, expected_version, mutation):
        self.attempts += 1
        if self.conflicts:
            self.conflicts -= 1
            self._interloper(request_id, expected_version)
        return self._inner.find_and_update(request_id, expected_version, mutation)


class TestCreate:

    def test_new_request_waits_on_reviewer(self, broadcast_request, deterministic_clock):
        r = broadcast_request
        assert r.status == RequestState.PENDING_REVIEW
        assert r.reviewer.user_id == "cora"
        assert r.active_responder.user_id == "cora"
        assert r.active_responder.relationship == ResponderRelationship.REVIEWER
        assert [vc.user_id for vc in r.valid_coordinators] == ["cora", "cole"]
        assert r.version == 1
        assert r.created_at == deterministic_clock.now()
        assert r.details == {"title": "Harvest fair"}
        assert [h.action for h in r.status_history] == ["create"]
        assert r.check_invariants() == []

    def test_context_narrows_coordinators(self, workflow):
        r = workflow.create_request(
            "sam", {"organization_id": "org-x", "coverage_area_id": "muni-m", "location_id": "loc-1"},
        )
        assert r.location_id == "loc-1"
        assert [vc.user_id for vc in r.valid_coordinators] == ["cora", "cole"]
        assert r.details == {}

    def test_create_emits_trace(self, workflow, captured_logs):
        r = workflow.create_request("sam")
        trace = _traces(captured_logs(), "create")[-1]
        assert trace["outcome"] == "success"
        assert trace["reason"] == "stakeholder-to-coordinator"
        assert trace["request_id"] == str(r.id)
        assert trace["to_state"] == "pending-review"
        assert "ts" in trace


class TestActions:

    def test_reviewer_accepts(self, workflow, broadcast_request):
        r = workflow.execute_action(broadcast_request.id, "cora", "accept")
        assert r.status == RequestState.APPROVED
        assert r.active_responder is None
        assert r.last_action.actor_id == "cora"
        assert r.version == 2
        assert [h.status for h in r.status_history] == [
            RequestState.PENDING_REVIEW, RequestState.APPROVED,
        ]

    def test_denial_raises_and_traces(self, workflow, broadcast_request, captured_logs):
        with pytest.raises(NotActiveResponderError):
            workflow.execute_action(broadcast_request.id, "cole", "accept")
        trace = _traces(captured_logs(), "accept")[-1]
        assert trace["outcome"] == "denied"
        assert trace["reason"] == "NOT_ACTIVE_RESPONDER"
        assert trace["from_state"] == "pending-review"
        assert workflow.get_request(broadcast_request.id).version == 1

    def test_requester_cannot_accept(self, workflow, broadcast_request):
        with pytest.raises(SelfActionForbiddenError):
            workflow.execute_action(broadcast_request.id, "sam", "accept")

    def test_system_admin_override(self, workflow, broadcast_request):
        r = workflow.execute_action(broadcast_request.id, "sysa", RequestAction.REJECT)
        assert r.status == RequestState.REJECTED
        assert r.active_responder is None

    def test_unknown_request(self, workflow):
        with pytest.raises(RequestNotFoundError):
            workflow.execute_action(uuid4(), "cora", "accept")

    def test_log_context_restored(self, workflow, broadcast_request):
        LogContext.set(correlation_id="corr-1")
        workflow.execute_action(broadcast_request.id, "cora", "accept")
        assert LogContext.get_all() == {"correlation_id": "corr-1"}

    def test_edit_updates_details(self, workflow, broadcast_request):
        workflow.execute_action(broadcast_request.id, "cora", "accept")
        r = workflow.execute_action(
            broadcast_request.id, "sam", "edit", {"details": {"venue": "Barn"}},
        )
        assert r.status == RequestState.APPROVED
        assert r.details == {"title": "Harvest fair", "venue": "Barn"}

    def test_available_actions(self, workflow, broadcast_request):
        assert workflow.get_available_actions("cora", broadcast_request.id)[0] == RequestAction.VIEW
        assert RequestAction.ACCEPT in workflow.get_available_actions("cora", broadcast_request.id)
        assert workflow.get_available_actions("sam", broadcast_request.id) == (RequestAction.VIEW,)


class TestRescheduleLoop:

    def test_alternates_until_confirm(self, workflow, broadcast_request):
        rid = broadcast_request.id
        r = workflow.execute_action(rid, "cora", "reschedule", RESCHEDULE)
        assert r.status == RequestState.REVIEW_RESCHEDULED
        assert r.active_responder.user_id == "sam"
        assert r.reschedule_proposal.proposed_by.user_id == "cora"
        assert r.reschedule_proposal.proposed_by.authority == 60
        assert r.reschedule_proposal.proposed_start_time == "10:00"

        r = workflow.execute_action(rid, "sam", "reschedule", {"proposed_date": "2024-07-08"})
        assert r.active_responder.user_id == "cora"
        assert r.reschedule_proposal.proposed_date == "2024-07-08"

        r = workflow.execute_action(rid, "cora", "reschedule", RESCHEDULE)
        assert r.active_responder.relationship == ResponderRelationship.REQUESTER

        # Requester closes the loop.
        r = workflow.execute_action(rid, "sam", "confirm")
        assert r.status == RequestState.APPROVED
        assert r.active_responder is None
        assert r.reschedule_proposal is None

    def test_out_of_turn_reschedule_is_blocked(self, workflow, broadcast_request):
        workflow.execute_action(broadcast_request.id, "cora", "reschedule", RESCHEDULE)
        with pytest.raises(NotActiveResponderError):
            workflow.execute_action(broadcast_request.id, "cora", "reschedule", RESCHEDULE)

    def test_missing_proposed_date(self, workflow, broadcast_request, captured_logs):
        with pytest.raises(InvalidActionPayloadError) as exc_info:
            workflow.execute_action(broadcast_request.id, "cora", "reschedule", {"notes": "x"})
        assert exc_info.value.field == "proposed_date"
        assert _traces(captured_logs(), "reschedule")[-1]["reason"] == "INVALID_ACTION_PAYLOAD"

    def test_admin_reschedule_returns_turn_to_requester(self, workflow, broadcast_request):
        workflow.execute_action(broadcast_request.id, "cora", "accept")
        r = workflow.execute_action(broadcast_request.id, "opal", "reschedule", RESCHEDULE)
        assert r.active_responder.user_id == "sam"
        assert r.active_responder.relationship == ResponderRelationship.REQUESTER

    def test_indeterminate_responder_is_logged(self, workflow, directory, broadcast_request, captured_logs):
        directory.add_user("stan", authority=45, permissions=("request.reschedule",))
        workflow.execute_action(broadcast_request.id, "cora", "accept")
        r = workflow.execute_action(broadcast_request.id, "stan", "reschedule", RESCHEDULE)
        assert r.status == RequestState.REVIEW_RESCHEDULED
        assert r.active_responder is None
        warnings = [r for r in captured_logs() if r["message"] == "active_responder_inconsistent"]
        assert warnings and warnings[0]["level"] == "WARNING"


class TestClaims:

    def test_claim_blocks_other_coordinators(
        self, workflow, broadcast_request, deterministic_clock, routing_config,
    ):
        claim = workflow.claim_request(broadcast_request.id, "cole")
        assert claim.user_id == "cole"
        assert claim.claim_timeout_at == deterministic_clock.now() + routing_config.claim_timeout

        with pytest.raises(ClaimConflictError):
            workflow.claim_request(broadcast_request.id, "cora")
        with pytest.raises(NotActiveResponderError):
            workflow.execute_action(broadcast_request.id, "cora", "accept")

    def test_out_of_scope_coordinator_cannot_claim(self, workflow, broadcast_request):
        with pytest.raises(ClaimNotApplicableError):
            workflow.claim_request(broadcast_request.id, "colin")
        assert workflow.get_request(broadcast_request.id).claimed_by is None

    def test_action_releases_actor_claim(self, workflow, broadcast_request):
        workflow.claim_request(broadcast_request.id, "cole")
        r = workflow.execute_action(broadcast_request.id, "cole", "accept")
        assert r.status == RequestState.APPROVED
        assert r.claimed_by is None

    def test_release(self, workflow, broadcast_request):
        workflow.claim_request(broadcast_request.id, "cole")
        with pytest.raises(StaleClaimError):
            workflow.release_request(broadcast_request.id, "cora")
        r = workflow.release_request(broadcast_request.id, "cole")
        assert r.claimed_by is None
        assert workflow.claim_request(broadcast_request.id, "cora").user_id == "cora"

    def test_expired_claim_can_be_taken(self, workflow, broadcast_request, deterministic_clock):
        workflow.claim_request(broadcast_request.id, "cole")
        deterministic_clock.advance(minutes=31)
        assert workflow.claim_request(broadcast_request.id, "cora").user_id == "cora"

    def test_single_coordinator_request(self, workflow):
        r = workflow.create_request("sam", {"organization_id": "org-y", "coverage_area_id": "muni-n"})
        assert [vc.user_id for vc in r.valid_coordinators] == ["colin"]
        with pytest.raises(ClaimNotApplicableError):
            workflow.claim_request(r.id, "colin")


class TestOverride:

    def test_override_repoints_everything(self, workflow, broadcast_request):
        workflow.claim_request(broadcast_request.id, "cora")
        r = workflow.override_reviewer(broadcast_request.id, "cole", "opal")
        assert r.reviewer.user_id == "cole"
        assert r.reviewer.assignment_rule == "manual"
        assert r.reviewer.overridden_by == "opal"
        assert r.valid_coordinators[0].user_id == "cole"
        assert [vc.user_id for vc in r.valid_coordinators].count("cole") == 1
        assert r.claimed_by is None
        assert r.active_responder.user_id == "cole"
        assert r.status_history[-1].action == "override-reviewer"
        assert r.check_invariants() == []

    def test_requester_side_responder_is_kept(self, workflow, broadcast_request):
        workflow.execute_action(broadcast_request.id, "cora", "reschedule", RESCHEDULE)
        r = workflow.override_reviewer(broadcast_request.id, "cole", "opal")
        assert r.active_responder.user_id == "sam"

    def test_unauthorized_override(self, workflow, broadcast_request):
        with pytest.raises(InsufficientPermissionError):
            workflow.override_reviewer(broadcast_request.id, "cole", "sam")


class TestDelete:

    def test_delete_keeps_history(self, workflow, broadcast_request):
        workflow.delete_request(broadcast_request.id, "sam")
        with pytest.raises(RequestNotFoundError):
            workflow.get_request(broadcast_request.id)
        assert len(workflow.status_history(broadcast_request.id)) == 1

    def test_approved_is_not_deletable(self, workflow, broadcast_request):
        workflow.execute_action(broadcast_request.id, "cora", "accept")
        with pytest.raises(RequestNotDeletableError):
            workflow.delete_request(broadcast_request.id, "sam")

    def test_delete_needs_permission(self, workflow, broadcast_request):
        with pytest.raises(InsufficientPermissionError):
            workflow.delete_request(broadcast_request.id, "colin")


class TestVisibility:

    def test_get_request_checks_access(self, workflow, broadcast_request):
        assert workflow.get_request(broadcast_request.id, "opal").id == broadcast_request.id
        assert workflow.get_request(broadcast_request.id, "cole").id == broadcast_request.id
        with pytest.raises(InsufficientPermissionError):
            workflow.get_request(broadcast_request.id, "basil")
        with pytest.raises(InsufficientPermissionError):
            workflow.get_request(broadcast_request.id, "colin")

    def test_visible_requests(self, workflow, broadcast_request):
        other = workflow.create_request("basil")
        assert {r.id for r in workflow.visible_requests("sysa")} == {broadcast_request.id, other.id}
        assert [r.id for r in workflow.visible_requests("sam")] == [broadcast_request.id]
        assert [r.id for r in workflow.visible_requests("basil")] == [other.id]


class TestOptimisticRetry:

    def _workflow(self, store, directory, routing_config, clock):
        return RequestWorkflowService(
            store, directory, directory, directory, config=routing_config, clock=clock,
        )

    def test_conflict_is_retried(self, memory_store, directory, routing_config, deterministic_clock):
        store = _ConflictingStore(memory_store, conflicts=1)
        wf = self._workflow(store, directory, routing_config, deterministic_clock)
        created = wf.create_request("sam")

        r = wf.execute_action(created.id, "cora", "accept")
        assert r.status == RequestState.APPROVED
        assert store.attempts == 2
        assert r.version == 3

    def test_retries_exhausted(
        self, memory_store, directory, routing_config, deterministic_clock, captured_logs,
    ):
        store = _ConflictingStore(memory_store, conflicts=10)
        wf = self._workflow(store, directory, routing_config, deterministic_clock)
        created = wf.create_request("sam")

        with pytest.raises(OptimisticLockError):
            wf.execute_action(created.id, "cora", "accept")
        assert store.attempts == routing_config.max_update_retries
        assert _traces(captured_logs(), "accept")[-1]["outcome"] == "conflict"

    def test_retry_revalidates(self, memory_store, directory, routing_config, deterministic_clock):
        """The winning writer's change is seen by the retry, which then denies."""
        wf = self._workflow(memory_store, directory, routing_config, deterministic_clock)
        created = wf.create_request("sam")

        racing = _ConflictingStore(
            memory_store,
            conflicts=1,
            interloper=lambda request_id, version: wf.execute_action(request_id, "sysa", "reject"),
        )
        wf2 = self._workflow(racing, directory, routing_config, deterministic_clock)
        with pytest.raises(InvalidTransitionError):
            wf2.execute_action(created.id, "cora", "accept")
        assert racing.attempts == 1
        assert memory_store.get(created.id).status == RequestState.REJECTED


class TestSqlBackedWorkflow:

    def test_full_flow_persists(self, sql_workflow, sql_store):
        created = sql_workflow.create_request("sam", {"title": "Harvest fair"})
        sql_workflow.execute_action(created.id, "cora", "reschedule", RESCHEDULE)
        sql_workflow.execute_action(created.id, "sam", "confirm")

        stored = sql_store.get(created.id)
        assert stored.status == RequestState.APPROVED
        assert stored.active_responder is None
        assert stored.version == 3
        assert [h.action for h in sql_store.history_for(created.id)] == [
            "create", "reschedule", "confirm",
        ]

    def test_claims_round_trip(self, sql_workflow, sql_store):
        created = sql_workflow.create_request("sam")
        sql_workflow.claim_request(created.id, "cole")
        assert sql_store.get(created.id).claimed_by.user_id == "cole"
        with pytest.raises(ClaimConflictError):
            sql_workflow.claim_request(created.id, "cora")

    def test_reschedule_proposal_persists(self, sql_workflow, sql_store, deterministic_clock):
        created = sql_workflow.create_request("sam")
        sql_workflow.execute_action(created.id, "cora", "reschedule", RESCHEDULE)

        proposal = sql_store.get(created.id).reschedule_proposal
        assert proposal.proposed_by.user_id == "cora"
        assert proposal.proposed_by.name == "Cora Vale"
        assert proposal.proposed_date == "2024-07-01"
        assert proposal.proposed_start_time == "10:00"
        assert proposal.notes == "rain"
        assert proposal.proposed_at == deterministic_clock.now()
