"""
Reviewer routing across the authority tiers, direct selections, the
fallback chain and manual overrides.
"""

import pytest

from review_kernel.domain.request import ActorSnapshot, EventRequest
from review_kernel.domain.states import RequestState
from review_kernel.exceptions import (
    AuthorityInsufficientError,
    InsufficientPermissionError,
    InvalidTransitionError,
    NoReviewerAvailableError,
    SelfActionForbiddenError,
    UserNotFoundError,
)
from review_kernel.domain.directory import StaticDirectory
from review_services.reviewer_assignment import (
    AssignmentContext,
    ReviewerAssignmentService,
)


@pytest.fixture
def assigner(directory, routing_config, deterministic_clock):
    return ReviewerAssignmentService(
        directory, directory, directory, routing_config, deterministic_clock,
    )


class TestTierRouting:

    def test_stakeholder_gets_matching_coordinator(self, assigner):
        """Org X / municipality M requester: cora matches, colin shares neither."""
        assignment = assigner.assign_reviewer(
            "sam", AssignmentContext(organization_id="org-x", coverage_area_id="muni-m"),
        )
        assert assignment.user_id == "cora"
        assert assignment.assignment_rule == "stakeholder-to-coordinator"
        assert assignment.authority == 60

    def test_profile_org_and_coverage_used_without_context(self, assigner):
        assert assigner.assign_reviewer("sam").user_id == "cora"

    def test_basic_requester_is_auto_assigned(self, assigner):
        assignment = assigner.assign_reviewer("basil")
        assert assignment.assignment_rule == "auto-assigned"
        assert assignment.user_id == "colin"

    def test_coordinator_routes_to_admin(self, assigner):
        assignment = assigner.assign_reviewer("cora")
        assert assignment.user_id == "opal"
        assert assignment.assignment_rule == "coordinator-to-admin"

    def test_admin_routes_to_coordinator(self, assigner):
        assignment = assigner.assign_reviewer("opal")
        assert assignment.user_id == "colin"
        assert assignment.assignment_rule == "admin-to-coordinator"

    def test_assignment_snapshots_reviewer(self, assigner, deterministic_clock):
        assignment = assigner.assign_reviewer("sam")
        assert assignment.name == "Cora Vale"
        assert assignment.actor.role_code == "coordinator"
        assert assignment.assigned_at == deterministic_clock.now()
        assert not assignment.is_overridden

    def test_unknown_requester(self, assigner):
        with pytest.raises(UserNotFoundError):
            assigner.assign_reviewer("ghost")

    def test_inactive_candidates_are_skipped(self, assigner, directory):
        directory.deactivate("cora")
        assert assigner.assign_reviewer("sam").user_id == "cole"


class TestDirectSelection:

    def test_coordinator_names_stakeholder(self, assigner):
        assignment = assigner.assign_reviewer("cora", AssignmentContext(stakeholder_id="sam"))
        assert assignment.user_id == "sam"
        assert assignment.assignment_rule == "coordinator-to-stakeholder"

    def test_admin_stakeholder_is_ignored(self, assigner, captured_logs):
        assignment = assigner.assign_reviewer("cora", AssignmentContext(stakeholder_id="opal"))
        assert assignment.assignment_rule == "coordinator-to-admin"
        ignored = [r for r in captured_logs() if r["message"] == "direct_selection_ignored"]
        assert ignored and ignored[0]["level"] == "WARNING"

    def test_self_named_stakeholder_is_ignored(self, assigner):
        assignment = assigner.assign_reviewer("cora", AssignmentContext(stakeholder_id="cora"))
        assert assignment.user_id != "cora"

    def test_admin_selects_coordinator(self, assigner):
        assignment = assigner.assign_reviewer("opal", AssignmentContext(coordinator_id="cole"))
        assert assignment.user_id == "cole"
        assert assignment.assignment_rule == "admin-selected-coordinator"

    def test_selected_coordinator_without_capability_falls_through(self, assigner):
        assignment = assigner.assign_reviewer("opal", AssignmentContext(coordinator_id="sam"))
        assert assignment.assignment_rule == "admin-to-coordinator"
        assert assignment.user_id == "colin"

    def test_unknown_selection_falls_through(self, assigner):
        assignment = assigner.assign_reviewer("opal", AssignmentContext(coordinator_id="ghost"))
        assert assignment.assignment_rule == "admin-to-coordinator"


class TestWideningAndFallback:

    def test_empty_band_widens_with_warning(self, directory, routing_config, deterministic_clock, captured_logs):
        for user_id in ("colin", "cora", "cole"):
            directory.deactivate(user_id)
        assigner = ReviewerAssignmentService(
            directory, directory, directory, routing_config, deterministic_clock,
        )
        assignment = assigner.assign_reviewer("sam")
        assert assignment.user_id == "opal"
        widened = [r for r in captured_logs() if r["message"] == "reviewer_pool_widened"]
        assert widened and widened[0]["level"] == "WARNING"

    def test_location_without_reviewers_uses_unscoped_pool(
        self, routing_config, deterministic_clock, captured_logs,
    ):
        d = StaticDirectory()
        d.add_user("req", authority=30)
        d.add_user("north", authority=60, permissions=("request.review",), locations=("loc-1",))
        assigner = ReviewerAssignmentService(d, d, d, routing_config, deterministic_clock)

        assert assigner.assign_reviewer("req", AssignmentContext(location_id="loc-1")).user_id == "north"
        assignment = assigner.assign_reviewer("req", AssignmentContext(location_id="loc-2"))
        assert assignment.user_id == "north"
        assert assignment.assignment_rule == "stakeholder-to-coordinator"
        assert any(r["message"] == "reviewer_pool_unscoped" for r in captured_logs())

    def test_fallback_chain_used(self, routing_config, deterministic_clock, captured_logs):
        d = StaticDirectory()
        d.add_user("req", authority=30)
        d.add_user("root", authority=100, roles=("system-admin",))
        assigner = ReviewerAssignmentService(d, d, d, routing_config, deterministic_clock)

        assignment = assigner.assign_reviewer("req")
        assert assignment.user_id == "root"
        assert assignment.assignment_rule == "fallback-role"
        used = [r for r in captured_logs() if r["message"] == "reviewer_fallback_used"]
        assert used[0]["fallback_step"] == "role:system-admin"

    def test_authority_fallback_step(self, routing_config, deterministic_clock):
        d = StaticDirectory()
        d.add_user("req", authority=30)
        d.add_user("boss", authority=85)
        assigner = ReviewerAssignmentService(d, d, d, routing_config, deterministic_clock)
        assert assigner.assign_reviewer("req").assignment_rule == "fallback-authority"

    def test_exhausted_raises_and_alerts(self, routing_config, deterministic_clock, captured_logs):
        d = StaticDirectory()
        d.add_user("lonely", authority=100, permissions=("*.*",), roles=("system-admin",))
        assigner = ReviewerAssignmentService(d, d, d, routing_config, deterministic_clock)

        with pytest.raises(NoReviewerAvailableError) as exc_info:
            assigner.assign_reviewer("lonely")
        assert exc_info.value.requester_id == "lonely"
        assert len(exc_info.value.steps_tried) == 3

        alerts = [r for r in captured_logs() if r["message"] == "no_reviewer_available"]
        assert alerts[0]["level"] == "ERROR"
        assert alerts[0]["alert"] is True


class TestOverride:

    @pytest.fixture
    def pending(self, assigner):
        return EventRequest(
            requester=assigner.snapshot("sam"),
            reviewer=assigner.assign_reviewer("sam"),
        )

    def test_reviewer_may_be_overridden(self, assigner, pending, deterministic_clock):
        assignment = assigner.build_override(pending, "cole", "opal")
        assert assignment.user_id == "cole"
        assert assignment.assignment_rule == "manual"
        assert assignment.overridden_by == "opal"
        assert assignment.overridden_at == deterministic_clock.now()

    def test_overrider_needs_review_capability(self, assigner, pending):
        with pytest.raises(InsufficientPermissionError):
            assigner.build_override(pending, "cole", "basil")

    def test_requester_cannot_become_reviewer(self, assigner, pending):
        with pytest.raises(SelfActionForbiddenError):
            assigner.build_override(pending, "sam", "opal")

    def test_new_reviewer_must_outrank_requester(self, assigner, pending):
        with pytest.raises(AuthorityInsufficientError):
            assigner.build_override(pending, "basil", "opal")

    def test_system_admin_overrides_authority(self, assigner, pending):
        assert assigner.build_override(pending, "basil", "sysa").user_id == "basil"

    def test_terminal_request_cannot_be_overridden(self, assigner, pending):
        pending.status = RequestState.REJECTED
        with pytest.raises(InvalidTransitionError):
            assigner.build_override(pending, "cole", "opal")

    def test_unknown_new_reviewer(self, assigner, pending):
        with pytest.raises(UserNotFoundError):
            assigner.build_override(pending, "ghost", "opal")


def test_snapshot(assigner):
    assert assigner.snapshot("sam") == ActorSnapshot(
        user_id="sam",
        name="Sam Stone",
        authority=30,
        role_code="stakeholder",
        email="sam@example.org",
    )
