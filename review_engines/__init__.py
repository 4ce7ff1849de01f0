"""
Pure engines for the review workflow.

Zero I/O: the clock, directory lookups and persistence are all supplied
by the caller.

- assignment: reviewer candidate selection (band, widening, org/coverage
  match, tie-break)
- responder: active-responder tracking and the reschedule loop
- claims: optimistic, time-boxed claims for broadcast requests
"""

from review_engines.assignment import Candidate, SelectionResult, select_reviewer
from review_engines.claims import ClaimCoordinator
from review_engines.responder import ResponderOutcome, update_active_responder

__all__ = [
    "Candidate",
    "ClaimCoordinator",
    "ResponderOutcome",
    "SelectionResult",
    "select_reviewer",
    "update_active_responder",
]
