"""
Review Kernel

The core of the event-request review workflow:
- Fixed request lifecycle state machine with legacy status normalization
- Authority-tier routing of reviewers with fallback chains
- Active-responder tracking through the reschedule negotiation loop
- Optimistic, time-boxed claims for broadcast reviewers
- Append-only status history
"""

__version__ = "0.1.0"
