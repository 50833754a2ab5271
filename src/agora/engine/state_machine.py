"""Resolution state machine — enforces valid lifecycle transitions.

Resolution lifecycle:
    DRAFT → ACTIVE → CLOSED
    DRAFT → CLOSED only when the policy allows closing a draft.

State semantics:
- DRAFT: created by an admin, not yet open for votes.
- ACTIVE: votes accepted while the current time is inside the window.
- CLOSED: terminal — no further votes.

Stored status and time eligibility are separate concerns. The stored
status only moves by explicit transition. effective_status() derives
what a resolution looks like at a given instant, so an ACTIVE resolution
whose end_time has passed reports CLOSED without being rewritten.

Fail-closed: any transition not in the table is rejected.
"""

from __future__ import annotations

from datetime import datetime

from agora.errors import InvalidTransition
from agora.governance.assembly import ensure_utc
from agora.models.election import Resolution, ResolutionStatus


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[ResolutionStatus, set[ResolutionStatus]] = {
    ResolutionStatus.DRAFT: {ResolutionStatus.ACTIVE},
    ResolutionStatus.ACTIVE: {ResolutionStatus.CLOSED},
    # Terminal
    ResolutionStatus.CLOSED: set(),
}


def effective_status(resolution: Resolution, now: datetime) -> ResolutionStatus:
    """Time-derived status of a resolution at ``now``."""
    now = ensure_utc(now)
    if resolution.status == ResolutionStatus.ACTIVE and now >= resolution.end_time:
        return ResolutionStatus.CLOSED
    return resolution.status


class ResolutionStateMachine:
    """Validates and applies resolution status transitions.

    Pure computation: side effects (events, persistence) belong to the
    service layer.
    """

    def __init__(self, allow_draft_close: bool = False) -> None:
        self._allow_draft_close = allow_draft_close

    def valid_transitions(self, state: ResolutionStatus) -> set[ResolutionStatus]:
        """Return the set of valid target states from the given state."""
        allowed = set(_TRANSITIONS.get(state, set()))
        if self._allow_draft_close and state == ResolutionStatus.DRAFT:
            allowed.add(ResolutionStatus.CLOSED)
        return allowed

    def validate_transition(
        self,
        resolution: Resolution,
        target: ResolutionStatus,
    ) -> None:
        """Raise InvalidTransition if ``target`` is not reachable."""
        current = resolution.status
        allowed = self.valid_transitions(current)
        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            raise InvalidTransition(
                f"Invalid resolution transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            )

    def apply_transition(
        self,
        resolution: Resolution,
        target: ResolutionStatus,
        now: datetime,
    ) -> ResolutionStatus:
        """Validate and apply a transition. Returns the previous status."""
        self.validate_transition(resolution, target)
        previous = resolution.status
        resolution.status = target
        if target == ResolutionStatus.CLOSED:
            resolution.closed_utc = now
        return previous

    @staticmethod
    def is_terminal(state: ResolutionStatus) -> bool:
        return state == ResolutionStatus.CLOSED
