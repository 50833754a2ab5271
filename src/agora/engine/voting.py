"""Voting engine — one ternary vote per voter per resolution.

The engine owns the eligibility checks that depend on the resolution
and the tally mutation itself. Pause and role checks happen in the
service before the engine is reached, which keeps the overall order:

1. Paused            (service, LifecycleGate)
2. Unauthorized      (service, AccessRegistry.require)
3. InvalidChoice     (parse_choice)
4. NotFound          (ResolutionStore.get)
5. VotingNotOpen / VotingEnded
6. AlreadyVoted

record() and undo() are exact inverses, so the service can unwind a
vote whose certificate or audit record could not be produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from agora.errors import AlreadyVoted, InvalidChoice, VotingEnded, VotingNotOpen
from agora.governance.assembly import ensure_utc
from agora.governance.resolutions import ResolutionStore
from agora.models.election import Resolution, ResolutionStatus, VoteChoice

logger = structlog.get_logger()

# Integer codes accepted for compatibility with ballot clients that
# submit choices positionally.
_CHOICE_CODES: dict[int, VoteChoice] = {
    0: VoteChoice.FOR,
    1: VoteChoice.AGAINST,
    2: VoteChoice.ABSTAIN,
}


def parse_choice(value: Any) -> VoteChoice:
    """Coerce a VoteChoice, its string value, or its integer code.

    Raises:
        InvalidChoice: For anything outside the closed set.
    """
    if isinstance(value, VoteChoice):
        return value
    if isinstance(value, bool):
        raise InvalidChoice(f"Invalid vote choice: {value!r}")
    if isinstance(value, int):
        choice = _CHOICE_CODES.get(value)
        if choice is None:
            raise InvalidChoice(f"Invalid vote choice code: {value}")
        return choice
    if isinstance(value, str):
        try:
            return VoteChoice(value.strip().lower())
        except ValueError:
            raise InvalidChoice(f"Invalid vote choice: {value!r}") from None
    raise InvalidChoice(f"Invalid vote choice: {value!r}")


@dataclass(frozen=True)
class CastVote:
    """What record() changed, enough to undo it."""
    resolution_id: int
    voter: str
    choice: VoteChoice
    cast_utc: datetime


class VotingEngine:
    """Window gating, double-vote protection, and tally updates."""

    def __init__(self, store: ResolutionStore) -> None:
        self._store = store
        self._logger = logger.bind(system="agora.voting")

    def check_window(self, resolution: Resolution, now: datetime) -> None:
        """Raise unless the resolution accepts votes at ``now``.

        Both the stored status and the time window are enforced.
        """
        if resolution.status == ResolutionStatus.CLOSED:
            raise VotingEnded(f"Resolution {resolution.resolution_id} is closed")
        if resolution.status != ResolutionStatus.ACTIVE:
            raise VotingNotOpen(
                f"Resolution {resolution.resolution_id} is {resolution.status.value}"
            )
        if now < resolution.start_time:
            raise VotingNotOpen(
                f"Voting on resolution {resolution.resolution_id} opens at "
                f"{resolution.start_time.isoformat()}"
            )
        if now >= resolution.end_time:
            raise VotingEnded(
                f"Voting on resolution {resolution.resolution_id} ended at "
                f"{resolution.end_time.isoformat()}"
            )

    def validate(
        self,
        resolution_id: int,
        voter: str,
        choice: Any,
        now: Optional[datetime] = None,
    ) -> tuple[Resolution, VoteChoice]:
        """Run checks 3–6 without mutating anything."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        parsed = parse_choice(choice)
        resolution = self._store.get(resolution_id)
        self.check_window(resolution, now)
        if voter in resolution.voted:
            raise AlreadyVoted(
                f"{voter} already voted on resolution {resolution_id}"
            )
        return resolution, parsed

    def record(
        self,
        resolution_id: int,
        voter: str,
        choice: Any,
        now: Optional[datetime] = None,
    ) -> CastVote:
        """Validate, then add the voter and increment the matching tally."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        resolution, parsed = self.validate(resolution_id, voter, choice, now)

        resolution.voted.add(voter)
        if parsed == VoteChoice.FOR:
            resolution.votes_for += 1
        elif parsed == VoteChoice.AGAINST:
            resolution.votes_against += 1
        else:
            resolution.votes_abstain += 1

        return CastVote(
            resolution_id=resolution_id,
            voter=voter,
            choice=parsed,
            cast_utc=now,
        )

    def undo(self, cast: CastVote) -> None:
        """Reverse a record() call. Used only for rollback."""
        resolution = self._store.get(cast.resolution_id)
        if cast.voter not in resolution.voted:
            return
        resolution.voted.discard(cast.voter)
        if cast.choice == VoteChoice.FOR:
            resolution.votes_for -= 1
        elif cast.choice == VoteChoice.AGAINST:
            resolution.votes_against -= 1
        else:
            resolution.votes_abstain -= 1
        self._logger.warning(
            "vote_rolled_back",
            resolution_id=cast.resolution_id,
            voter=cast.voter,
        )

    def has_voted(self, resolution_id: int, voter: str) -> bool:
        return voter in self._store.get(resolution_id).voted
