"""Resolution store — append-only, densely indexed resolutions.

Resolution ids are list positions: 0, 1, 2, ... with no gaps and no
reuse. Resolutions are never deleted; a resolution that is no longer
wanted is closed. Status changes go through ResolutionStateMachine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from agora.engine.state_machine import ResolutionStateMachine
from agora.errors import InvalidTimeRange, NotFound
from agora.governance.assembly import (
    AssemblyConfig,
    ensure_utc,
    require_text,
    require_window,
)
from agora.models.election import (
    Resolution,
    ResolutionOutcome,
    ResolutionResults,
    ResolutionStatus,
)

logger = structlog.get_logger()


class ResolutionStore:
    """Owns every resolution and its stored lifecycle status."""

    def __init__(
        self,
        assembly_config: AssemblyConfig,
        state_machine: Optional[ResolutionStateMachine] = None,
    ) -> None:
        self._assembly_config = assembly_config
        self._state_machine = state_machine or ResolutionStateMachine()
        self._resolutions: list[Resolution] = []
        self._logger = logger.bind(system="agora.resolutions")

    @classmethod
    def from_records(
        cls,
        assembly_config: AssemblyConfig,
        records: list[dict[str, Any]],
        state_machine: Optional[ResolutionStateMachine] = None,
    ) -> ResolutionStore:
        """Restore store state from persistence records.

        Raises:
            ValueError: If the persisted ids are not dense from 0.
        """
        store = cls(assembly_config, state_machine)
        for expected_id, r in enumerate(sorted(records, key=lambda x: x["resolution_id"])):
            if r["resolution_id"] != expected_id:
                raise ValueError(
                    f"Persisted resolution ids are not dense: expected "
                    f"{expected_id}, found {r['resolution_id']}"
                )
            store._resolutions.append(Resolution(
                resolution_id=r["resolution_id"],
                title=r["title"],
                description=r["description"],
                start_time=datetime.fromisoformat(r["start_time"]),
                end_time=datetime.fromisoformat(r["end_time"]),
                status=ResolutionStatus(r["status"]),
                votes_for=r.get("votes_for", 0),
                votes_against=r.get("votes_against", 0),
                votes_abstain=r.get("votes_abstain", 0),
                voted=set(r.get("voted", [])),
                created_utc=datetime.fromisoformat(r["created_utc"]) if r.get("created_utc") else None,
                closed_utc=datetime.fromisoformat(r["closed_utc"]) if r.get("closed_utc") else None,
            ))
        return store

    @property
    def state_machine(self) -> ResolutionStateMachine:
        return self._state_machine

    @property
    def count(self) -> int:
        return len(self._resolutions)

    def create(
        self,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        now: Optional[datetime] = None,
    ) -> Resolution:
        """Append a new DRAFT resolution with the next sequential id.

        Raises:
            NotFound: If no assembly has been configured.
            EmptyString: If title is blank.
            InvalidTimeRange: If start_time >= end_time or the window is
                not inside the assembly window.
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)

        assembly = self._assembly_config.assembly
        if assembly is None:
            raise NotFound("Assembly not configured")

        clean_title = require_text(title, "Resolution title")
        require_window(start_time, end_time)
        if not assembly.contains(start_time, end_time):
            raise InvalidTimeRange(
                f"Resolution window [{start_time.isoformat()}, {end_time.isoformat()}] "
                f"falls outside the assembly window "
                f"[{assembly.start_time.isoformat()}, {assembly.end_time.isoformat()}]"
            )

        resolution = Resolution(
            resolution_id=len(self._resolutions),
            title=clean_title,
            description=description or "",
            start_time=start_time,
            end_time=end_time,
            created_utc=now,
        )
        self._resolutions.append(resolution)
        self._logger.info(
            "resolution_created",
            resolution_id=resolution.resolution_id,
            title=resolution.title,
        )
        return resolution

    def discard_last(self, resolution_id: int) -> None:
        """Drop the most recent resolution. Used only to roll back create()."""
        if self._resolutions and self._resolutions[-1].resolution_id == resolution_id:
            self._resolutions.pop()

    def get(self, resolution_id: int) -> Resolution:
        """Return the live resolution record.

        Raises:
            NotFound: For an unknown or malformed id.
        """
        if (
            isinstance(resolution_id, bool)
            or not isinstance(resolution_id, int)
            or not 0 <= resolution_id < len(self._resolutions)
        ):
            raise NotFound(f"Resolution not found: {resolution_id}")
        return self._resolutions[resolution_id]

    def list_resolutions(self, status_filter: Optional[ResolutionStatus] = None) -> list[Resolution]:
        """Snapshots of all resolutions in id order."""
        return [
            r.snapshot() for r in self._resolutions
            if status_filter is None or r.status == status_filter
        ]

    def transition(
        self,
        resolution_id: int,
        target: ResolutionStatus,
        now: Optional[datetime] = None,
    ) -> ResolutionStatus:
        """Move a resolution to ``target``. Returns the previous status.

        Raises:
            NotFound: For an unknown id.
            InvalidTransition: If the state machine rejects the move.
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        resolution = self.get(resolution_id)
        previous = self._state_machine.apply_transition(resolution, target, now)
        self._logger.info(
            "resolution_transition",
            resolution_id=resolution_id,
            previous=previous.value,
            status=target.value,
        )
        return previous

    def revert_status(
        self,
        resolution_id: int,
        status: ResolutionStatus,
        closed_utc: Optional[datetime] = None,
    ) -> None:
        """Restore a stored status. Used only for rollback."""
        resolution = self._resolutions[resolution_id]
        resolution.status = status
        resolution.closed_utc = closed_utc

    def expired_active(self, now: datetime) -> list[int]:
        """Ids of ACTIVE resolutions whose end_time has passed."""
        now = ensure_utc(now)
        return [
            r.resolution_id for r in self._resolutions
            if r.status == ResolutionStatus.ACTIVE and now >= r.end_time
        ]

    def results(self, resolution_id: int) -> ResolutionResults:
        """Raw-count results. Ties are reported as TIED and never broken."""
        r = self.get(resolution_id)
        if r.votes_for > r.votes_against:
            outcome = ResolutionOutcome.PASSED
        elif r.votes_against > r.votes_for:
            outcome = ResolutionOutcome.REJECTED
        else:
            outcome = ResolutionOutcome.TIED
        return ResolutionResults(
            resolution_id=r.resolution_id,
            status=r.status,
            votes_for=r.votes_for,
            votes_against=r.votes_against,
            votes_abstain=r.votes_abstain,
            turnout=len(r.voted),
            outcome=outcome,
        )

    def to_records(self) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for r in self._resolutions:
            records.append({
                "resolution_id": r.resolution_id,
                "title": r.title,
                "description": r.description,
                "start_time": r.start_time.isoformat(),
                "end_time": r.end_time.isoformat(),
                "status": r.status.value,
                "votes_for": r.votes_for,
                "votes_against": r.votes_against,
                "votes_abstain": r.votes_abstain,
                "voted": sorted(r.voted),
                "created_utc": r.created_utc.isoformat() if r.created_utc else None,
                "closed_utc": r.closed_utc.isoformat() if r.closed_utc else None,
            })
        return records
