"""Election data models — assembly, resolutions, roles, and certificates.

Resolution lifecycle: DRAFT → ACTIVE → CLOSED (strictly forward).
A resolution's stored status is the admin-controlled lifecycle flag.
Whether it currently accepts votes also depends on its time window;
see agora.engine.state_machine.effective_status.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional


class Role(str, enum.Enum):
    """Capabilities held by identities in the access registry."""
    ADMIN = "admin"
    VOTER = "voter"


class ResolutionStatus(str, enum.Enum):
    """Stored lifecycle state of a resolution."""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class VoteChoice(str, enum.Enum):
    """A voter's ternary choice on a resolution."""
    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


class ResolutionOutcome(str, enum.Enum):
    """Raw-count outcome of a resolution. Ties are reported, never broken."""
    PASSED = "passed"
    REJECTED = "rejected"
    TIED = "tied"


@dataclass(frozen=True)
class Assembly:
    """The single deliberative event. Its window bounds every resolution."""
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    configured_utc: Optional[datetime] = None

    def contains(self, start_time: datetime, end_time: datetime) -> bool:
        """True if [start_time, end_time] lies inside the assembly window."""
        return self.start_time <= start_time and end_time <= self.end_time


@dataclass
class Resolution:
    """A question put to the assembly.

    Invariant: votes_for + votes_against + votes_abstain == len(voted).
    Resolutions are never deleted.
    """
    resolution_id: int
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    status: ResolutionStatus = ResolutionStatus.DRAFT
    votes_for: int = 0
    votes_against: int = 0
    votes_abstain: int = 0
    voted: set[str] = field(default_factory=set)
    created_utc: Optional[datetime] = None
    closed_utc: Optional[datetime] = None

    @property
    def total_votes(self) -> int:
        return self.votes_for + self.votes_against + self.votes_abstain

    def snapshot(self) -> Resolution:
        """Detached copy for read-only callers."""
        return replace(self, voted=set(self.voted))


@dataclass(frozen=True)
class ResolutionResults:
    """Read model of a resolution's tally."""
    resolution_id: int
    status: ResolutionStatus
    votes_for: int
    votes_against: int
    votes_abstain: int
    turnout: int
    outcome: ResolutionOutcome


@dataclass(frozen=True)
class Certificate:
    """Proof of participation minted to a voter.

    Frozen — certificates are never transferred or burned. The metadata
    URI is not stored; it is derived from the issuer's current base URI.
    """
    token_id: int
    owner: str
    issued_utc: datetime
    resolution_id: Optional[int] = None
