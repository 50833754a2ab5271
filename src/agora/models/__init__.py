"""Core data models for Agora."""

from agora.models.election import (
    Assembly,
    Certificate,
    Resolution,
    ResolutionOutcome,
    ResolutionResults,
    ResolutionStatus,
    Role,
    VoteChoice,
)

__all__ = [
    "Assembly",
    "Certificate",
    "Resolution",
    "ResolutionOutcome",
    "ResolutionResults",
    "ResolutionStatus",
    "Role",
    "VoteChoice",
]
