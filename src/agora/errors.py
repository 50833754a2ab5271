"""Error taxonomy for the election engines.

Every precondition failure raises a subclass of ElectionError. The
service facade converts these into ServiceResult failures that carry
the ErrorCode, so callers can tell "voting has not started yet" apart
from "you already voted" without parsing messages.

None of these errors are retryable: each reflects a permission
violation or a state precondition that an identical retry cannot fix.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Machine-readable error kinds."""
    UNAUTHORIZED = "unauthorized"
    PAUSED = "paused"
    NOT_FOUND = "not_found"
    INVALID_TIME_RANGE = "invalid_time_range"
    EMPTY_STRING = "empty_string"
    INVALID_CHOICE = "invalid_choice"
    INVALID_IDENTITY = "invalid_identity"
    ALREADY_VOTED = "already_voted"
    VOTING_NOT_OPEN = "voting_not_open"
    VOTING_ENDED = "voting_ended"
    INVALID_TRANSITION = "invalid_transition"
    ALREADY_GRANTED = "already_granted"
    NOT_GRANTED = "not_granted"
    INVALID_STATE = "invalid_state"


class ElectionError(ValueError):
    """Base class for all election precondition failures."""
    code: ErrorCode


class Unauthorized(ElectionError):
    code = ErrorCode.UNAUTHORIZED


class Paused(ElectionError):
    code = ErrorCode.PAUSED


class NotFound(ElectionError):
    code = ErrorCode.NOT_FOUND


class InvalidTimeRange(ElectionError):
    code = ErrorCode.INVALID_TIME_RANGE


class EmptyString(ElectionError):
    code = ErrorCode.EMPTY_STRING


class InvalidChoice(ElectionError):
    code = ErrorCode.INVALID_CHOICE


class InvalidIdentity(ElectionError):
    code = ErrorCode.INVALID_IDENTITY


class AlreadyVoted(ElectionError):
    code = ErrorCode.ALREADY_VOTED


class VotingNotOpen(ElectionError):
    code = ErrorCode.VOTING_NOT_OPEN


class VotingEnded(ElectionError):
    code = ErrorCode.VOTING_ENDED


class InvalidTransition(ElectionError):
    code = ErrorCode.INVALID_TRANSITION


class AlreadyGranted(ElectionError):
    code = ErrorCode.ALREADY_GRANTED


class NotGranted(ElectionError):
    code = ErrorCode.NOT_GRANTED


class InvalidState(ElectionError):
    code = ErrorCode.INVALID_STATE
