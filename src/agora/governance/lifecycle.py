"""Lifecycle gate — global pause switch.

While paused, every mutating operation except unpause() fails with
Paused before any of its own preconditions are looked at. Reads stay
available.

Policy: pausing an already-paused system, or unpausing a running one,
fails with InvalidState.
"""

from __future__ import annotations

from agora.errors import InvalidState, Paused


class LifecycleGate:
    """A single boolean consulted by every mutating operation."""

    def __init__(self, paused: bool = False) -> None:
        self._paused = paused

    @property
    def paused(self) -> bool:
        return self._paused

    def check(self) -> None:
        """Raise Paused if the system is paused."""
        if self._paused:
            raise Paused("System is paused")

    def pause(self) -> None:
        if self._paused:
            raise InvalidState("System is already paused")
        self._paused = True

    def unpause(self) -> None:
        if not self._paused:
            raise InvalidState("System is not paused")
        self._paused = False

    def set(self, paused: bool) -> None:
        """Force the flag. Used only for rollback."""
        self._paused = paused
