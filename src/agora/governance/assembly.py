"""Assembly configuration — the single deliberative event.

The assembly defines the outer time window that every resolution must
fit inside. There is exactly one assembly per service instance.
Reconfiguration overwrites the previous values; no history is kept
here. The event log carries each AssemblyConfigured record, so callers
who need past configurations read them from there.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from agora.errors import EmptyString, InvalidTimeRange
from agora.models.election import Assembly


def ensure_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC; aware values pass through unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def require_text(value: str, label: str) -> str:
    """Return ``value`` stripped, raising EmptyString if it is blank."""
    if not isinstance(value, str) or not value.strip():
        raise EmptyString(f"{label} cannot be empty")
    return value.strip()


def require_window(start_time: datetime, end_time: datetime) -> None:
    if start_time >= end_time:
        raise InvalidTimeRange(
            f"start_time {start_time.isoformat()} must be before "
            f"end_time {end_time.isoformat()}"
        )


class AssemblyConfig:
    """Holds the assembly singleton."""

    def __init__(self) -> None:
        self._assembly: Optional[Assembly] = None

    @classmethod
    def from_records(cls, data: Optional[dict[str, Any]]) -> AssemblyConfig:
        config = cls()
        if data:
            config._assembly = Assembly(
                title=data["title"],
                description=data["description"],
                start_time=datetime.fromisoformat(data["start_time"]),
                end_time=datetime.fromisoformat(data["end_time"]),
                configured_utc=(
                    datetime.fromisoformat(data["configured_utc"])
                    if data.get("configured_utc") else None
                ),
            )
        return config

    @property
    def assembly(self) -> Optional[Assembly]:
        return self._assembly

    def configure(
        self,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        now: Optional[datetime] = None,
    ) -> Optional[Assembly]:
        """Replace the assembly. Returns the previous one (for rollback).

        Raises:
            EmptyString: If title is blank.
            InvalidTimeRange: If start_time >= end_time or start_time is
                in the past relative to ``now``.
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)

        clean_title = require_text(title, "Assembly title")
        require_window(start_time, end_time)
        if start_time < now:
            raise InvalidTimeRange(
                f"Assembly start_time {start_time.isoformat()} is in the past"
            )

        previous = self._assembly
        self._assembly = Assembly(
            title=clean_title,
            description=description or "",
            start_time=start_time,
            end_time=end_time,
            configured_utc=now,
        )
        return previous

    def restore(self, assembly: Optional[Assembly]) -> None:
        """Put back a previous assembly. Used only for rollback."""
        self._assembly = assembly

    def to_records(self) -> Optional[dict[str, Any]]:
        a = self._assembly
        if a is None:
            return None
        return {
            "title": a.title,
            "description": a.description,
            "start_time": a.start_time.isoformat(),
            "end_time": a.end_time.isoformat(),
            "configured_utc": a.configured_utc.isoformat() if a.configured_utc else None,
        }
