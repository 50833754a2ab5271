"""State store — JSON snapshot of the election state.

The snapshot holds the assembly, resolutions, role sets, certificates
and counters, and the pause flag. Each engine serialises itself with
to_records() and is rebuilt with from_records().

Writes go to a sibling temp file which then replaces the snapshot, so a
crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

SCHEMA_VERSION = 1


class StateStore:
    """File-backed snapshot store."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def load(self) -> Optional[dict[str, Any]]:
        """Return the stored snapshot, or None if nothing was saved yet.

        Raises:
            ValueError: If the snapshot has an unknown schema version.
        """
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported state schema version: {version} "
                f"(expected {SCHEMA_VERSION})"
            )
        return data["state"]

    def save(self, state: dict[str, Any]) -> None:
        """Atomically replace the snapshot. Can raise OSError."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(
                {"schema_version": SCHEMA_VERSION, "state": state},
                f,
                indent=2,
                sort_keys=True,
                ensure_ascii=False,
            )
        os.replace(tmp_path, self._storage_path)
