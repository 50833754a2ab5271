"""Election policy — runtime configuration loaded from the config directory.

The policy file is ``election_policy.json``. Missing keys fall back to
the defaults below; unknown keys are rejected so that a typo cannot
silently leave a policy flag at its default.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

POLICY_FILENAME = "election_policy.json"

_LOG_FORMATS = ("console", "json")


@dataclass(frozen=True)
class ElectionPolicy:
    """Certificate collection settings, lifecycle policy flags, logging.

    allow_draft_close: permit DRAFT → CLOSED without passing through
        ACTIVE. Off by default; the transition fails with
        InvalidTransition.
    minimum_tokens_required: token holding threshold carried with the
        election configuration. Read-only; no operation enforces it.
    """
    certificate_name: str = "Election Certificate"
    certificate_symbol: str = "ELECT"
    base_uri: str = ""
    allow_draft_close: bool = False
    minimum_tokens_required: int = 1
    log_level: str = "INFO"
    log_format: str = "console"

    def __post_init__(self) -> None:
        if not self.certificate_name.strip():
            raise ValueError("certificate_name cannot be empty")
        if not self.certificate_symbol.strip():
            raise ValueError("certificate_symbol cannot be empty")
        if (
            isinstance(self.minimum_tokens_required, bool)
            or not isinstance(self.minimum_tokens_required, int)
            or self.minimum_tokens_required < 0
        ):
            raise ValueError(
                f"minimum_tokens_required must be a non-negative integer, "
                f"got {self.minimum_tokens_required!r}"
            )
        if self.log_format not in _LOG_FORMATS:
            raise ValueError(
                f"log_format must be one of {_LOG_FORMATS}, got {self.log_format!r}"
            )

    @classmethod
    def default(cls) -> ElectionPolicy:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElectionPolicy:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown election policy keys: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ElectionPolicy:
        """Load the policy from ``config_dir/election_policy.json``.

        A missing file yields the defaults.
        """
        path = config_dir / POLICY_FILENAME
        if not path.exists():
            return cls.default()
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
