"""Access registry — admin and voter capabilities.

An identity either holds a role or it does not; there is no weighting.
Grants and revocations are admin-only. The authorization check is
centralized in require(): every mutating entry point calls it with the
role it needs instead of testing membership itself.

Policy: re-granting a held role fails with AlreadyGranted, and revoking
a role that is not held fails with NotGranted.
"""

from __future__ import annotations

from typing import Any, Iterable

import structlog

from agora.errors import (
    AlreadyGranted,
    InvalidIdentity,
    InvalidState,
    NotGranted,
    Unauthorized,
)
from agora.models.election import Role

logger = structlog.get_logger()

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_identity(identity: Any) -> str:
    """Strip an identity, rejecting blanks and the zero address."""
    if not isinstance(identity, str):
        raise InvalidIdentity(f"Identity must be a string, got {type(identity).__name__}")
    ident = identity.strip()
    if not ident:
        raise InvalidIdentity("Identity cannot be empty")
    if ident.lower() == ZERO_ADDRESS:
        raise InvalidIdentity("Zero identity is not allowed")
    return ident


class AccessRegistry:
    """Role sets for admins and voters."""

    def __init__(self, initial_admin: str) -> None:
        self._members: dict[Role, set[str]] = {
            Role.ADMIN: {normalize_identity(initial_admin)},
            Role.VOTER: set(),
        }
        self._logger = logger.bind(system="agora.access")

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> AccessRegistry:
        """Restore registry state from a persisted record."""
        admins = sorted(data.get("admins", []))
        if not admins:
            raise ValueError("Persisted access registry has no admins")
        registry = cls(admins[0])
        registry._members[Role.ADMIN] = set(admins)
        registry._members[Role.VOTER] = set(data.get("voters", []))
        return registry

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def has_role(self, identity: str, role: Role) -> bool:
        if not isinstance(identity, str):
            return False
        return identity.strip() in self._members[role]

    def is_admin(self, identity: str) -> bool:
        return self.has_role(identity, Role.ADMIN)

    def is_voter(self, identity: str) -> bool:
        return self.has_role(identity, Role.VOTER)

    def require(self, identity: str, role: Role) -> None:
        """Raise Unauthorized unless ``identity`` holds ``role``."""
        if not self.has_role(identity, role):
            raise Unauthorized(f"{identity!r} is missing role {role.value}")

    # ------------------------------------------------------------------
    # Mutations (the service authorizes the caller first)
    # ------------------------------------------------------------------

    def grant(self, identity: str, role: Role) -> str:
        """Grant ``role`` to ``identity``. Returns the normalized identity."""
        ident = normalize_identity(identity)
        if ident in self._members[role]:
            raise AlreadyGranted(f"{ident} already holds role {role.value}")
        self._members[role].add(ident)
        self._logger.info("role_granted", identity=ident, role=role.value)
        return ident

    def grant_many(self, identities: Iterable[str], role: Role) -> list[str]:
        """Grant ``role`` to every identity, or to none of them.

        All identities are validated before any is added.
        """
        if isinstance(identities, str):
            raise InvalidIdentity(
                f"Expected a collection of identities, got the string {identities!r}"
            )
        batch: list[str] = []
        for identity in identities:
            ident = normalize_identity(identity)
            if ident in self._members[role] or ident in batch:
                raise AlreadyGranted(f"{ident} already holds role {role.value}")
            batch.append(ident)
        self._members[role].update(batch)
        self._logger.info("roles_granted", count=len(batch), role=role.value)
        return batch

    def revoke(self, identity: str, role: Role) -> str:
        """Revoke ``role`` from ``identity``. Returns the normalized identity."""
        ident = normalize_identity(identity)
        if ident not in self._members[role]:
            raise NotGranted(f"{ident} does not hold role {role.value}")
        if role == Role.ADMIN and len(self._members[Role.ADMIN]) == 1:
            raise InvalidState("Cannot revoke the last admin")
        self._members[role].discard(ident)
        self._logger.info("role_revoked", identity=ident, role=role.value)
        return ident

    def discard(self, identity: str, role: Role) -> None:
        """Remove membership without checks. Used only for rollback."""
        self._members[role].discard(identity)

    def restore(self, identity: str, role: Role) -> None:
        """Re-add membership without checks. Used only for rollback."""
        self._members[role].add(identity)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def members(self, role: Role) -> list[str]:
        return sorted(self._members[role])

    def count(self, role: Role) -> int:
        return len(self._members[role])

    def to_records(self) -> dict[str, Any]:
        return {
            "admins": self.members(Role.ADMIN),
            "voters": self.members(Role.VOTER),
        }
