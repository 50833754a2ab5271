"""Certificate issuer — participation credentials minted per vote.

Token ids start at 0 and only ever increase. The counter is never
rewound, not even when a vote is rolled back after its certificate was
minted: the withdrawn certificate's id is simply skipped. Certificates
are never transferred or burned.

The metadata URI is derived on lookup from the current base URI, so
set_base_uri() changes every derived URI without touching the minted
records.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from agora.access.registry import normalize_identity
from agora.errors import EmptyString, NotFound
from agora.models.election import Certificate

logger = structlog.get_logger()


class CertificateIssuer:
    """Non-fungible participation certificates."""

    def __init__(self, name: str, symbol: str, base_uri: str = "") -> None:
        self._name = name
        self._symbol = symbol
        self._base_uri = base_uri
        self._certificates: dict[int, Certificate] = {}
        self._owned: dict[str, list[int]] = {}
        self._next_token_id = 0
        self._logger = logger.bind(system="agora.certificates")

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> CertificateIssuer:
        """Restore issuer state from a persisted record."""
        issuer = cls(data["name"], data["symbol"], data.get("base_uri", ""))
        for c in data.get("certificates", []):
            cert = Certificate(
                token_id=c["token_id"],
                owner=c["owner"],
                issued_utc=datetime.fromisoformat(c["issued_utc"]),
                resolution_id=c.get("resolution_id"),
            )
            issuer._certificates[cert.token_id] = cert
            issuer._owned.setdefault(cert.owner, []).append(cert.token_id)
        highest = max(issuer._certificates, default=-1)
        issuer._next_token_id = max(data.get("next_token_id", 0), highest + 1)
        return issuer

    @property
    def name(self) -> str:
        return self._name

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def base_uri(self) -> str:
        return self._base_uri

    @property
    def next_token_id(self) -> int:
        return self._next_token_id

    @property
    def total_issued(self) -> int:
        return len(self._certificates)

    def issue(
        self,
        to: str,
        resolution_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Certificate:
        """Mint the next certificate to ``to``.

        Raises:
            InvalidIdentity: If the recipient is blank or the zero identity.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        owner = normalize_identity(to)

        cert = Certificate(
            token_id=self._next_token_id,
            owner=owner,
            issued_utc=now,
            resolution_id=resolution_id,
        )
        self._next_token_id += 1
        self._certificates[cert.token_id] = cert
        self._owned.setdefault(owner, []).append(cert.token_id)
        self._logger.info(
            "certificate_issued",
            token_id=cert.token_id,
            owner=owner,
            resolution_id=resolution_id,
        )
        return cert

    def withdraw(self, token_id: int) -> None:
        """Remove a certificate whose minting transaction failed.

        The token id is not handed out again.
        """
        cert = self._certificates.pop(token_id, None)
        if cert is None:
            return
        owned = self._owned.get(cert.owner, [])
        if token_id in owned:
            owned.remove(token_id)
        if not owned:
            self._owned.pop(cert.owner, None)

    def set_base_uri(self, uri: str) -> str:
        """Replace the base URI. Returns the previous one."""
        if not isinstance(uri, str) or not uri.strip():
            raise EmptyString("Base URI cannot be empty")
        previous = self._base_uri
        self._base_uri = uri.strip()
        return previous

    def restore_base_uri(self, uri: str) -> None:
        """Put back a previous base URI. Used only for rollback."""
        self._base_uri = uri

    def get(self, token_id: int) -> Certificate:
        cert = self._certificates.get(token_id)
        if cert is None:
            raise NotFound(f"Certificate not found: {token_id}")
        return cert

    def owner_of(self, token_id: int) -> str:
        return self.get(token_id).owner

    def metadata_uri(self, token_id: int) -> str:
        """base URI + token id, derived from the current base URI."""
        self.get(token_id)
        return f"{self._base_uri}{token_id}"

    def balance_of(self, identity: str) -> int:
        return len(self._owned.get(identity.strip(), [])) if isinstance(identity, str) else 0

    def certificates_of(self, identity: str) -> list[Certificate]:
        if not isinstance(identity, str):
            return []
        return [self._certificates[t] for t in self._owned.get(identity.strip(), [])]

    def to_records(self) -> dict[str, Any]:
        return {
            "name": self._name,
            "symbol": self._symbol,
            "base_uri": self._base_uri,
            "next_token_id": self._next_token_id,
            "certificates": [
                {
                    "token_id": c.token_id,
                    "owner": c.owner,
                    "issued_utc": c.issued_utc.isoformat(),
                    "resolution_id": c.resolution_id,
                }
                for c in sorted(self._certificates.values(), key=lambda x: x.token_id)
            ],
        }
