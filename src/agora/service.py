"""Agora service — unified facade for the election engine.

This is the primary interface for programmatic access to Agora.
It orchestrates all subsystems:
- Access control (admin and voter roles)
- Assembly configuration
- Resolution lifecycle (create, activate, close, expiry sweep)
- Voting (one ternary vote per voter per resolution)
- Certificate issuance (one certificate per successful vote)
- Lifecycle gate (global pause)
- Persistence (event log, state store)

Every mutating operation runs under one lock, so operations are applied
in a single total order. Each one follows the same sequence:

1. Gate check (Paused), then the centralized role check (Unauthorized).
2. Engine validation and mutation; a precondition failure raises an
   ElectionError before anything is changed.
3. Audit append of every event the operation emits, as one batch. If
   the append fails, all in-memory mutations are rolled back.
4. State snapshot. The audit trail is already durable at this point, so
   a snapshot failure keeps the change and reports a warning. The
   service then refuses to restart from that stale snapshot.

Precondition failures come back as ServiceResult(success=False) with
the specific ErrorCode. Nothing is retried.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import structlog

from agora.access.registry import AccessRegistry
from agora.certificates.issuer import CertificateIssuer
from agora.engine.state_machine import ResolutionStateMachine, effective_status
from agora.engine.voting import VotingEngine
from agora.errors import ElectionError, ErrorCode, InvalidTransition
from agora.governance.assembly import AssemblyConfig, ensure_utc
from agora.governance.lifecycle import LifecycleGate
from agora.governance.resolutions import ResolutionStore
from agora.models.election import (
    Assembly,
    Certificate,
    Resolution,
    ResolutionResults,
    ResolutionStatus,
    Role,
)
from agora.persistence.event_log import (
    EventKind,
    EventLog,
    EventRecord,
    format_timestamp,
)
from agora.persistence.state_store import StateStore
from agora.policy.config import ElectionPolicy

logger = structlog.get_logger()

# (kind, actor_id, payload), turned into EventRecords at commit time
_PendingEvent = tuple[EventKind, str, dict[str, Any]]


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[ErrorCode] = None


class ElectionService:
    """Unified election engine facade.

    Usage:
        service = ElectionService(admin_id="chair")

        service.grant_voters("chair", ["alice", "bob"])
        service.configure_assembly("chair", "AGM", "desc", start, end)
        result = service.create_resolution("chair", "R1", "d", r_start, r_end)
        service.activate_resolution("chair", result.data["resolution_id"])

        result = service.vote("alice", 0, VoteChoice.FOR)
        result.data["token_id"]  # certificate minted for the vote

    Persistence (optional):
        service = ElectionService(
            admin_id="chair",
            event_log=EventLog(storage_path=data_dir / "events.jsonl"),
            state_store=StateStore(data_dir / "state.json"),
        )
        # State is persisted on each mutation and loaded on construction.
        # Construction fails if the snapshot is behind the event log.
    """

    def __init__(
        self,
        admin_id: str,
        policy: Optional[ElectionPolicy] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._policy = policy or ElectionPolicy.default()
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store
        self._lock = threading.RLock()
        self._logger = logger.bind(system="agora.service")

        state_machine = ResolutionStateMachine(
            allow_draft_close=self._policy.allow_draft_close,
        )

        snapshot = state_store.load() if state_store is not None else None
        if state_store is not None:
            self._check_snapshot_current(snapshot)
        if snapshot is not None:
            self._registry = AccessRegistry.from_records(snapshot["access"])
            self._assembly = AssemblyConfig.from_records(snapshot.get("assembly"))
            self._resolutions = ResolutionStore.from_records(
                self._assembly, snapshot.get("resolutions", []), state_machine,
            )
            self._issuer = CertificateIssuer.from_records(snapshot["certificates"])
            self._gate = LifecycleGate(paused=snapshot.get("paused", False))
            self._logger.info(
                "state_restored",
                resolutions=self._resolutions.count,
                certificates=self._issuer.total_issued,
            )
        else:
            self._registry = AccessRegistry(admin_id)
            self._assembly = AssemblyConfig()
            self._resolutions = ResolutionStore(self._assembly, state_machine)
            self._issuer = CertificateIssuer(
                self._policy.certificate_name,
                self._policy.certificate_symbol,
                self._policy.base_uri,
            )
            self._gate = LifecycleGate()

        self._voting = VotingEngine(self._resolutions)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

        # Set when a snapshot write fails after its audit events were
        # committed. In-memory state matches the audit trail; the
        # snapshot is stale until the next successful write.
        self._persistence_degraded: bool = False

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def grant_admin(
        self, caller: str, identity: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._grant(caller, identity, Role.ADMIN, now)

    def revoke_admin(
        self, caller: str, identity: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._revoke(caller, identity, Role.ADMIN, now)

    def grant_voter(
        self, caller: str, identity: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._grant(caller, identity, Role.VOTER, now)

    def revoke_voter(
        self, caller: str, identity: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._revoke(caller, identity, Role.VOTER, now)

    def grant_voters(
        self,
        caller: str,
        identities: Iterable[str],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Grant the voter role to a batch. All or nothing."""
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                granted = self._registry.grant_many(identities, Role.VOTER)
            except ElectionError as e:
                return self._reject("grant_voters", caller, e)

            def _rollback() -> None:
                for ident in granted:
                    self._registry.discard(ident, Role.VOTER)

            events = [
                (EventKind.ROLE_GRANTED, caller, {"identity": ident, "role": Role.VOTER.value})
                for ident in granted
            ]
            return self._commit(
                events, _rollback, {"granted": granted}, now,
            )

    def is_admin(self, identity: str) -> bool:
        with self._lock:
            return self._registry.is_admin(identity)

    def is_voter(self, identity: str) -> bool:
        with self._lock:
            return self._registry.is_voter(identity)

    def get_voters_count(self) -> int:
        with self._lock:
            return self._registry.count(Role.VOTER)

    def get_voters(self) -> list[str]:
        with self._lock:
            return self._registry.members(Role.VOTER)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def configure_assembly(
        self,
        caller: str,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Configure (or overwrite) the assembly. Emits AssemblyConfigured."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                previous = self._assembly.configure(
                    title, description, start_time, end_time, now=now,
                )
            except ElectionError as e:
                return self._reject("configure_assembly", caller, e)

            assembly = self._assembly.assembly
            return self._commit(
                [(EventKind.ASSEMBLY_CONFIGURED, caller, {
                    "title": assembly.title,
                    "start_time": assembly.start_time.isoformat(),
                    "end_time": assembly.end_time.isoformat(),
                })],
                lambda: self._assembly.restore(previous),
                {
                    "title": assembly.title,
                    "start_time": assembly.start_time.isoformat(),
                    "end_time": assembly.end_time.isoformat(),
                    "reconfigured": previous is not None,
                },
                now,
            )

    def get_assembly(self) -> Optional[Assembly]:
        with self._lock:
            return self._assembly.assembly

    # ------------------------------------------------------------------
    # Resolutions
    # ------------------------------------------------------------------

    def create_resolution(
        self,
        caller: str,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create a DRAFT resolution. Emits ResolutionCreated(id, title)."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                resolution = self._resolutions.create(
                    title, description, start_time, end_time, now=now,
                )
            except ElectionError as e:
                return self._reject("create_resolution", caller, e)

            rid = resolution.resolution_id
            return self._commit(
                [(EventKind.RESOLUTION_CREATED, caller, {
                    "resolution_id": rid,
                    "title": resolution.title,
                })],
                lambda: self._resolutions.discard_last(rid),
                {"resolution_id": rid, "status": resolution.status.value},
                now,
            )

    def update_resolution_status(
        self,
        caller: str,
        resolution_id: int,
        status: ResolutionStatus | str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Move a resolution forward in its lifecycle."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                target = self._parse_status(status)
                previous = self._resolutions.transition(resolution_id, target, now)
            except ElectionError as e:
                return self._reject("update_resolution_status", caller, e)

            return self._commit(
                [(EventKind.RESOLUTION_STATUS_CHANGED, caller, {
                    "resolution_id": resolution_id,
                    "previous": previous.value,
                    "status": target.value,
                })],
                lambda: self._resolutions.revert_status(resolution_id, previous),
                {"resolution_id": resolution_id, "status": target.value},
                now,
            )

    def activate_resolution(
        self, caller: str, resolution_id: int, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self.update_resolution_status(
            caller, resolution_id, ResolutionStatus.ACTIVE, now,
        )

    def close_resolution(
        self, caller: str, resolution_id: int, now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self.update_resolution_status(
            caller, resolution_id, ResolutionStatus.CLOSED, now,
        )

    def close_expired_resolutions(
        self, caller: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Close every ACTIVE resolution whose end_time has passed."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                expired = self._resolutions.expired_active(now)
                for rid in expired:
                    self._resolutions.transition(rid, ResolutionStatus.CLOSED, now)
            except ElectionError as e:
                return self._reject("close_expired_resolutions", caller, e)

            def _rollback() -> None:
                for rid in expired:
                    self._resolutions.revert_status(rid, ResolutionStatus.ACTIVE)

            events = [
                (EventKind.RESOLUTION_STATUS_CHANGED, caller, {
                    "resolution_id": rid,
                    "previous": ResolutionStatus.ACTIVE.value,
                    "status": ResolutionStatus.CLOSED.value,
                    "reason": "expired",
                })
                for rid in expired
            ]
            return self._commit(events, _rollback, {"closed": expired}, now)

    def get_resolution_details(self, resolution_id: int) -> Optional[Resolution]:
        """Snapshot of a resolution, or None if the id is unknown."""
        with self._lock:
            try:
                return self._resolutions.get(resolution_id).snapshot()
            except ElectionError:
                return None

    def get_effective_status(
        self, resolution_id: int, now: Optional[datetime] = None,
    ) -> Optional[ResolutionStatus]:
        """Time-derived status; an expired ACTIVE resolution reads CLOSED."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                return effective_status(self._resolutions.get(resolution_id), now)
            except ElectionError:
                return None

    def list_resolutions(
        self, status_filter: Optional[ResolutionStatus] = None,
    ) -> list[Resolution]:
        with self._lock:
            return self._resolutions.list_resolutions(status_filter)

    def resolution_count(self) -> int:
        with self._lock:
            return self._resolutions.count

    def get_results(self, resolution_id: int) -> Optional[ResolutionResults]:
        with self._lock:
            try:
                return self._resolutions.results(resolution_id)
            except ElectionError:
                return None

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def vote(
        self,
        voter: str,
        resolution_id: int,
        choice: Any,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Cast one vote and mint its certificate, as a single unit.

        Emits VoteCast(resolution_id, voter, choice) and
        VoteCertificateIssued(voter, token_id).
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                self._guard(voter, Role.VOTER)
                cast = self._voting.record(resolution_id, voter.strip(), choice, now)
            except ElectionError as e:
                return self._reject("vote", voter, e)

            try:
                cert = self._issuer.issue(cast.voter, resolution_id=resolution_id, now=now)
            except ElectionError as e:
                self._voting.undo(cast)
                return self._reject("vote", voter, e)

            def _rollback() -> None:
                self._issuer.withdraw(cert.token_id)
                self._voting.undo(cast)

            result = self._commit(
                [
                    (EventKind.VOTE_CAST, cast.voter, {
                        "resolution_id": resolution_id,
                        "voter": cast.voter,
                        "choice": cast.choice.value,
                    }),
                    (EventKind.VOTE_CERTIFICATE_ISSUED, cast.voter, {
                        "voter": cast.voter,
                        "token_id": cert.token_id,
                    }),
                ],
                _rollback,
                {
                    "resolution_id": resolution_id,
                    "voter": cast.voter,
                    "choice": cast.choice.value,
                    "token_id": cert.token_id,
                },
                now,
            )
            if result.success:
                self._logger.info(
                    "vote_cast",
                    resolution_id=resolution_id,
                    voter=cast.voter,
                    choice=cast.choice.value,
                    token_id=cert.token_id,
                )
            return result

    def has_voted(self, resolution_id: int, identity: str) -> bool:
        with self._lock:
            try:
                return self._voting.has_voted(resolution_id, identity)
            except ElectionError:
                return False

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    def issue_certificate(
        self, caller: str, to: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Out-of-band issuance by an admin."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                cert = self._issuer.issue(to, now=now)
            except ElectionError as e:
                return self._reject("issue_certificate", caller, e)

            return self._commit(
                [(EventKind.VOTE_CERTIFICATE_ISSUED, caller, {
                    "voter": cert.owner,
                    "token_id": cert.token_id,
                })],
                lambda: self._issuer.withdraw(cert.token_id),
                {"owner": cert.owner, "token_id": cert.token_id},
                now,
            )

    def set_base_uri(
        self, caller: str, uri: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                previous = self._issuer.set_base_uri(uri)
            except ElectionError as e:
                return self._reject("set_base_uri", caller, e)

            return self._commit(
                [(EventKind.BASE_URI_UPDATED, caller, {"base_uri": self._issuer.base_uri})],
                lambda: self._issuer.restore_base_uri(previous),
                {"base_uri": self._issuer.base_uri},
                now,
            )

    def get_base_uri(self) -> str:
        with self._lock:
            return self._issuer.base_uri

    def certificate_balance(self, identity: str) -> int:
        with self._lock:
            return self._issuer.balance_of(identity)

    def certificates_of(self, identity: str) -> list[Certificate]:
        with self._lock:
            return self._issuer.certificates_of(identity)

    def owner_of(self, token_id: int) -> Optional[str]:
        with self._lock:
            try:
                return self._issuer.owner_of(token_id)
            except ElectionError:
                return None

    def token_uri(self, token_id: int) -> Optional[str]:
        with self._lock:
            try:
                return self._issuer.metadata_uri(token_id)
            except ElectionError:
                return None

    @property
    def certificate_name(self) -> str:
        return self._issuer.name

    @property
    def certificate_symbol(self) -> str:
        return self._issuer.symbol

    # ------------------------------------------------------------------
    # Lifecycle gate
    # ------------------------------------------------------------------

    def pause(self, caller: str, now: Optional[datetime] = None) -> ServiceResult:
        with self._lock:
            try:
                self._registry.require(caller, Role.ADMIN)
                self._gate.pause()
            except ElectionError as e:
                return self._reject("pause", caller, e)
            return self._commit(
                [(EventKind.PAUSED, caller, {})],
                lambda: self._gate.set(False),
                {"paused": True},
                now,
            )

    def unpause(self, caller: str, now: Optional[datetime] = None) -> ServiceResult:
        with self._lock:
            try:
                self._registry.require(caller, Role.ADMIN)
                self._gate.unpause()
            except ElectionError as e:
                return self._reject("unpause", caller, e)
            return self._commit(
                [(EventKind.UNPAUSED, caller, {})],
                lambda: self._gate.set(True),
                {"paused": False},
                now,
            )

    def paused(self) -> bool:
        with self._lock:
            return self._gate.paused

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def events(
        self,
        kind: Optional[EventKind] = None,
        since: Optional[datetime] = None,
    ) -> list[EventRecord]:
        """Audit events, optionally of one kind and at or after ``since``."""
        with self._lock:
            if since is None:
                return self._event_log.events(kind)
            return self._event_log.events_since(format_timestamp(since), kind)

    @property
    def minimum_tokens_required(self) -> int:
        return self._policy.minimum_tokens_required

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    def status(self) -> dict[str, Any]:
        """Summary of the current state."""
        with self._lock:
            assembly = self._assembly.assembly
            by_status: dict[str, int] = {}
            for r in self._resolutions.list_resolutions():
                by_status[r.status.value] = by_status.get(r.status.value, 0) + 1
            return {
                "assembly": None if assembly is None else {
                    "title": assembly.title,
                    "start_time": assembly.start_time.isoformat(),
                    "end_time": assembly.end_time.isoformat(),
                },
                "resolutions": {
                    "total": self._resolutions.count,
                    "by_status": by_status,
                },
                "admins": self._registry.count(Role.ADMIN),
                "voters": self._registry.count(Role.VOTER),
                "certificates": {
                    "name": self._issuer.name,
                    "symbol": self._issuer.symbol,
                    "issued": self._issuer.total_issued,
                    "base_uri": self._issuer.base_uri,
                },
                "paused": self._gate.paused,
                "minimum_tokens_required": self._policy.minimum_tokens_required,
                "events": self._event_log.count,
                "persistence_degraded": self._persistence_degraded,
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _grant(
        self, caller: str, identity: str, role: Role, now: Optional[datetime],
    ) -> ServiceResult:
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                ident = self._registry.grant(identity, role)
            except ElectionError as e:
                return self._reject(f"grant_{role.value}", caller, e)
            return self._commit(
                [(EventKind.ROLE_GRANTED, caller, {"identity": ident, "role": role.value})],
                lambda: self._registry.discard(ident, role),
                {"identity": ident, "role": role.value},
                now,
            )

    def _revoke(
        self, caller: str, identity: str, role: Role, now: Optional[datetime],
    ) -> ServiceResult:
        with self._lock:
            try:
                self._guard(caller, Role.ADMIN)
                ident = self._registry.revoke(identity, role)
            except ElectionError as e:
                return self._reject(f"revoke_{role.value}", caller, e)
            return self._commit(
                [(EventKind.ROLE_REVOKED, caller, {"identity": ident, "role": role.value})],
                lambda: self._registry.restore(ident, role),
                {"identity": ident, "role": role.value},
                now,
            )

    def _guard(self, caller: str, role: Role) -> None:
        """Pause gate, then the single authorization check."""
        self._gate.check()
        self._registry.require(caller, role)

    @staticmethod
    def _parse_status(status: ResolutionStatus | str) -> ResolutionStatus:
        if isinstance(status, ResolutionStatus):
            return status
        try:
            return ResolutionStatus(str(status).strip().lower())
        except ValueError:
            raise InvalidTransition(f"Unknown resolution status: {status!r}") from None

    def _reject(self, operation: str, caller: Any, error: ElectionError) -> ServiceResult:
        self._logger.info(
            "operation_rejected",
            operation=operation,
            caller=caller,
            error_code=error.code.value,
            reason=str(error),
        )
        return ServiceResult(success=False, errors=[str(error)], error_code=error.code)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _commit(
        self,
        events: list[_PendingEvent],
        rollback: Callable[[], None],
        data: dict[str, Any],
        now: Optional[datetime],
    ) -> ServiceResult:
        """Audit, then persist, an already-applied mutation.

        Must be called with the lock held. If the audit append fails the
        rollback callback undoes the in-memory mutation and the event
        counter is rewound.
        """
        counter_before = self._event_counter
        records = [
            EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=str(actor),
                payload=payload,
                timestamp_utc=now,
            )
            for kind, actor, payload in events
        ]
        if records:
            try:
                self._event_log.append_batch(records)
            except (ValueError, OSError) as e:
                rollback()
                self._event_counter = counter_before
                self._logger.error("audit_append_failed", error=str(e))
                return ServiceResult(success=False, errors=[f"Event log failure: {e}"])

        warning = self._safe_persist_post_audit()
        if warning:
            data = {**data, "warning": warning}
        return ServiceResult(success=True, data=data)

    def _snapshot_state(self) -> dict[str, Any]:
        return {
            "access": self._registry.to_records(),
            "assembly": self._assembly.to_records(),
            "resolutions": self._resolutions.to_records(),
            "certificates": self._issuer.to_records(),
            "paused": self._gate.paused,
            "event_count": self._event_log.count,
        }

    def _check_snapshot_current(self, snapshot: Optional[dict[str, Any]]) -> None:
        """Refuse to start from a snapshot older than the event log.

        A failed snapshot write leaves the log ahead of the snapshot, and
        starting from it would forget votes and certificates the log
        records.
        """
        recorded = 0 if snapshot is None else snapshot.get("event_count", 0)
        if self._event_log.count > recorded:
            self._logger.error(
                "snapshot_stale",
                snapshot_events=recorded,
                log_events=self._event_log.count,
            )
            raise ValueError(
                f"State snapshot is behind the event log "
                f"({recorded} of {self._event_log.count} events); "
                f"refusing to start from stale state"
            )

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        MUST NOT roll back in-memory state; the audit trail is already
        durable. On failure, sets _persistence_degraded and returns a
        warning string (not a hard error).
        """
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self._snapshot_state())
            self._persistence_degraded = False
            return None
        except OSError as e:
            self._persistence_degraded = True
            self._logger.error("persistence_failed", error=str(e))
            return (
                f"Persistence degraded: {e}; state committed in audit trail "
                f"but StateStore is stale"
            )
