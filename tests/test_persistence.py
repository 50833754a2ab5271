"""Tests for the state snapshot and service restart from disk."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agora.errors import ErrorCode
from agora.models.election import ResolutionStatus, VoteChoice
from agora.persistence.event_log import EventKind, EventLog
from agora.persistence.state_store import SCHEMA_VERSION, StateStore
from agora.service import ElectionService


ADMIN = "chair"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def _persistent_service(data_dir: Path) -> ElectionService:
    return ElectionService(
        ADMIN,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(data_dir / "state.json"),
    )


class TestStateStore:
    def test_missing_file(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        assert not store.exists()
        assert store.load() is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "nested" / "state.json")
        store.save({"paused": True})
        assert store.exists()
        assert store.load() == {"paused": True}
        raw = json.loads(store.storage_path.read_text(encoding="utf-8"))
        assert raw["schema_version"] == SCHEMA_VERSION
        assert not (tmp_path / "nested" / "state.json.tmp").exists()

    def test_unknown_schema_version(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"schema_version": 99, "state": {}}), encoding="utf-8")
        with pytest.raises(ValueError, match="schema version"):
            StateStore(path).load()


class TestServiceRestart:
    def test_state_survives_restart(self, tmp_path: Path) -> None:
        svc = _persistent_service(tmp_path)
        svc.grant_voters(ADMIN, ["alice", "bob"], now=T0)
        svc.configure_assembly(ADMIN, "AGM", "", _at(3600), _at(90000), now=T0)
        svc.create_resolution(ADMIN, "R1", "", _at(3700), _at(89000), now=T0)
        svc.activate_resolution(ADMIN, 0, now=T0)
        svc.vote("alice", 0, VoteChoice.AGAINST, now=_at(4000))
        svc.set_base_uri(ADMIN, "https://certs.example/", now=T0)
        svc.pause(ADMIN, now=T0)

        restarted = _persistent_service(tmp_path)
        r = restarted.get_resolution_details(0)
        assert r.status == ResolutionStatus.ACTIVE
        assert r.votes_against == 1
        assert r.voted == {"alice"}
        assert restarted.get_assembly().title == "AGM"
        assert restarted.get_voters() == ["alice", "bob"]
        assert restarted.owner_of(0) == "alice"
        assert restarted.token_uri(0) == "https://certs.example/0"
        assert restarted.paused()
        assert len(restarted.events()) == len(svc.events())

    def test_restart_continues_counters(self, tmp_path: Path) -> None:
        svc = _persistent_service(tmp_path)
        svc.grant_voters(ADMIN, ["alice", "bob"], now=T0)
        svc.configure_assembly(ADMIN, "AGM", "", _at(3600), _at(90000), now=T0)
        svc.create_resolution(ADMIN, "R1", "", _at(3700), _at(89000), now=T0)
        svc.activate_resolution(ADMIN, 0, now=T0)
        svc.vote("alice", 0, VoteChoice.FOR, now=_at(4000))
        last_event = svc.events()[-1].event_id

        restarted = _persistent_service(tmp_path)
        assert restarted.vote("alice", 0, VoteChoice.FOR, now=_at(4001)).error_code is not None
        result = restarted.vote("bob", 0, VoteChoice.FOR, now=_at(4001))
        assert result.data["token_id"] == 1
        created = restarted.create_resolution(ADMIN, "R2", "", _at(3700), _at(4000), now=T0)
        assert created.data["resolution_id"] == 1
        ids = [e.event_id for e in restarted.events()]
        assert ids.index(last_event) < len(ids) - 1
        assert len(ids) == len(set(ids))

    def test_snapshot_failure_degrades_without_rollback(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        svc = _persistent_service(tmp_path)

        def _fail(state):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(svc._state_store, "save", _fail)
        result = svc.grant_voter(ADMIN, "alice", now=T0)
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert svc.persistence_degraded
        assert svc.is_voter("alice")
        assert len(svc.events(EventKind.ROLE_GRANTED)) == 1

        monkeypatch.undo()
        svc.grant_voter(ADMIN, "bob", now=T0)
        assert not svc.persistence_degraded

    def test_snapshot_records_event_count(self, tmp_path: Path) -> None:
        svc = _persistent_service(tmp_path)
        svc.grant_voters(ADMIN, ["alice", "bob"], now=T0)
        state = StateStore(tmp_path / "state.json").load()
        assert state["event_count"] == 2

    def test_restart_refuses_stale_snapshot(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        svc = _persistent_service(tmp_path)
        svc.grant_voters(ADMIN, ["alice", "bob"], now=T0)
        svc.configure_assembly(ADMIN, "AGM", "", _at(3600), _at(90000), now=T0)
        svc.create_resolution(ADMIN, "R1", "", _at(3700), _at(89000), now=T0)
        svc.activate_resolution(ADMIN, 0, now=T0)

        def _fail(state):
            raise OSError("disk full")

        monkeypatch.setattr(svc._state_store, "save", _fail)
        result = svc.vote("alice", 0, VoteChoice.FOR, now=_at(4000))
        assert result.success
        assert "warning" in result.data

        with pytest.raises(ValueError, match="behind the event log"):
            _persistent_service(tmp_path)

    def test_restart_after_recovered_snapshot_keeps_vote_invariants(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        svc = _persistent_service(tmp_path)
        svc.grant_voters(ADMIN, ["alice", "bob"], now=T0)
        svc.configure_assembly(ADMIN, "AGM", "", _at(3600), _at(90000), now=T0)
        svc.create_resolution(ADMIN, "R1", "", _at(3700), _at(89000), now=T0)
        svc.activate_resolution(ADMIN, 0, now=T0)

        def _fail(state):
            raise OSError("disk full")

        monkeypatch.setattr(svc._state_store, "save", _fail)
        assert svc.vote("alice", 0, VoteChoice.FOR, now=_at(4000)).success
        assert svc.persistence_degraded

        monkeypatch.undo()
        assert svc.grant_voter(ADMIN, "carol", now=T0).success
        assert not svc.persistence_degraded

        restarted = _persistent_service(tmp_path)
        again = restarted.vote("alice", 0, VoteChoice.FOR, now=_at(4001))
        assert again.error_code == ErrorCode.ALREADY_VOTED
        assert restarted.get_resolution_details(0).votes_for == 1
        result = restarted.vote("bob", 0, VoteChoice.FOR, now=_at(4001))
        assert result.data["token_id"] == 1
        assert len(restarted.events(EventKind.VOTE_CAST)) == 2
