"""Tests for assembly configuration and the resolution store.

Covers:
- Assembly validation (title, window, start not in the past)
- Reconfiguration overwrite
- Dense sequential resolution ids
- Resolution window must sit inside the assembly window
- Status transitions through the store
- Expiry detection and raw-count results
- from_records / to_records round-trip
- Naive datetimes taken as UTC
"""

from datetime import datetime, timedelta, timezone

import pytest

from agora.engine.state_machine import ResolutionStateMachine
from agora.errors import EmptyString, InvalidTimeRange, InvalidTransition, NotFound
from agora.governance.assembly import AssemblyConfig, ensure_utc
from agora.governance.resolutions import ResolutionStore
from agora.models.election import ResolutionOutcome, ResolutionStatus


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def assembly_config() -> AssemblyConfig:
    config = AssemblyConfig()
    config.configure("AGM", "desc", _at(3600), _at(90000), now=T0)
    return config


@pytest.fixture
def store(assembly_config: AssemblyConfig) -> ResolutionStore:
    return ResolutionStore(assembly_config)


class TestAssemblyConfig:
    def test_configure(self) -> None:
        config = AssemblyConfig()
        previous = config.configure("AGM", "desc", _at(3600), _at(90000), now=T0)
        assert previous is None
        assert config.assembly.title == "AGM"
        assert config.assembly.configured_utc == T0

    def test_empty_title(self) -> None:
        with pytest.raises(EmptyString):
            AssemblyConfig().configure("  ", "desc", _at(10), _at(20), now=T0)

    def test_inverted_window(self) -> None:
        with pytest.raises(InvalidTimeRange):
            AssemblyConfig().configure("AGM", "desc", _at(20), _at(20), now=T0)

    def test_start_in_past(self) -> None:
        with pytest.raises(InvalidTimeRange, match="in the past"):
            AssemblyConfig().configure("AGM", "desc", _at(-1), _at(20), now=T0)

    def test_start_at_now_is_allowed(self) -> None:
        config = AssemblyConfig()
        config.configure("AGM", "desc", T0, _at(20), now=T0)
        assert config.assembly.start_time == T0

    def test_reconfigure_overwrites(self, assembly_config: AssemblyConfig) -> None:
        previous = assembly_config.configure("EGM", "", _at(100), _at(200), now=T0)
        assert previous.title == "AGM"
        assert assembly_config.assembly.title == "EGM"

    def test_records_round_trip(self, assembly_config: AssemblyConfig) -> None:
        restored = AssemblyConfig.from_records(assembly_config.to_records())
        assert restored.assembly == assembly_config.assembly

    def test_empty_records(self) -> None:
        assert AssemblyConfig.from_records(None).assembly is None


class TestCreateResolution:
    def test_ids_are_dense_from_zero(self, store: ResolutionStore) -> None:
        ids = [
            store.create(f"R{i}", "d", _at(3700), _at(89000), now=T0).resolution_id
            for i in range(3)
        ]
        assert ids == [0, 1, 2]
        assert store.count == 3

    def test_new_resolution_is_draft_with_zero_tally(self, store: ResolutionStore) -> None:
        r = store.create("R1", "d", _at(3700), _at(89000), now=T0)
        assert r.status == ResolutionStatus.DRAFT
        assert (r.votes_for, r.votes_against, r.votes_abstain) == (0, 0, 0)
        assert r.voted == set()

    def test_requires_assembly(self) -> None:
        store = ResolutionStore(AssemblyConfig())
        with pytest.raises(NotFound, match="Assembly not configured"):
            store.create("R1", "d", _at(3700), _at(89000), now=T0)

    def test_empty_title(self, store: ResolutionStore) -> None:
        with pytest.raises(EmptyString):
            store.create("", "d", _at(3700), _at(89000), now=T0)

    def test_inverted_window(self, store: ResolutionStore) -> None:
        with pytest.raises(InvalidTimeRange):
            store.create("R1", "d", _at(89000), _at(3700), now=T0)

    def test_window_before_assembly(self, store: ResolutionStore) -> None:
        with pytest.raises(InvalidTimeRange, match="outside the assembly window"):
            store.create("R1", "d", _at(3599), _at(89000), now=T0)

    def test_window_after_assembly(self, store: ResolutionStore) -> None:
        with pytest.raises(InvalidTimeRange):
            store.create("R1", "d", _at(3700), _at(90001), now=T0)

    def test_window_equal_to_assembly(self, store: ResolutionStore) -> None:
        r = store.create("R1", "d", _at(3600), _at(90000), now=T0)
        assert r.resolution_id == 0

    def test_failed_create_consumes_no_id(self, store: ResolutionStore) -> None:
        with pytest.raises(EmptyString):
            store.create("", "d", _at(3700), _at(89000), now=T0)
        r = store.create("R1", "d", _at(3700), _at(89000), now=T0)
        assert r.resolution_id == 0


    def test_naive_window_taken_as_utc(self, store: ResolutionStore) -> None:
        naive = T0.replace(tzinfo=None)
        r = store.create(
            "R1", "d", naive + timedelta(seconds=3700), naive + timedelta(seconds=89000),
            now=naive,
        )
        assert r.start_time == _at(3700)
        assert r.end_time.tzinfo is timezone.utc


class TestEnsureUtc:
    def test_naive_gets_utc(self) -> None:
        assert ensure_utc(T0.replace(tzinfo=None)) == T0

    def test_aware_unchanged(self) -> None:
        plus_two = T0.astimezone(timezone(timedelta(hours=2)))
        assert ensure_utc(plus_two) is plus_two

    def test_naive_assembly_window(self) -> None:
        naive = T0.replace(tzinfo=None)
        config = AssemblyConfig()
        config.configure(
            "AGM", "d", naive + timedelta(seconds=10), naive + timedelta(seconds=20), now=naive,
        )
        assert config.assembly.start_time == _at(10)
        assert config.assembly.contains(_at(10), _at(20))

    def test_naive_expiry_check(self, store: ResolutionStore) -> None:
        store.create("R1", "d", _at(3700), _at(4000), now=T0)
        store.transition(0, ResolutionStatus.ACTIVE, T0)
        assert store.expired_active(_at(4000).replace(tzinfo=None)) == [0]

class TestLookupAndTransitions:
    def test_get_unknown(self, store: ResolutionStore) -> None:
        with pytest.raises(NotFound):
            store.get(0)
        with pytest.raises(NotFound):
            store.get(-1)
        with pytest.raises(NotFound):
            store.get("0")  # type: ignore[arg-type]

    def test_transition(self, store: ResolutionStore) -> None:
        store.create("R1", "d", _at(3700), _at(89000), now=T0)
        previous = store.transition(0, ResolutionStatus.ACTIVE, now=T0)
        assert previous == ResolutionStatus.DRAFT
        assert store.get(0).status == ResolutionStatus.ACTIVE

    def test_transition_unknown(self, store: ResolutionStore) -> None:
        with pytest.raises(NotFound):
            store.transition(5, ResolutionStatus.ACTIVE, now=T0)

    def test_transition_skip_rejected(self, store: ResolutionStore) -> None:
        store.create("R1", "d", _at(3700), _at(89000), now=T0)
        with pytest.raises(InvalidTransition):
            store.transition(0, ResolutionStatus.CLOSED, now=T0)

    def test_draft_close_with_policy(self, assembly_config: AssemblyConfig) -> None:
        store = ResolutionStore(
            assembly_config, ResolutionStateMachine(allow_draft_close=True),
        )
        store.create("R1", "d", _at(3700), _at(89000), now=T0)
        store.transition(0, ResolutionStatus.CLOSED, now=T0)
        assert store.get(0).status == ResolutionStatus.CLOSED

    def test_list_returns_detached_snapshots(self, store: ResolutionStore) -> None:
        store.create("R1", "d", _at(3700), _at(89000), now=T0)
        listed = store.list_resolutions()
        listed[0].voted.add("mallory")
        listed[0].votes_for = 99
        assert store.get(0).voted == set()
        assert store.get(0).votes_for == 0

    def test_list_filter(self, store: ResolutionStore) -> None:
        store.create("R1", "d", _at(3700), _at(89000), now=T0)
        store.create("R2", "d", _at(3700), _at(89000), now=T0)
        store.transition(1, ResolutionStatus.ACTIVE, now=T0)
        active = store.list_resolutions(ResolutionStatus.ACTIVE)
        assert [r.resolution_id for r in active] == [1]

    def test_expired_active(self, store: ResolutionStore) -> None:
        store.create("R1", "d", _at(3700), _at(5000), now=T0)
        store.create("R2", "d", _at(3700), _at(89000), now=T0)
        store.create("R3", "d", _at(3700), _at(5000), now=T0)
        store.transition(0, ResolutionStatus.ACTIVE, now=T0)
        store.transition(1, ResolutionStatus.ACTIVE, now=T0)
        # R3 stays DRAFT, so it is not swept
        assert store.expired_active(_at(5000)) == [0]


class TestResults:
    def test_outcomes(self, store: ResolutionStore) -> None:
        r = store.create("R1", "d", _at(3700), _at(89000), now=T0)
        assert store.results(0).outcome == ResolutionOutcome.TIED
        r.votes_for, r.voted = 2, {"a", "b"}
        assert store.results(0).outcome == ResolutionOutcome.PASSED
        r.votes_against, r.voted = 3, {"a", "b", "c", "d", "e"}
        results = store.results(0)
        assert results.outcome == ResolutionOutcome.REJECTED
        assert results.turnout == 5

    def test_abstentions_do_not_break_ties(self, store: ResolutionStore) -> None:
        r = store.create("R1", "d", _at(3700), _at(89000), now=T0)
        r.votes_for, r.votes_against, r.votes_abstain = 1, 1, 5
        assert store.results(0).outcome == ResolutionOutcome.TIED


class TestRecords:
    def test_round_trip(self, store: ResolutionStore, assembly_config: AssemblyConfig) -> None:
        r = store.create("R1", "d", _at(3700), _at(89000), now=T0)
        store.transition(0, ResolutionStatus.ACTIVE, now=T0)
        r.voted.add("alice")
        r.votes_abstain = 1
        restored = ResolutionStore.from_records(assembly_config, store.to_records())
        copy = restored.get(0)
        assert copy.status == ResolutionStatus.ACTIVE
        assert copy.voted == {"alice"}
        assert copy.votes_abstain == 1
        assert copy.start_time == _at(3700)

    def test_gap_in_ids_rejected(self, store: ResolutionStore, assembly_config: AssemblyConfig) -> None:
        store.create("R1", "d", _at(3700), _at(89000), now=T0)
        records = store.to_records()
        records[0]["resolution_id"] = 1
        with pytest.raises(ValueError, match="not dense"):
            ResolutionStore.from_records(assembly_config, records)
