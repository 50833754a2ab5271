"""Tests for the election policy loader and logging setup."""

import json
import logging
from pathlib import Path

import pytest

from agora.policy.config import POLICY_FILENAME, ElectionPolicy
from agora.telemetry.logging import setup_logging


ROOT = Path(__file__).resolve().parents[1]


class TestElectionPolicy:
    def test_defaults(self) -> None:
        policy = ElectionPolicy.default()
        assert policy.certificate_name == "Election Certificate"
        assert policy.certificate_symbol == "ELECT"
        assert policy.allow_draft_close is False
        assert policy.minimum_tokens_required == 1

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert ElectionPolicy.from_config_dir(tmp_path) == ElectionPolicy.default()

    def test_partial_file(self, tmp_path: Path) -> None:
        (tmp_path / POLICY_FILENAME).write_text(
            json.dumps({"allow_draft_close": True}), encoding="utf-8",
        )
        policy = ElectionPolicy.from_config_dir(tmp_path)
        assert policy.allow_draft_close is True
        assert policy.certificate_symbol == "ELECT"

    def test_unknown_key_rejected(self, tmp_path: Path) -> None:
        (tmp_path / POLICY_FILENAME).write_text(
            json.dumps({"allow_draft_closing": True}), encoding="utf-8",
        )
        with pytest.raises(ValueError, match="Unknown election policy keys"):
            ElectionPolicy.from_config_dir(tmp_path)

    def test_invalid_values(self) -> None:
        with pytest.raises(ValueError):
            ElectionPolicy(certificate_name=" ")
        with pytest.raises(ValueError):
            ElectionPolicy(log_format="xml")

    @pytest.mark.parametrize("bad", [-1, True, "2", 1.5])
    def test_invalid_minimum_tokens_required(self, bad) -> None:
        with pytest.raises(ValueError, match="minimum_tokens_required"):
            ElectionPolicy(minimum_tokens_required=bad)

    def test_minimum_tokens_required_from_file(self, tmp_path: Path) -> None:
        (tmp_path / POLICY_FILENAME).write_text(
            json.dumps({"minimum_tokens_required": 5}), encoding="utf-8",
        )
        assert ElectionPolicy.from_config_dir(tmp_path).minimum_tokens_required == 5

    def test_round_trip(self) -> None:
        policy = ElectionPolicy(base_uri="https://x/", allow_draft_close=True)
        assert ElectionPolicy.from_dict(policy.to_dict()) == policy

    def test_shipped_policy_loads(self) -> None:
        policy = ElectionPolicy.from_config_dir(ROOT / "config")
        assert policy.base_uri.startswith("https://")


class TestLogging:
    @pytest.mark.parametrize("fmt", ["console", "json"])
    def test_setup_installs_single_handler(self, fmt: str) -> None:
        setup_logging("DEBUG", fmt)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO
