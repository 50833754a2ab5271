#!/usr/bin/env python3
"""Agora invariant checks against the policy file and a state snapshot.

Usage:
    python3 tools/check_invariants.py                 # policy only
    python3 tools/check_invariants.py data/state.json # policy + state
"""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
POLICY_PATH = ROOT / "config" / "election_policy.json"

POLICY_KEYS = {
    "certificate_name": str,
    "certificate_symbol": str,
    "base_uri": str,
    "allow_draft_close": bool,
    "minimum_tokens_required": int,
    "log_level": str,
    "log_format": str,
}
STATUSES = {"draft", "active", "closed"}


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_policy(policy: dict, errors: list[str]) -> None:
    for key, expected in POLICY_KEYS.items():
        if key in policy and not isinstance(policy[key], expected):
            errors.append(f"policy.{key} must be {expected.__name__}")
    unknown = set(policy) - set(POLICY_KEYS)
    if unknown:
        errors.append(f"policy has unknown keys: {sorted(unknown)}")
    if not str(policy.get("certificate_name", "x")).strip():
        errors.append("policy.certificate_name cannot be empty")
    minimum = policy.get("minimum_tokens_required", 1)
    if isinstance(minimum, bool) or (isinstance(minimum, int) and minimum < 0):
        errors.append("policy.minimum_tokens_required must be a non-negative integer")
    if policy.get("log_format", "console") not in ("console", "json"):
        errors.append("policy.log_format must be 'console' or 'json'")


def check_resolutions(state: dict, errors: list[str]) -> None:
    """Dense ids, tally sums, and windows inside the assembly."""
    resolutions = state.get("resolutions", [])
    assembly = state.get("assembly")
    ids = [r["resolution_id"] for r in resolutions]
    if ids != list(range(len(ids))):
        errors.append(f"resolution ids are not dense from 0: {ids}")

    for r in resolutions:
        rid = r["resolution_id"]
        tallies = (r["votes_for"], r["votes_against"], r["votes_abstain"])
        if any(t < 0 for t in tallies):
            errors.append(f"resolution {rid}: negative tally {tallies}")
        voted = r.get("voted", [])
        if len(set(voted)) != len(voted):
            errors.append(f"resolution {rid}: duplicate voter in voted set")
        if sum(tallies) != len(set(voted)):
            errors.append(
                f"resolution {rid}: tally sum {sum(tallies)} != voters {len(set(voted))}"
            )
        if r["status"] not in STATUSES:
            errors.append(f"resolution {rid}: unknown status {r['status']}")
        if r["start_time"] >= r["end_time"]:
            errors.append(f"resolution {rid}: start_time must precede end_time")
        if r["status"] == "draft" and voted:
            errors.append(f"resolution {rid}: draft resolution has votes")
        if assembly is None:
            errors.append(f"resolution {rid}: exists without an assembly")


def check_certificates(state: dict, errors: list[str]) -> None:
    """Unique increasing token ids and one certificate per recorded vote."""
    certs = state.get("certificates", {})
    records = certs.get("certificates", [])
    token_ids = [c["token_id"] for c in records]
    if token_ids != sorted(set(token_ids)):
        errors.append("certificate token ids are not unique and increasing")
    if token_ids and certs.get("next_token_id", 0) <= token_ids[-1]:
        errors.append("next_token_id does not exceed the highest issued token id")

    voted_pairs = {
        (r["resolution_id"], voter)
        for r in state.get("resolutions", [])
        for voter in r.get("voted", [])
    }
    vote_certs = {
        (c["resolution_id"], c["owner"])
        for c in records
        if c.get("resolution_id") is not None
    }
    if voted_pairs != vote_certs:
        errors.append(
            f"vote/certificate mismatch: {len(voted_pairs)} votes, "
            f"{len(vote_certs)} vote certificates"
        )


def check_access(state: dict, errors: list[str]) -> None:
    if not state.get("access", {}).get("admins"):
        errors.append("access registry has no admins")


def check(state_path: Path | None = None) -> int:
    errors: list[str] = []
    if POLICY_PATH.exists():
        check_policy(load_json(POLICY_PATH), errors)

    if state_path is not None:
        snapshot = load_json(state_path)
        state = snapshot.get("state", snapshot)
        check_access(state, errors)
        check_resolutions(state, errors)
        check_certificates(state, errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"  - {err}")
        return 1

    print("Invariant checks passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else None))
