"""Agora CLI — command-line interface for the election engine.

Usage:
    python -m agora.cli status
    python -m agora.cli configure-assembly --title AGM --start 2026-11-01T09:00:00+00:00 --end 2026-11-02T09:00:00+00:00
    python -m agora.cli create-resolution --title "R1" --start ... --end ...
    python -m agora.cli activate --id 0
    python -m agora.cli grant-voter --identity alice
    python -m agora.cli --as alice vote --id 0 --choice for
    python -m agora.cli show-resolution --id 0
    python -m agora.cli events --since 2026-11-01T00:00:00 --kind vote_cast

Environment (read from .env if present):
    AGORA_CONFIG_DIR  policy directory (default: config/)
    AGORA_DATA_DIR    event log and state snapshot directory (default: data/)
    AGORA_ADMIN_ID    identity of the initial admin (default: admin)
    AGORA_LOG_LEVEL   overrides the policy's log level
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from agora.governance.assembly import ensure_utc
from agora.models.election import VoteChoice
from agora.persistence.event_log import EventKind, EventLog
from agora.persistence.state_store import StateStore
from agora.policy.config import ElectionPolicy
from agora.service import ElectionService, ServiceResult
from agora.telemetry.logging import setup_logging


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"
DEFAULT_ADMIN = "admin"


def _make_service(config_dir: Path, data_dir: Path, admin_id: str) -> ElectionService:
    """Create an ElectionService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    policy = ElectionPolicy.from_config_dir(config_dir)
    setup_logging(os.getenv("AGORA_LOG_LEVEL") or policy.log_level, policy.log_format)
    return ElectionService(
        admin_id,
        policy=policy,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(data_dir / "state.json"),
    )


def _parse_time(value: str) -> datetime:
    """ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 timestamp: {value}") from None
    return ensure_utc(ts)


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message.format(**result.data))
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    code = f" [{result.error_code.value}]" if result.error_code else ""
    print(f"Failed{code}: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(service: ElectionService, args: argparse.Namespace) -> int:
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_configure_assembly(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.configure_assembly(
        args.caller, args.title, args.description, args.start, args.end,
    )
    return _report(result, "Configured assembly: {title} [{start_time} → {end_time}]")


def cmd_create_resolution(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.create_resolution(
        args.caller, args.title, args.description, args.start, args.end,
    )
    return _report(result, "Created resolution: {resolution_id} ({status})")


def cmd_activate(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.activate_resolution(args.caller, args.id)
    return _report(result, "Resolution {resolution_id}: {status}")


def cmd_close(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.close_resolution(args.caller, args.id)
    return _report(result, "Resolution {resolution_id}: {status}")


def cmd_grant_voter(service: ElectionService, args: argparse.Namespace) -> int:
    if len(args.identity) == 1:
        result = service.grant_voter(args.caller, args.identity[0])
        return _report(result, "Granted voter role: {identity}")
    result = service.grant_voters(args.caller, args.identity)
    if result.success:
        print(f"Granted voter role: {', '.join(result.data['granted'])}")
        return 0
    return _report(result, "")


def cmd_revoke_voter(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.revoke_voter(args.caller, args.identity)
    return _report(result, "Revoked voter role: {identity}")


def cmd_grant_admin(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.grant_admin(args.caller, args.identity)
    return _report(result, "Granted admin role: {identity}")


def cmd_revoke_admin(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.revoke_admin(args.caller, args.identity)
    return _report(result, "Revoked admin role: {identity}")


def cmd_vote(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.vote(args.caller, args.id, args.choice)
    return _report(
        result,
        "Vote recorded on resolution {resolution_id}: {choice} (certificate {token_id})",
    )


def cmd_show_resolution(service: ElectionService, args: argparse.Namespace) -> int:
    resolution = service.get_resolution_details(args.id)
    if resolution is None:
        print(f"Resolution not found: {args.id}", file=sys.stderr)
        return 1
    results = service.get_results(args.id)
    print(json.dumps(
        {
            "resolution_id": resolution.resolution_id,
            "title": resolution.title,
            "description": resolution.description,
            "start_time": resolution.start_time.isoformat(),
            "end_time": resolution.end_time.isoformat(),
            "status": resolution.status.value,
            "effective_status": service.get_effective_status(args.id).value,
            "votes_for": resolution.votes_for,
            "votes_against": resolution.votes_against,
            "votes_abstain": resolution.votes_abstain,
            "turnout": results.turnout,
            "outcome": results.outcome.value,
        },
        indent=2,
    ))
    return 0


def cmd_issue_certificate(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.issue_certificate(args.caller, args.to)
    return _report(result, "Issued certificate {token_id} to {owner}")


def cmd_events(service: ElectionService, args: argparse.Namespace) -> int:
    kind = EventKind(args.kind) if args.kind else None
    records = service.events(kind, since=args.since)
    print(json.dumps(
        [
            {
                "event_id": e.event_id,
                "event_kind": e.event_kind.value,
                "timestamp_utc": e.timestamp_utc,
                "actor_id": e.actor_id,
                "payload": e.payload,
            }
            for e in records
        ],
        indent=2,
    ))
    return 0


def cmd_pause(service: ElectionService, args: argparse.Namespace) -> int:
    return _report(service.pause(args.caller), "Paused")


def cmd_unpause(service: ElectionService, args: argparse.Namespace) -> int:
    return _report(service.unpause(args.caller), "Unpaused")


def cmd_set_base_uri(service: ElectionService, args: argparse.Namespace) -> int:
    result = service.set_base_uri(args.caller, args.uri)
    return _report(result, "Base URI: {base_uri}")


def cmd_check_invariants(service: ElectionService, args: argparse.Namespace) -> int:
    """Run invariant checks on the policy and the persisted state."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    state_path = args.data / "state.json"
    return check(state_path if state_path.exists() else None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agora",
        description="Agora — assembly resolution voting CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: $AGORA_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: $AGORA_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--as",
        dest="caller",
        default=None,
        help="Identity performing the command (default: the initial admin)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show system status")

    p_asm = sub.add_parser("configure-assembly", help="Configure the assembly")
    p_asm.add_argument("--title", required=True)
    p_asm.add_argument("--description", default="")
    p_asm.add_argument("--start", required=True, type=_parse_time, help="ISO-8601 start")
    p_asm.add_argument("--end", required=True, type=_parse_time, help="ISO-8601 end")

    p_res = sub.add_parser("create-resolution", help="Create a draft resolution")
    p_res.add_argument("--title", required=True)
    p_res.add_argument("--description", default="")
    p_res.add_argument("--start", required=True, type=_parse_time, help="ISO-8601 start")
    p_res.add_argument("--end", required=True, type=_parse_time, help="ISO-8601 end")

    for name, help_text in (("activate", "Activate a resolution"), ("close", "Close a resolution")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--id", required=True, type=int, help="Resolution ID")

    p_grant = sub.add_parser("grant-voter", help="Grant the voter role")
    p_grant.add_argument("--identity", required=True, nargs="+")

    p_revoke = sub.add_parser("revoke-voter", help="Revoke the voter role")
    p_revoke.add_argument("--identity", required=True)

    p_grant_admin = sub.add_parser("grant-admin", help="Grant the admin role")
    p_grant_admin.add_argument("--identity", required=True)

    p_revoke_admin = sub.add_parser("revoke-admin", help="Revoke the admin role")
    p_revoke_admin.add_argument("--identity", required=True)

    p_vote = sub.add_parser("vote", help="Cast a vote")
    p_vote.add_argument("--id", required=True, type=int, help="Resolution ID")
    p_vote.add_argument(
        "--choice", required=True,
        choices=[c.value for c in VoteChoice],
    )

    p_show = sub.add_parser("show-resolution", help="Show a resolution and its tally")
    p_show.add_argument("--id", required=True, type=int, help="Resolution ID")

    p_issue = sub.add_parser("issue-certificate", help="Issue a certificate outside a vote")
    p_issue.add_argument("--to", required=True, help="Recipient identity")

    p_events = sub.add_parser("events", help="List audit events")
    p_events.add_argument(
        "--since", type=_parse_time, default=None, help="ISO-8601 lower bound",
    )
    p_events.add_argument("--kind", choices=[k.value for k in EventKind], default=None)

    sub.add_parser("pause", help="Pause all mutating operations")
    sub.add_parser("unpause", help="Resume mutating operations")
    sub.add_parser("check-invariants", help="Check policy and state invariants")

    p_uri = sub.add_parser("set-base-uri", help="Set the certificate base URI")
    p_uri.add_argument("--uri", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "configure-assembly": cmd_configure_assembly,
        "create-resolution": cmd_create_resolution,
        "activate": cmd_activate,
        "close": cmd_close,
        "grant-voter": cmd_grant_voter,
        "revoke-voter": cmd_revoke_voter,
        "grant-admin": cmd_grant_admin,
        "revoke-admin": cmd_revoke_admin,
        "vote": cmd_vote,
        "show-resolution": cmd_show_resolution,
        "issue-certificate": cmd_issue_certificate,
        "events": cmd_events,
        "pause": cmd_pause,
        "unpause": cmd_unpause,
        "set-base-uri": cmd_set_base_uri,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    config_dir = args.config or Path(os.getenv("AGORA_CONFIG_DIR") or DEFAULT_CONFIG)
    data_dir = args.data or Path(os.getenv("AGORA_DATA_DIR") or DEFAULT_DATA)
    args.data = data_dir
    admin_id = os.getenv("AGORA_ADMIN_ID") or DEFAULT_ADMIN
    if args.caller is None:
        args.caller = admin_id

    try:
        service = _make_service(config_dir, data_dir, admin_id)
    except ValueError as e:
        print(f"Startup failed: {e}", file=sys.stderr)
        return 1
    return handler(service, args)


if __name__ == "__main__":
    raise SystemExit(main())
