"""Transparency anchor CLI: the command-line interface for the anchoring pipeline.

Usage:
    python -m transparency.cli run --target local-log
    python -m transparency.cli create
    python -m transparency.cli publish --id 3 --target public-log
    python -m transparency.cli confirm --id 3 --target notary-1 --ref "notary://receipt/77"
    python -m transparency.cli history --limit 10 --status ANCHORED
    python -m transparency.cli verify 2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824
    python -m transparency.cli add-target --id public-log --type PUBLIC_LOG --config '{"url": "https://log.example"}'
"""

from __future__ import annotations

import argparse
import asyncio
import inspect
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

from transparency.config import AnchorSettings
from transparency.errors import AnchorError, ValidationError
from transparency.logging_config import setup_logging
from transparency.models.anchor import AnchorStatus, TargetType
from transparency.service import AnchorService, ServiceResult, open_service

logger = logging.getLogger(__name__)


def _invoke(args: argparse.Namespace, operation: Callable[[AnchorService], Any]) -> ServiceResult:
    """Open a service for one command, run the operation, release everything."""
    async def go() -> ServiceResult:
        async with open_service(args.settings) as service:
            result = operation(service)
            if inspect.isawaitable(result):
                result = await result
            return result

    return asyncio.run(go())


def _parse_json(raw: str | None, option: str) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{option} is not valid JSON: {exc}") from None
    if not isinstance(value, dict):
        raise ValidationError(f"{option} must be a JSON object")
    return value


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(result: ServiceResult) -> int:
    code = result.error_code.value if result.error_code else "ERROR"
    print(f"Failed ({code}): {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _print_anchor_line(anchor: dict[str, Any]) -> None:
    print(
        f"Anchor {anchor['id']} [{anchor['status']}] "
        f"combined={anchor['combined_root_hash']} "
        f"issuers={anchor['issuer_count']} documents={anchor['wcaf_document_count']}"
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Create an anchor and publish it to the chosen target."""
    target = args.target if args.target is not None else args.settings.auto_target
    result = _invoke(args, lambda s: s.run(target_id=target))
    anchor = result.data.get("anchor")
    if anchor is not None:
        _print_anchor_line(anchor)
    if not result.success:
        return _fail(result)
    if anchor["anchor_ref"]:
        print(f"Published to {anchor['anchor_target']}: {anchor['anchor_ref']}")
    return 0


def cmd_create(args: argparse.Namespace) -> int:
    result = _invoke(args, lambda s: s.create_anchor())
    if not result.success:
        return _fail(result)
    _print_anchor_line(result.data["anchor"])
    return 0


def cmd_publish(args: argparse.Namespace) -> int:
    result = _invoke(
        args, lambda s: s.publish_anchor(args.id, args.target, args.idempotency_key),
    )
    if not result.success:
        return _fail(result)
    anchor = result.data["anchor"]
    if result.data.get("already_anchored"):
        print(f"Anchor {anchor['id']} already anchored at {anchor['anchor_target']}: {anchor['anchor_ref']}")
    else:
        print(f"Published anchor {anchor['id']} to {anchor['anchor_target']}: {anchor['anchor_ref']}")
    return 0


def cmd_confirm(args: argparse.Namespace) -> int:
    proof = _parse_json(args.proof, "--proof")
    result = _invoke(args, lambda s: s.confirm_anchor(args.id, args.target, args.ref, proof))
    if not result.success:
        return _fail(result)
    anchor = result.data["anchor"]
    print(f"Confirmed anchor {anchor['id']} at {anchor['anchor_target']}: {anchor['anchor_ref']}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    result = _invoke(args, lambda s: s.get_anchor(args.id))
    if not result.success:
        return _fail(result)
    _print_json(result.data["anchor"])
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    result = _invoke(
        args, lambda s: s.anchor_history(limit=args.limit, offset=args.offset, status=args.status),
    )
    if not result.success:
        return _fail(result)
    for anchor in result.data["anchors"]:
        _print_anchor_line(anchor)
    print(f"{result.data['count']} anchor(s)")
    return 0


def cmd_latest(args: argparse.Namespace) -> int:
    result = _invoke(args, lambda s: s.latest_anchor())
    if not result.success:
        return _fail(result)
    _print_json(result.data["anchor"])
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Exit 0 only when the digest is anchored."""
    result = _invoke(args, lambda s: s.verify_hash(args.hash))
    if not result.success:
        return _fail(result)
    _print_json(result.data)
    return 0 if result.data["verified"] else 1


def cmd_targets(args: argparse.Namespace) -> int:
    result = _invoke(args, lambda s: s.list_targets())
    if not result.success:
        return _fail(result)
    for target in result.data["targets"]:
        print(f"{target['target_id']}\t{target['target_type']}\t{json.dumps(target['config'], sort_keys=True)}")
    return 0


def cmd_add_target(args: argparse.Namespace) -> int:
    config = _parse_json(args.config, "--config")
    result = _invoke(
        args, lambda s: s.register_target(args.id, args.type, config, enabled=not args.disabled),
    )
    if not result.success:
        return _fail(result)
    target = result.data["target"]
    state = "enabled" if target["enabled"] else "disabled"
    print(f"Saved target {target['target_id']} ({target['target_type']}, {state})")
    return 0


def cmd_check_integrity(args: argparse.Namespace) -> int:
    result = _invoke(args, lambda s: s.check_integrity())
    if not result.success:
        print(f"Mismatched anchors: {result.data.get('mismatched')}", file=sys.stderr)
        return _fail(result)
    print(f"Checked {result.data['checked']} anchor(s): all combined roots recompute")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transparency",
        description="Transparency anchoring: commit registry and chain state to external logs",
    )
    parser.add_argument("--db", type=Path, help="SQLite database path (default: ANCHOR_DB_PATH)")
    parser.add_argument("--env-file", type=Path, help="Load environment variables from this file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="command")

    # run
    p_run = sub.add_parser("run", help="Create an anchor and publish it")
    p_run.add_argument("--target", help="Target ID (default: ANCHOR_AUTO_TARGET)")

    # create
    sub.add_parser("create", help="Create a PENDING anchor without publishing")

    # publish
    p_pub = sub.add_parser("publish", help="Publish an existing PENDING anchor")
    p_pub.add_argument("--id", type=int, required=True, help="Anchor ID")
    p_pub.add_argument("--target", required=True, help="Target ID")
    p_pub.add_argument("--idempotency-key", help="Override the derived idempotency key")

    # confirm
    p_conf = sub.add_parser("confirm", help="Record a publish made outside this tool")
    p_conf.add_argument("--id", type=int, required=True, help="Anchor ID")
    p_conf.add_argument("--target", required=True, help="Target ID")
    p_conf.add_argument("--ref", required=True, help="Reference returned by the target")
    p_conf.add_argument("--proof", help="Proof as a JSON object")

    # show
    p_show = sub.add_parser("show", help="Show one anchor")
    p_show.add_argument("--id", type=int, required=True, help="Anchor ID")

    # history
    p_hist = sub.add_parser("history", help="List anchors, newest first")
    p_hist.add_argument("--limit", type=int, default=100, help="Page size (default: 100)")
    p_hist.add_argument("--offset", type=int, default=0, help="Rows to skip (default: 0)")
    p_hist.add_argument("--status", choices=[s.value for s in AnchorStatus], help="Filter by status")

    # latest
    sub.add_parser("latest", help="Show the most recent anchor")

    # verify
    p_ver = sub.add_parser("verify", help="Check whether a combined root hash was anchored")
    p_ver.add_argument("hash", help="Combined root hash (hex)")

    # targets
    sub.add_parser("targets", help="List enabled publish targets")

    # add-target
    p_add = sub.add_parser("add-target", help="Add or replace a publish target")
    p_add.add_argument("--id", required=True, help="Target ID")
    p_add.add_argument("--type", required=True, choices=[t.value for t in TargetType], help="Target type")
    p_add.add_argument("--config", help="Target configuration as a JSON object")
    p_add.add_argument("--disabled", action="store_true", help="Store the target disabled")

    # check-integrity
    sub.add_parser("check-integrity", help="Recompute stored combined roots")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "run": cmd_run,
        "create": cmd_create,
        "publish": cmd_publish,
        "confirm": cmd_confirm,
        "show": cmd_show,
        "history": cmd_history,
        "latest": cmd_latest,
        "verify": cmd_verify,
        "targets": cmd_targets,
        "add-target": cmd_add_target,
        "check-integrity": cmd_check_integrity,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        settings = AnchorSettings.from_env(env_file=args.env_file)
        if args.db is not None:
            settings = replace(settings, db_path=args.db)
        setup_logging(args.log_level or settings.log_level)
        args.settings = settings
        return handler(args)
    except AnchorError as exc:
        print(f"Failed ({exc.code.value}): {exc.message}", file=sys.stderr)
        return 1
    except Exception:
        logger.exception("Unhandled error in %s", args.command)
        print("Internal error (see log for details)", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
