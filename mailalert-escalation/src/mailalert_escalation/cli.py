"""
Command-line interface for the escalation engine.

Lets an operator (or a cron job) run a tick, feed a notification by hand,
inspect running chains, purge test events and start the HTTP service.
"""

import argparse
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from mailalert_contracts import Notification, RunMode

from .config import EscalationSettings
from .logging_utils import configure_logging
from .service import EscalationService


def _build_service() -> EscalationService:
    return EscalationService.from_settings(EscalationSettings())


def _parse_received_at(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        raise ValueError("--received-at needs a UTC offset, e.g. 2024-03-05T09:30:00+00:00")
    return value


def cmd_tick(args):
    """Advance every chain once."""
    service = _build_service()
    try:
        report = service.run_tick()
    finally:
        service.close()
    if report is None:
        print("Run lock busy; tick skipped")
        sys.exit(2)
    print(json.dumps(report.model_dump(mode="json"), indent=2))


def cmd_ingest(args):
    """Start the chain for one notification."""
    try:
        received_at = _parse_received_at(args.received_at)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    notification = Notification(
        source_id=args.source_id,
        subject=args.subject,
        received_at=received_at,
        link=args.link,
    )
    service = _build_service()
    try:
        result = service.ingest(notification, mode=RunMode(args.mode))
    finally:
        service.close()
    if result is None:
        print("Run lock busy; ingest skipped")
        sys.exit(2)
    print(json.dumps(result.model_dump(mode="json"), indent=2))


def cmd_chains(args):
    """List persisted chains."""
    service = _build_service()
    try:
        chains = service.list_chains()
    finally:
        service.close()
    if not chains:
        print("No active chains")
        return
    for chain in chains:
        block = chain.current_block
        print(
            f"{chain.chain_id}  status={chain.status.value}  "
            f"block={chain.current_index + 1}/{len(chain.blocks)}  "
            f"next={block.start.isoformat()}  deadline={chain.deadline.isoformat()}"
        )


def cmd_purge_test(args):
    """Delete TEST-mode events."""
    service = _build_service()
    try:
        deleted = service.purge_test_events(window_days=args.days)
    finally:
        service.close()
    if deleted is None:
        print("Run lock busy; purge skipped")
        sys.exit(2)
    print(f"Deleted {deleted} test events")


def cmd_serve(args):
    """Run the HTTP service."""
    from .main import main as serve

    serve()


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point for the CLI."""
    configure_logging()
    parser = argparse.ArgumentParser(description="Mail alert escalation engine")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("tick", help="Advance every chain once")

    parser_ingest = subparsers.add_parser("ingest", help="Start the chain for a notification")
    parser_ingest.add_argument("source_id", help="Mail thread identifier")
    parser_ingest.add_argument("--subject", default="", help="Mail subject")
    parser_ingest.add_argument("--link", default=None, help="Link back to the mail")
    parser_ingest.add_argument(
        "--received-at", default=None, help="ISO-8601 arrival time with offset (default: now)"
    )
    parser_ingest.add_argument(
        "--mode", choices=[mode.value for mode in RunMode], default=RunMode.LIVE.value
    )

    subparsers.add_parser("chains", help="List active chains")

    parser_purge = subparsers.add_parser("purge-test", help="Delete TEST-mode events")
    parser_purge.add_argument("--days", type=int, default=180, help="Search window around now")

    subparsers.add_parser("serve", help="Run the HTTP service")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "tick": cmd_tick,
        "ingest": cmd_ingest,
        "chains": cmd_chains,
        "purge-test": cmd_purge_test,
        "serve": cmd_serve,
    }

    command_func = commands.get(args.command)
    if command_func:
        command_func(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
