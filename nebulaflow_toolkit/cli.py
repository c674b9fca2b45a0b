#!/usr/bin/env python3
"""
Unified CLI for the NebulaFlow Toolkit.

Examples:
  - Reconcile the local cache with the ledger
    nebulaflow reconcile --user 0x... [--cache-dir .cache/nebulaflow] [--json]

  - Inspect or reset the local cache
    nebulaflow cache-show --user 0x...
    nebulaflow cache-clear [--user 0x...]

  - Check-in eligibility for one activity
    nebulaflow check-in-status --user 0x... --activity 0x...
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from nebulaflow_toolkit.activities.service import ActivityService, sort_entries
from nebulaflow_toolkit.commands.helpers import (
    handle_command_error,
    print_result_errors,
)
from nebulaflow_toolkit.commands.validation import (
    validate_cache_dir,
    validate_eth_address,
)
from nebulaflow_toolkit.contracts.reader import Web3LedgerReader
from nebulaflow_toolkit.data.eligibility import EligibilityService
from nebulaflow_toolkit.shared.logging import set_log_level
from nebulaflow_toolkit.storage.backends import FileBackend
from nebulaflow_toolkit.storage.record_store import LocalRecordStore
from nebulaflow_toolkit.utils.activity_utils import group_by_outcome
from nebulaflow_toolkit.utils.formatters import (
    console,
    format_eligibility,
    generate_timestamped_filename,
    print_entries,
    save_json_output,
)


def cmd_reconcile(args: argparse.Namespace) -> None:
    user = validate_eth_address(args.user, "user")
    cache_dir = validate_cache_dir(args.cache_dir)
    service = ActivityService.from_env(cache_dir=cache_dir, rpc_url=args.rpc_url)

    result = asyncio.run(service.reconcile(user))
    entries = service.snapshot(user)
    summary = service.last_summary

    if args.json:
        filename = args.output or generate_timestamped_filename("reconcile")
        save_json_output(
            {
                "success": result.success,
                "summary": summary.to_dict() if summary else None,
                "activities": [e.to_dict() for e in entries],
            },
            filename,
        )
    else:
        print_entries(entries, f"Activities for {user}")
        groups = group_by_outcome(entries)
        console.print(
            " | ".join(
                f"{bucket.value}: {len(items)}"
                for bucket, items in groups.items()
            )
        )
        if summary:
            counts = summary.to_dict()["counts"]
            console.print(
                "[dim]"
                + ", ".join(f"{name} {value}" for name, value in counts.items())
                + "[/dim]"
            )

    print_result_errors(result)
    if service.should_escalate:
        console.print(
            "[bold red]Ledger unreachable for several passes in a row[/bold red]"
        )
    if not result.success:
        sys.exit(1)


def cmd_cache_show(args: argparse.Namespace) -> None:
    user = validate_eth_address(args.user, "user") if args.user else None
    cache_dir = validate_cache_dir(args.cache_dir)
    store = LocalRecordStore(FileBackend(cache_dir), user)
    entries = sort_entries(store.get_all())

    if args.json:
        filename = args.output or generate_timestamped_filename("cache")
        save_json_output({"activities": [e.to_dict() for e in entries]}, filename)
        return
    print_entries(entries, "Cached activities")


def cmd_cache_clear(args: argparse.Namespace) -> None:
    cache_dir = validate_cache_dir(args.cache_dir)
    backend = FileBackend(cache_dir)
    if args.user:
        user = validate_eth_address(args.user, "user")
        LocalRecordStore(backend, user).clear(include_activities=False)
        console.print(f"Cleared cached participations of {user}")
    else:
        backend.clear()
        console.print(f"Cleared cache in {backend.directory}")


def cmd_check_in_status(args: argparse.Namespace) -> None:
    async def run():
        user = validate_eth_address(args.user, "user")
        activity = validate_eth_address(args.activity, "activity")

        service = EligibilityService(Web3LedgerReader())
        result = await service.get_check_in_status(activity, user)

        if not result.success:
            print_result_errors(result)
            sys.exit(1)
        if args.json:
            console.print_json(data=result.data.to_dict())
            return
        console.print(format_eligibility(result.data))

    asyncio.run(run())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nebulaflow",
        description="Unified CLI for the NebulaFlow Toolkit",
    )
    parser.add_argument(
        "--log-level", type=str, help="Override NF_LOG_LEVEL (e.g. DEBUG)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # reconcile
    p_rec = sub.add_parser(
        "reconcile", help="Validate the local cache against the ledger"
    )
    p_rec.add_argument("--user", type=str, required=True)
    p_rec.add_argument("--cache-dir", type=str, help="Cache directory")
    p_rec.add_argument("--rpc-url", type=str, help="Override NF_RPC_URL")
    p_rec.add_argument("--json", action="store_true", help="Output JSON")
    p_rec.add_argument("--output", type=str, help="Output filename")
    p_rec.set_defaults(func=cmd_reconcile)

    # cache-show
    p_show = sub.add_parser(
        "cache-show", help="Print the cached activities without the ledger"
    )
    p_show.add_argument("--user", type=str, help="Include this user's state")
    p_show.add_argument("--cache-dir", type=str, help="Cache directory")
    p_show.add_argument("--json", action="store_true", help="Output JSON")
    p_show.add_argument("--output", type=str, help="Output filename")
    p_show.set_defaults(func=cmd_cache_show)

    # cache-clear
    p_clear = sub.add_parser("cache-clear", help="Delete cached records")
    p_clear.add_argument(
        "--user", type=str, help="Only clear this user's participations"
    )
    p_clear.add_argument("--cache-dir", type=str, help="Cache directory")
    p_clear.set_defaults(func=cmd_cache_clear)

    # check-in-status
    p_cis = sub.add_parser(
        "check-in-status", help="Evaluate check-in eligibility for an activity"
    )
    p_cis.add_argument("--user", type=str, required=True)
    p_cis.add_argument(
        "--activity", type=str, required=True, help="Activity contract"
    )
    p_cis.add_argument("--json", action="store_true", help="Output JSON")
    p_cis.set_defaults(func=cmd_check_in_status)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)
    try:
        args.func(args)
    except Exception as e:
        handle_command_error(e)


if __name__ == "__main__":
    main()
