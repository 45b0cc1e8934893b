"""
Command-line entry point.

Usage:
    python -m tally_order_sync test-connection
    python -m tally_order_sync poll
    python -m tally_order_sync watch --interval 5
    python -m tally_order_sync pending --from-date 2025-04-01
    python -m tally_order_sync show 1234
    python -m tally_order_sync approve 1234 --approver "Asha"
"""
from __future__ import annotations
import asyncio
import sys
from datetime import date
from loguru import logger

from .authorizer import VoucherAuthorizer
from .client import TallyClient
from .config import TallyOrderConfig
from .errors import TallyError
from .outcomes import PollStatus
from .poller import BackgroundPoller
from .watermark import JsonFileWatermarkStore


def configure_logging(config: TallyOrderConfig, verbose: bool = False):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else config.log_level)
    if config.log_file:
        logger.add(config.log_file, level="DEBUG", rotation="10 MB", retention=5)


async def _test_connection(config: TallyOrderConfig) -> int:
    with TallyClient(config) as client:
        result = await client.test_connection()
    print(f"Connection test: {result}")
    return 0 if result["status"] == "connected" else 1


async def _poll(config: TallyOrderConfig) -> int:
    poller = BackgroundPoller(config, JsonFileWatermarkStore(config.watermark_file))
    try:
        result = await poller.poll(config.selected_company())
    finally:
        poller.close()
    print(f"{result.status.value}: {result.new_count} new, last MasterID {result.watermark.last_master_id}")
    return 1 if result.status == PollStatus.FAILED else 0


async def _watch(config: TallyOrderConfig, interval: float | None) -> int:
    poller = BackgroundPoller(config, JsonFileWatermarkStore(config.watermark_file))
    if interval:
        poller.set_interval(interval)
    try:
        await poller.run([config.selected_company()])
    finally:
        poller.close()
    return 0


async def _pending(config: TallyOrderConfig, from_date: date | None, to_date: date | None) -> int:
    with TallyClient(config) as client:
        rows = await VoucherAuthorizer(client).load_pending(from_date, to_date)
    print(f"{'MasterID':>9}  {'Date':<10} {'Voucher':<16} {'Type':<14} {'Customer':<30} {'Amount':>12}")
    for v in rows:
        print(f"{v.master_id:>9}  {v.date:<10} {v.invoice_no:<16} {v.voucher_type:<14} {v.customer[:30]:<30} {v.amount:>12.2f}")
    print(f"\n{len(rows)} optional voucher(s)")
    return 0


async def _show(config: TallyOrderConfig, master_id: str) -> int:
    with TallyClient(config) as client:
        detail = await VoucherAuthorizer(client).fetch_detail(master_id)
    print(f"{detail.voucher_type} {detail.voucher_number}  {detail.date}  {detail.party}")
    if detail.narration:
        print(f"Narration: {detail.narration}")
    print("\nLedger entries:")
    for e in detail.ledger_entries:
        print(f"  {e.ledger_name:<40} Dr {e.debit:>12.2f}  Cr {e.credit:>12.2f}")
    print(f"  {'Total':<40} Dr {detail.total_debit:>12.2f}  Cr {detail.total_credit:>12.2f}")
    if detail.inventory_entries:
        print("\nItems:")
        for i in detail.inventory_entries:
            print(f"  {i.stock_item_name:<40} {i.actual_qty:>12} @ {i.rate:<14} {i.amount:>12.2f}")
    return 0


async def _approve(config: TallyOrderConfig, master_id: str, approver: str) -> int:
    with TallyClient(config) as client:
        authorizer = VoucherAuthorizer(client)
        detail = await authorizer.fetch_detail(master_id)
        outcome = await authorizer.approve(master_id, detail.date, detail.narration, approver)
    print(outcome.message)
    return 0 if outcome.approved else 1


def main(argv: list[str] | None = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(
        prog="tally_order_sync",
        description="Tally Order Sync - optional voucher checks and authorization",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")
    subparsers.add_parser("test-connection", help="Test the Tally gateway connection")
    subparsers.add_parser("poll", help="Check once for new optional vouchers")

    watch_parser = subparsers.add_parser("watch", help="Check for new optional vouchers on a timer")
    watch_parser.add_argument("--interval", type=float, help="Minutes between checks")

    pending_parser = subparsers.add_parser("pending", help="List optional vouchers")
    pending_parser.add_argument("--from-date", type=lambda s: date.fromisoformat(s))
    pending_parser.add_argument("--to-date", type=lambda s: date.fromisoformat(s))

    show_parser = subparsers.add_parser("show", help="Show one voucher")
    show_parser.add_argument("master_id", help="Voucher MasterID")

    approve_parser = subparsers.add_parser("approve", help="Approve an optional voucher")
    approve_parser.add_argument("master_id", help="Voucher MasterID")
    approve_parser.add_argument("--approver", required=True, help="Name recorded in the narration")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    config = TallyOrderConfig.from_env()
    configure_logging(config, args.verbose)

    problems = config.validate()
    if problems:
        for p in problems:
            logger.error(f"Config: {p}")
        return 1

    try:
        if args.command == "test-connection":
            return asyncio.run(_test_connection(config))
        elif args.command == "poll":
            return asyncio.run(_poll(config))
        elif args.command == "watch":
            return asyncio.run(_watch(config, args.interval))
        elif args.command == "pending":
            return asyncio.run(_pending(config, args.from_date, args.to_date))
        elif args.command == "show":
            return asyncio.run(_show(config, args.master_id))
        elif args.command == "approve":
            return asyncio.run(_approve(config, args.master_id, args.approver))
    except TallyError as e:
        logger.error(f"Tally error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
