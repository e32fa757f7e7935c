"""
Transaction Indexer CLI

Usage:
    python -m txindexer add-chain cosmoshub rest.cosmos.directory/cosmoshub uatom
    python -m txindexer add-account main 1 cosmos1... --validator cosmosvaloper1...
    python -m txindexer run
    python -m txindexer crawl --account 1
    python -m txindexer reparse --all
"""

import argparse
import asyncio
import json
import logging
import sys

from .config import IndexerSettings
from .indexer import (
    CrawlOrchestrator,
    GlobalSyncCoordinator,
    IndexerQueryClient,
    Reparser,
    StuckSyncReaper,
)
from .locks import LockService
from .notifications import NotificationDispatcher
from .store import SQLiteTransactionStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="txindexer", description="Cosmos transaction indexer")
    parser.add_argument("--env-file", default=".env", help="dotenv file with TXINDEXER_* settings")
    parser.add_argument("--db", default=None, help="SQLite path (overrides TXINDEXER_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Periodic sync of all accounts until interrupted")
    sub.add_parser("sync", help="One sync pass over all accounts")
    sub.add_parser("stats", help="Print store statistics")

    crawl = sub.add_parser("crawl", help="Crawl one account")
    crawl.add_argument("--account", type=int, required=True)

    resync = sub.add_parser("resync", help="Delete an account's records and crawl from scratch")
    resync.add_argument("--account", type=int, required=True)

    reparse = sub.add_parser("reparse", help="Recompute normalized fields from raw envelopes")
    target = reparse.add_mutually_exclusive_group(required=True)
    target.add_argument("--account", type=int)
    target.add_argument("--all", action="store_true")

    add_chain = sub.add_parser("add-chain", help="Register a chain")
    add_chain.add_argument("name")
    add_chain.add_argument("rest_url")
    add_chain.add_argument("denom")
    add_chain.add_argument("--decimals", type=int, default=6)
    add_chain.add_argument("--price", type=float, default=0.0)

    add_account = sub.add_parser("add-account", help="Register a tracked account")
    add_account.add_argument("label")
    add_account.add_argument("chain_id", type=int)
    add_account.add_argument("address")
    add_account.add_argument("--validator", default=None)
    add_account.add_argument("--payout", default=None)
    add_account.add_argument("--notify-wallet", action="store_true")
    add_account.add_argument("--notify-validator", action="store_true")

    return parser


async def run_async(args: argparse.Namespace, settings: IndexerSettings, store: SQLiteTransactionStore) -> int:
    locks = LockService(settings.lock)
    dispatcher = NotificationDispatcher()

    async with IndexerQueryClient(settings.query) as client:
        crawler = CrawlOrchestrator(store, client, settings.crawl, locks, dispatcher=dispatcher)
        reaper = StuckSyncReaper(store, settings.reaper, locks)
        coordinator = GlobalSyncCoordinator(store, crawler, reaper, settings.coordinator, locks)

        if args.command == "run":
            await coordinator.start()
            try:
                while True:
                    await asyncio.sleep(3600)
            finally:
                await coordinator.stop()

        elif args.command == "sync":
            await coordinator.sync_all()

        elif args.command == "crawl":
            result = await crawler.crawl_account(args.account)
            print(
                f"Account {result.account_id}: {result.records_created} new records, "
                f"{len(result.filters_completed)} filters completed, "
                f"{len(result.filters_aborted)} aborted"
                + (f" (skipped: {result.skipped_reason})" if result.skipped_reason else "")
            )

        elif args.command == "resync":
            if not await coordinator.resync_account(args.account):
                print(f"Resync of account {args.account} did not run")
                return 1

        elif args.command == "reparse":
            reparser = Reparser(store, locks)
            if args.all:
                updated = await reparser.reparse_all()
            else:
                updated = await reparser.reparse_account(args.account)
            print(f"Reparsed {updated} records")

        await dispatcher.drain()
    return 0


def main(argv=None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)
    settings = IndexerSettings.from_env(args.env_file)
    if args.db:
        settings.db_path = args.db

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    store = SQLiteTransactionStore(settings.db_path)

    if args.command == "add-chain":
        chain_id = store.add_chain(args.name, args.rest_url, args.denom, args.decimals, args.price)
        print(f"Chain {args.name} registered with id {chain_id}")
        return 0

    if args.command == "add-account":
        account_id = store.add_account(
            args.label,
            args.chain_id,
            args.address,
            validator_address=args.validator,
            payout_address=args.payout,
            notify_wallet_tx=args.notify_wallet,
            notify_validator_tx=args.notify_validator
        )
        print(f"Account {args.label} registered with id {account_id}")
        return 0

    if args.command == "stats":
        print(json.dumps(store.get_stats(), indent=2))
        return 0

    try:
        return asyncio.run(run_async(args, settings, store))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
