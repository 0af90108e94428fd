"""
Command-line entry point for the deal sync engine.

Commands:
    sync      Run a batch over the partition registry
    retry     Re-drive the oldest unresolved ledger failures
    resync    Point-sync explicit loan codes for one partition
    partitions  List registered partitions
    init-db   Create missing tables

Results are printed as JSON on stdout. The exit code is non-zero only when
the process cannot start (missing configuration or an unreachable
datastore); per-partition and per-deal failures are reported in the output.
"""

import argparse
import asyncio
import json
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any

import structlog

from .clients import PostgresClient, SourceClient
from .config import SyncConfig, get_config
from .errors import DatastoreError
from .ledger import FailureLedger
from .logging import configure_logging
from .pipeline.fetcher import RangeFetcher
from .pipeline.processor import DealProcessor
from .pipeline.reconciler import DealReconciler
from .pipeline.retry import FailureRetrier
from .pipeline.scheduler import PartitionScheduler
from .repository import PartitionRepository

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_UNAVAILABLE = 1
EXIT_CONFIG = 2


@dataclass
class Engine:
    """Wired components for one process."""

    postgres: PostgresClient
    source: SourceClient
    repository: PartitionRepository
    scheduler: PartitionScheduler
    retrier: FailureRetrier


@asynccontextmanager
async def open_engine(config: SyncConfig) -> AsyncIterator[Engine]:
    """Connect to the datastore and wire the pipeline; closes both on exit."""
    postgres = PostgresClient(config.DATABASE_URL)
    await postgres.connect()
    source = SourceClient(config)
    try:
        await postgres.wait_until_ready()

        repository = PartitionRepository(postgres)
        ledger = FailureLedger(postgres)
        processor = DealProcessor(DealReconciler(postgres), ledger)
        yield Engine(
            postgres=postgres,
            source=source,
            repository=repository,
            scheduler=PartitionScheduler(config, RangeFetcher(source, config), processor, repository),
            retrier=FailureRetrier(source, processor, ledger, repository, config),
        )
    finally:
        await source.close()
        await postgres.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='deal-sync',
        description='Sync mortgage deals from the source API into the datastore',
    )
    parser.add_argument('--log-level', default=None, help='Override DEAL_SYNC_LOG_LEVEL')
    parser.add_argument('--json-logs', action='store_true', help='Emit JSON log lines')
    commands = parser.add_subparsers(dest='command', required=True)

    sync = commands.add_parser('sync', help='Run a batch over the partition registry')
    sync.add_argument('--partition', default=None, help="Partition id, name substring, or 'all'")
    sync.add_argument('--limit', type=int, default=None, help='Run at most this many partitions')
    sync.add_argument('--resume-from', default=None, help='Skip partitions sorted before this name or id')
    sync.add_argument('--full-sync', action='store_true', help='Ignore the incremental watermark')
    sync.add_argument('--dry-run', action='store_true', help='Fetch and transform only')
    sync.add_argument('--start', type=date.fromisoformat, default=None, help='Start date (YYYY-MM-DD)')
    sync.add_argument('--end', type=date.fromisoformat, default=None, help='End date (YYYY-MM-DD)')
    sync.add_argument('--timeout', type=float, default=None, help='Batch wall-clock limit in seconds')

    retry = commands.add_parser('retry', help='Re-drive unresolved ledger failures')
    retry.add_argument('--partition', default=None, help='Only failures recorded for this partition id')
    retry.add_argument('--limit', type=int, default=None, help='Max entries (default DEAL_SYNC_RETRY_LIMIT)')

    resync = commands.add_parser('resync', help='Point-sync explicit loan codes')
    resync.add_argument('loan_codes', nargs='+', help='Loan codes to re-fetch')
    resync.add_argument('--partition', required=True, help='Owning partition id')

    partitions = commands.add_parser('partitions', help='List registered partitions')
    partitions.add_argument('--all', action='store_true', help='Include inactive partitions')

    commands.add_parser('init-db', help='Create missing tables')
    return parser


async def run_command(args: argparse.Namespace, engine: Engine) -> Any:
    """Execute one parsed command and return its JSON-serializable result."""
    if args.command == 'sync':
        outcomes = await engine.scheduler.run_batch(
            start=args.start,
            end=args.end,
            full_sync=args.full_sync,
            resume_from=args.resume_from,
            partition_filter=args.partition,
            limit=args.limit,
            dry_run=args.dry_run,
            timeout_seconds=args.timeout,
        )
        return [outcome.to_dict() for outcome in outcomes]

    if args.command == 'retry':
        result = await engine.retrier.retry_unresolved(partition_id=args.partition, limit=args.limit)
        return result.to_dict()

    if args.command == 'resync':
        result = await engine.retrier.resync_loan_codes(args.partition, args.loan_codes)
        return result.to_dict()

    if args.command == 'partitions':
        partitions = await engine.repository.list_partitions(active_only=not args.all)
        return [p.model_dump(exclude={'api_key'}, mode='json') for p in partitions]

    if args.command == 'init-db':
        await engine.postgres.create_schema()
        return {'created': True}

    raise ValueError(f'Unknown command: {args.command}')


async def _main(args: argparse.Namespace, config: SyncConfig) -> int:
    try:
        async with open_engine(config) as engine:
            result = await run_command(args, engine)
    except DatastoreError as exc:
        logger.error('cli.datastore_unavailable', error=exc.message)
        return EXIT_UNAVAILABLE

    print(json.dumps(result, indent=2, default=str))
    return EXIT_OK


def main(argv: Sequence[str] | None = None, config: SyncConfig | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = config or get_config()
    configure_logging(json_output=args.json_logs or None, log_level=args.log_level)

    missing = config.validate_required()
    if missing:
        logger.error('cli.missing_config', missing=missing)
        return EXIT_CONFIG

    return asyncio.run(_main(args, config))


if __name__ == '__main__':
    sys.exit(main())
