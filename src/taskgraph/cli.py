"""taskgraph CLI — build, tail and query the projected task/dispute state.

Usage:
    python -m taskgraph.cli status
    python -m taskgraph.cli replay --events archive.jsonl
    python -m taskgraph.cli tail --max-polls 10
    python -m taskgraph.cli tasks --kind bidding --status Open --first 20
    python -m taskgraph.cli task bidding 1
    python -m taskgraph.cli disputes --status Filed
    python -m taskgraph.cli dispute 7
    python -m taskgraph.cli user 0xabc...
    python -m taskgraph.cli check-invariants

Contract addresses, data directory and RPC endpoint come from TASKGRAPH_*
environment variables (see taskgraph.config); --contract and --data-dir
override them.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable

from taskgraph.config import IndexerConfig, parse_contract
from taskgraph.errors import StoreIOError
from taskgraph.invariants import check_store
from taskgraph.logs import configure_logging
from taskgraph.models.dispute import DisputeStatus
from taskgraph.models.events import ChainEvent, ContractKind
from taskgraph.models.task import TaskKind, TaskStatus
from taskgraph.persistence.entity_store import EntityStore
from taskgraph.persistence.event_log import EventLog
from taskgraph.query import DEFAULT_PAGE_SIZE, OrderDirection, QueryFacade
from taskgraph.router import EventRouter
from taskgraph.runner import ProjectionRunner

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _load_config(args: argparse.Namespace) -> IndexerConfig:
    config = IndexerConfig.from_env(args.env_file)
    contracts = dict(config.contracts)
    for entry in args.contract or []:
        address, kind = parse_contract(entry)
        contracts[address] = kind
    overrides: dict[str, Any] = {"contracts": contracts}
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    return dataclasses.replace(config, **overrides)


def _archive(event_log: EventLog, events: Iterable[ChainEvent]) -> int:
    """Append events not yet archived; return how many were new."""
    added = 0
    for event in events:
        if not event_log.contains(event.event_id):
            event_log.append(event)
            added += 1
    return added


# ----------------------------------------------------------------------
# Indexing commands
# ----------------------------------------------------------------------

def cmd_status(args: argparse.Namespace, config: IndexerConfig) -> int:
    store = EntityStore(storage_path=config.snapshot_path)
    event_log = EventLog(storage_path=config.event_log_path)
    last = event_log.last_event
    _print_json({
        "data_dir": str(config.data_dir),
        "contracts": {address: kind.value for address, kind in config.contracts.items()},
        "entities": store.counts(),
        "checkpoints": {
            stream: list(position) for stream, position in store.checkpoints().items()
        },
        "archived_events": event_log.count,
        "last_archived_event": last.event_id if last is not None else None,
    })
    return 0


def cmd_replay(args: argparse.Namespace, config: IndexerConfig) -> int:
    """Project an event archive into the snapshot."""
    if not config.contracts:
        print("Failed: no contracts configured", file=sys.stderr)
        return 1
    source: Path = args.events or config.event_log_path
    if not source.exists():
        print(f"Failed: event file not found: {source}", file=sys.stderr)
        return 1

    events = list(EventLog(storage_path=source))
    if args.fresh and config.snapshot_path.exists():
        logger.info("Discarding snapshot %s for a fresh rebuild", config.snapshot_path)
        config.snapshot_path.unlink()
    store = EntityStore(storage_path=config.snapshot_path)
    router = EventRouter(store, config.contracts)
    stats = router.replay(events)
    store.flush()

    if args.events is not None:
        _archive(EventLog(storage_path=config.event_log_path), events)

    _print_json(dataclasses.asdict(stats))
    return 0


def cmd_tail(args: argparse.Namespace, config: IndexerConfig) -> int:
    """Follow the chain, archiving and projecting confirmed logs."""
    from web3 import Web3, HTTPProvider
    from taskgraph.chain.log_source import Web3LogSource

    if not config.rpc_url:
        print("Failed: TASKGRAPH_RPC_URL is not set", file=sys.stderr)
        return 1
    if not config.contracts:
        print("Failed: no contracts configured", file=sys.stderr)
        return 1

    store = EntityStore(storage_path=config.snapshot_path)
    event_log = EventLog(storage_path=config.event_log_path)
    router = EventRouter(store, config.contracts)
    source = Web3LogSource(
        Web3(HTTPProvider(config.rpc_url)),
        config.contracts,
        confirmations=config.confirmations,
        batch_size=config.batch_size,
        poll_interval=config.poll_interval,
    )

    # Resume at the block of the least advanced stream; events already
    # behind a stream's checkpoint are reported as already applied.
    checkpoints = store.checkpoints()
    positions = [checkpoints.get(address) for address in config.contracts]
    if any(position is None for position in positions):
        start_block = config.start_block
    else:
        start_block = min(position[0] for position in positions)
    logger.info("Tailing %d contracts from block %d", len(config.contracts), start_block)

    runner = ProjectionRunner(router)
    runner.start()
    try:
        for batch in source.tail(start_block, max_polls=args.max_polls):
            _archive(event_log, batch)
            runner.submit_all(batch)
            runner.drain()
    finally:
        runner.stop()
    _print_json(dataclasses.asdict(runner.stats))
    return 0


def cmd_check_invariants(args: argparse.Namespace, config: IndexerConfig) -> int:
    store = EntityStore(storage_path=config.snapshot_path)
    errors = check_store(store)
    if errors:
        print("Invariant check failed:", file=sys.stderr)
        for err in errors:
            print(f"- {err}", file=sys.stderr)
        return 1
    print("Invariant checks passed.")
    return 0


# ----------------------------------------------------------------------
# Query commands
# ----------------------------------------------------------------------

def _query(config: IndexerConfig) -> QueryFacade:
    return QueryFacade(EntityStore(storage_path=config.snapshot_path))


def _page_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "first": args.first,
        "skip": args.skip,
        "order_by": args.order_by,
        "order_direction": args.order_direction,
    }


def cmd_tasks(args: argparse.Namespace, config: IndexerConfig) -> int:
    tasks = _query(config).list_tasks(
        kind=args.kind,
        status=args.status,
        creator=args.creator,
        worker=args.worker,
        **_page_args(args),
    )
    _print_json([task.to_dict() for task in tasks])
    return 0


def cmd_task(args: argparse.Namespace, config: IndexerConfig) -> int:
    query = _query(config)
    task = query.get_task(args.kind, args.task_id)
    if task is None:
        print(f"Task not found: {args.kind}:{args.task_id}", file=sys.stderr)
        return 1
    result = task.to_dict()
    if task.kind == TaskKind.BIDDING:
        result["bids"] = [bid.to_dict() for bid in query.bids_for_task(task.task_id)]
    elif task.kind == TaskKind.MILESTONE:
        result["milestones"] = [
            m.to_dict() for m in query.milestones_for_task(task.task_id)
        ]
    _print_json(result)
    return 0


def cmd_disputes(args: argparse.Namespace, config: IndexerConfig) -> int:
    disputes = _query(config).list_disputes(
        status=args.status,
        worker=args.worker,
        task_creator=args.creator,
        **_page_args(args),
    )
    _print_json([dispute.to_dict() for dispute in disputes])
    return 0


def cmd_dispute(args: argparse.Namespace, config: IndexerConfig) -> int:
    query = _query(config)
    dispute = query.get_dispute(args.dispute_id)
    if dispute is None:
        print(f"Dispute not found: {args.dispute_id}", file=sys.stderr)
        return 1
    result = dispute.to_dict()
    result["votes"] = [vote.to_dict() for vote in query.votes_for_dispute(args.dispute_id)]
    _print_json(result)
    return 0


def cmd_user(args: argparse.Namespace, config: IndexerConfig) -> int:
    _print_json(_query(config).user_work_summary(args.address).to_dict())
    return 0


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------

def _add_page_arguments(parser: argparse.ArgumentParser, orders: list[str]) -> None:
    parser.add_argument("--first", type=int, default=DEFAULT_PAGE_SIZE,
                        help=f"Page size (default: {DEFAULT_PAGE_SIZE})")
    parser.add_argument("--skip", type=int, default=0, help="Rows to skip (default: 0)")
    parser.add_argument("--order-by", default="created_at", choices=orders)
    parser.add_argument(
        "--order-direction",
        default=OrderDirection.DESC.value,
        choices=[d.value for d in OrderDirection],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskgraph",
        description="taskgraph — task-escrow event projection CLI",
    )
    parser.add_argument("--env-file", type=Path, default=None,
                        help="Path to a .env file (default: search from cwd)")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Override TASKGRAPH_DATA_DIR")
    parser.add_argument(
        "--contract", action="append", metavar="ADDRESS=KIND",
        help="Register a contract (repeatable); KIND is one of "
             + ", ".join(k.value for k in ContractKind),
    )
    parser.add_argument("--log-level", default=None, help="Override TASKGRAPH_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show entity counts and stream checkpoints")

    p_replay = sub.add_parser("replay", help="Project an event archive")
    p_replay.add_argument("--events", type=Path, default=None,
                          help="JSONL event file (default: the data dir archive)")
    p_replay.add_argument("--fresh", action="store_true",
                          help="Discard the existing snapshot and rebuild")

    p_tail = sub.add_parser("tail", help="Follow the chain and project new logs")
    p_tail.add_argument("--max-polls", type=int, default=None,
                        help="Stop after this many polls (default: run forever)")

    p_tasks = sub.add_parser("tasks", help="List tasks")
    p_tasks.add_argument("--kind", choices=[k.value for k in TaskKind])
    p_tasks.add_argument("--status", choices=[s.value for s in TaskStatus])
    p_tasks.add_argument("--creator", help="Creator address")
    p_tasks.add_argument("--worker", help="Worker address")
    _add_page_arguments(p_tasks, ["created_at", "updated_at"])

    p_task = sub.add_parser("task", help="Show one task with its bids or milestones")
    p_task.add_argument("kind", choices=[k.value for k in TaskKind])
    p_task.add_argument("task_id")

    p_disputes = sub.add_parser("disputes", help="List disputes")
    p_disputes.add_argument("--status", choices=[s.value for s in DisputeStatus])
    p_disputes.add_argument("--worker", help="Worker address")
    p_disputes.add_argument("--creator", help="Task creator address")
    _add_page_arguments(p_disputes, ["created_at"])

    p_dispute = sub.add_parser("dispute", help="Show one dispute with its votes")
    p_dispute.add_argument("dispute_id")

    p_user = sub.add_parser("user", help="Show a user's work summary")
    p_user.add_argument("address")

    sub.add_parser("check-invariants", help="Run consistency checks on the snapshot")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "replay": cmd_replay,
        "tail": cmd_tail,
        "tasks": cmd_tasks,
        "task": cmd_task,
        "disputes": cmd_disputes,
        "dispute": cmd_dispute,
        "user": cmd_user,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        config = _load_config(args)
        configure_logging(args.log_level or config.log_level)
        return handler(args, config)
    except (StoreIOError, ValueError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
