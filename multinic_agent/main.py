"""multinic agent - node-local network configuration agent.

Runs on every node and periodically:
- fetches the node's desired interfaces from the control-plane database
- writes them as a netplan document (with a backup of the previous one)
- validates and applies the configuration on the host
- reports the outcome back to the database

Usage:
    python -m multinic_agent --config /etc/multinic/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import socket
import sys

from multinic_agent.config import Settings, load_settings
from multinic_agent.context import AgentContext
from multinic_agent.db import InterfaceRepository
from multinic_agent.errors import ConfigError, MultinicError, RepositoryError
from multinic_agent.logging_config import setup_agent_logging
from multinic_agent.reconcile import ReconciliationLoop, build_reconciler
from multinic_agent.version import __version__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="multinic-agent",
        description="Keep this node's netplan configuration in sync with the control plane",
    )
    parser.add_argument("-c", "--config", default=None, help="YAML configuration file")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation cycle and exit",
    )
    parser.add_argument(
        "--list-interfaces",
        nargs="*",
        metavar="NODE",
        default=None,
        help="Print the desired interfaces for the given nodes (default: this node) and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _log_settings(logger: logging.Logger, settings: Settings) -> None:
    logger.info(
        "Configuration loaded",
        extra={
            "db_host": settings.database.host,
            "db_port": settings.database.port,
            "db_name": settings.database.database,
            "node_name": settings.agent.node_name,
            "check_interval": settings.agent.check_interval,
            "netplan_dir": settings.netplan.config_path,
            "backup_dir": settings.netplan.backup_path,
            "dry_run": settings.netplan.dry_run,
            "log_level": settings.logging.level,
        },
    )


def list_interfaces(repository: InterfaceRepository, nodes: list[str]) -> int:
    """Print the desired interfaces of each node; non-zero if a query failed."""
    status = 0
    for node_name in nodes:
        print(f"=== Interfaces for {node_name} ===")
        try:
            records = repository.fetch(node_name)
        except RepositoryError as e:
            print(f"  error: {e}", file=sys.stderr)
            status = 1
            continue
        if not records:
            print("  (none)")
        for record in records:
            state = "applied" if record.last_applied_success else "pending"
            print(f"  {record.port_id}: {record.mac_address} {record.cidr} [{state}]")
            print(f"    subnet: {record.subnet_name}, network id: {record.network_id}")
    return status


async def serve(context: AgentContext, loop_runner: ReconciliationLoop) -> None:
    """Run the reconciliation loop until SIGINT or SIGTERM."""
    logger = context.logger
    stop = asyncio.Event()
    event_loop = asyncio.get_running_loop()

    def _request_stop(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        event_loop.add_signal_handler(sig, _request_stop, sig)

    loop_task = asyncio.create_task(loop_runner.run(stop), name="reconciliation-loop")
    stop_task = asyncio.create_task(stop.wait(), name="stop-signal")
    try:
        await asyncio.wait({loop_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        stop.set()
        logger.info("Shutting down agent...")

        grace = context.settings.agent.shutdown_grace
        done, _ = await asyncio.wait({loop_task}, timeout=grace)
        if not done:
            logger.warning(f"Reconciliation loop still busy after {grace}s, cancelling")
            loop_task.cancel()
        await asyncio.gather(loop_task, return_exceptions=True)
    finally:
        stop_task.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            event_loop.remove_signal_handler(sig)

    logger.info("Agent shutdown complete")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    try:
        logger = setup_agent_logging(
            settings.logging, node_name=settings.agent.node_name or socket.gethostname()
        )
    except OSError as e:
        print(f"Failed to initialize logging: {e}", file=sys.stderr)
        return 1

    context = AgentContext(settings=settings, logger=logger)
    _log_settings(logger, settings)
    logger.info(f"Starting multinic agent {__version__}")
    if context.simulate:
        logger.info("Running in DRY RUN mode - netplan files will not be written or applied")

    repository = InterfaceRepository.from_settings(context)
    try:
        try:
            repository.wait_until_ready(settings.agent.retry_count, settings.agent.retry_interval)
        except RepositoryError as e:
            logger.critical(f"Failed to connect to database: {e}")
            return 1

        reconciler = build_reconciler(context, repository)
        if args.list_interfaces is not None:
            nodes = args.list_interfaces or [reconciler.resolve_node_name()]
            return list_interfaces(repository, nodes)

        if args.once:
            try:
                result = reconciler.run_cycle()
            except MultinicError as e:
                logger.error(f"Reconciliation failed: {e}")
                return 1
            logger.info(f"Reconciliation finished: {result}")
            return 0

        asyncio.run(serve(context, ReconciliationLoop(context, reconciler)))
        return 0
    finally:
        repository.close()


if __name__ == "__main__":
    sys.exit(main())
