"""Periodic reconciliation of host network configuration.

Each cycle fetches the desired interfaces for this node, generates and
writes the netplan document, validates and applies it, then reports the
single outcome back to the repository for every interface whose recorded
flag differs.

Cycles are strictly serialized: the loop runs one cycle (in a worker thread,
since every step blocks) and only then waits out the rest of the interval,
which is counted from the start of that cycle. A failed cycle is logged and
the loop carries on; only a stop request ends it.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from typing import Callable, Sequence

from multinic_agent.context import AgentContext
from multinic_agent.db import InterfaceRepository
from multinic_agent.errors import NetplanError, ReconcileError, RepositoryError
from multinic_agent.models import InterfaceRecord
from multinic_agent.network.apply import ApplyResult, NetplanApplier, NetplanValidator
from multinic_agent.network.cmd import CommandRunner
from multinic_agent.network.environment import EnvironmentProbe, HostEnvironment
from multinic_agent.network.netplan import NetplanGenerator, NetplanWriter


@dataclass(frozen=True)
class CycleResult:
    """Summary of one reconciliation cycle."""

    node_name: str
    interface_count: int
    success: bool | None = None  # None when there was nothing to apply
    apply_method: str | None = None
    reported: tuple[str, ...] = ()
    report_failures: tuple[str, ...] = ()


class Reconciler:
    """Runs a single fetch -> generate -> write -> apply -> report cycle."""

    def __init__(
        self,
        context: AgentContext,
        repository: InterfaceRepository,
        generator: NetplanGenerator,
        writer: NetplanWriter,
        applier: NetplanApplier,
        hostname: Callable[[], str] = socket.gethostname,
    ):
        self._context = context
        self._repository = repository
        self._generator = generator
        self._writer = writer
        self._applier = applier
        self._hostname = hostname
        self._logger = context.get_logger("reconcile")

    def resolve_node_name(self) -> str:
        """Configured node name, or the local host name when unset."""
        node_name = self._context.settings.agent.node_name.strip()
        if node_name:
            return node_name
        try:
            return self._hostname()
        except OSError as e:
            raise ReconcileError(f"Cannot determine node name: {e}") from e

    def run_cycle(self) -> CycleResult:
        """Run one reconciliation cycle.

        Raises:
            RepositoryError: If the desired interfaces cannot be fetched
            ReconcileError: If writing, validating or regenerating the
                configuration failed (the failure is reported first)
        """
        node_name = self.resolve_node_name()
        self._logger.info(f"Processing network interfaces for {node_name}")

        records = self._repository.fetch(node_name)
        if not records:
            self._logger.warning(f"No interfaces found for node {node_name}")
            return CycleResult(node_name=node_name, interface_count=0)

        self._logger.info(f"Found {len(records)} interfaces for {node_name}")
        for record in records:
            self._logger.debug(
                "Interface details",
                extra={
                    "port_id": record.port_id,
                    "subnet_name": record.subnet_name,
                    "cidr": record.cidr,
                    "mac_address": record.mac_address,
                    "network_id": record.network_id,
                    "netplan_success": record.last_applied_success,
                },
            )

        failure: NetplanError | None = None
        apply_result: ApplyResult | None = None
        try:
            apply_result = self.apply_configuration(node_name, records)
        except NetplanError as e:
            self._logger.error(f"Failed to process netplan configuration for {node_name}: {e}")
            failure = e

        success = failure is None
        reported, report_failures = self.report_status(records, success)

        if failure is not None:
            raise ReconcileError(f"Reconciliation failed for {node_name}: {failure}") from failure

        return CycleResult(
            node_name=node_name,
            interface_count=len(records),
            success=success,
            apply_method=apply_result.method if apply_result else None,
            reported=reported,
            report_failures=report_failures,
        )

    def apply_configuration(self, node_name: str, records: Sequence[InterfaceRecord]) -> ApplyResult:
        """Generate, write, validate and apply the node's configuration."""
        document = self._generator.generate(node_name, records)
        self._writer.write(node_name, document)
        result = self._applier.apply()
        self._logger.info(f"Processed netplan configuration for {node_name} ({result.method})")
        return result

    def report_status(
        self, records: Sequence[InterfaceRecord], success: bool
    ) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Report ``success`` for every record whose recorded flag differs.

        Returns:
            (port ids updated, port ids whose update failed)
        """
        reported: list[str] = []
        failed: list[str] = []
        for record in records:
            if record.last_applied_success == success:
                continue
            try:
                self._repository.report(record.port_id, success)
            except RepositoryError as e:
                self._logger.error(
                    f"Failed to update netplan status: {e}",
                    extra={"port_id": record.port_id, "success": success},
                )
                failed.append(record.port_id)
                continue
            self._logger.info(
                "Updated netplan status",
                extra={"port_id": record.port_id, "success": success},
            )
            reported.append(record.port_id)
        return tuple(reported), tuple(failed)


def build_reconciler(
    context: AgentContext,
    repository: InterfaceRepository,
    runner: CommandRunner | None = None,
    environment: EnvironmentProbe | None = None,
) -> Reconciler:
    """Wire a Reconciler from its components."""
    runner = runner or CommandRunner(context.get_logger("cmd"))
    environment = environment or HostEnvironment(logger=context.get_logger("environment"))
    validator = NetplanValidator(context, runner)
    return Reconciler(
        context,
        repository,
        NetplanGenerator(context),
        NetplanWriter(context),
        NetplanApplier(context, runner, environment, validator=validator),
    )


class ReconciliationLoop:
    """Drive the reconciler on a fixed interval until asked to stop.

    Usage:
        loop = ReconciliationLoop(context, reconciler)
        task = asyncio.create_task(loop.run(stop_event))
        ...
        stop_event.set()
    """

    def __init__(self, context: AgentContext, reconciler: Reconciler):
        self._reconciler = reconciler
        self._interval = context.settings.agent.check_interval
        self._logger = context.get_logger("reconcile.loop")
        self.cycles = 0
        self.failures = 0

    async def run_once(self) -> CycleResult | None:
        """Run one cycle in a worker thread; errors are logged, not raised."""
        self.cycles += 1
        try:
            return await asyncio.to_thread(self._reconciler.run_cycle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self._logger.error(f"Failed to process network interfaces: {e}", exc_info=True)
            return None

    async def run(self, stop: asyncio.Event) -> None:
        """Run an initial cycle, then one per interval until ``stop`` is set.

        The interval is a fixed period measured from the start of each
        cycle; a cycle that overruns it is followed by the next one at once.
        """
        self._logger.info(f"Reconciliation loop started (interval: {self._interval}s)")
        event_loop = asyncio.get_running_loop()
        while True:
            started = event_loop.time()
            await self.run_once()
            if stop.is_set():
                break
            remaining = max(0.0, self._interval - (event_loop.time() - started))
            try:
                await asyncio.wait_for(stop.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            break
        self._logger.info("Reconciliation loop stopped")
