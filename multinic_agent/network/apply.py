"""Netplan validation and apply.

The applier validates the written configuration, then tries to make the live
network match it. How it does that depends on where the agent runs:

- bare host: ``netplan apply`` directly, bounded by ``apply_timeout``
- privileged container: ``netplan apply`` inside the host namespaces (nsenter)
- unprivileged container: nothing can be applied, so apply is skipped

When the primary apply fails, an ordered fallback chain runs. Each step is a
strategy object plus a policy saying what its success and failure mean for
the cycle. Only a failed ``netplan generate`` is a hard failure; every other
step degrades to a logged warning. A regenerate-only run that could not
reload the live network is still reported as success.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from multinic_agent.context import AgentContext
from multinic_agent.errors import NetplanApplyError, NetplanValidationError
from multinic_agent.network.cmd import CommandResult, CommandRunner
from multinic_agent.network.environment import EnvironmentProbe

NETPLAN_APPLY = ("netplan", "apply")
NETPLAN_GENERATE = ("netplan", "generate")
DETACHED_APPLY = ("systemd-run", "--no-block", "netplan", "apply")
NETWORKCTL_RELOAD = ("networkctl", "reload")
RESTART_NETWORKD = ("systemctl", "restart", "systemd-networkd")


@dataclass(frozen=True)
class StrategyOutcome:
    """Result of one strategy attempt."""

    strategy: str
    ok: bool
    output: str = ""
    results: tuple[CommandResult, ...] = ()


class ApplyStrategy:
    """A single command, optionally run in the host namespaces."""

    def __init__(
        self,
        name: str,
        cmd: Sequence[str],
        host_namespace: bool = False,
        timeout: float | None = None,
    ):
        self.name = name
        self.cmd = tuple(cmd)
        self.host_namespace = host_namespace
        self.timeout = timeout

    def attempt(self, runner: CommandRunner) -> StrategyOutcome:
        result = runner.run(list(self.cmd), host_namespace=self.host_namespace, timeout=self.timeout)
        output = result.stdout.strip() if result.ok else result.describe()
        return StrategyOutcome(self.name, result.ok, output, (result,))

    def __repr__(self) -> str:
        return f"ApplyStrategy({self.name!r}, host_namespace={self.host_namespace})"


class FirstSuccessful:
    """Try strategies in order and stop at the first that succeeds."""

    def __init__(self, name: str, strategies: Sequence[ApplyStrategy]):
        self.name = name
        self.strategies = tuple(strategies)

    def attempt(self, runner: CommandRunner) -> StrategyOutcome:
        results: list[CommandResult] = []
        failures: list[str] = []
        for strategy in self.strategies:
            outcome = strategy.attempt(runner)
            results.extend(outcome.results)
            if outcome.ok:
                return StrategyOutcome(self.name, True, outcome.output, tuple(results))
            failures.append(f"{strategy.name}: {outcome.output}")
        return StrategyOutcome(self.name, False, "; ".join(failures), tuple(results))


class OnSuccess(str, Enum):
    """What a successful fallback step means for the cycle."""
    DONE = "done"  # applied, stop the chain
    CONTINUE = "continue"  # keep going


class OnFailure(str, Enum):
    """What a failed fallback step means for the cycle."""
    CONTINUE = "continue"  # try the next step
    FATAL = "fatal"  # the cycle fails
    WARN = "warn"  # log a warning and keep going


@dataclass(frozen=True)
class FallbackStep:
    strategy: ApplyStrategy | FirstSuccessful
    on_success: OnSuccess
    on_failure: OnFailure


@dataclass(frozen=True)
class ApplyResult:
    """How the apply step ended for a node."""

    success: bool
    method: str
    skipped: bool = False
    outcomes: tuple[StrategyOutcome, ...] = field(default=(), repr=False)


class NetplanValidator:
    """Check the on-disk configuration with ``netplan generate``."""

    def __init__(self, context: AgentContext, runner: CommandRunner):
        self._simulate = context.simulate
        self._timeout = context.settings.netplan.command_timeout
        self._runner = runner
        self._logger = context.get_logger("netplan.validator")

    def validate(self) -> None:
        """Raise NetplanValidationError if netplan rejects the configuration."""
        if self._simulate:
            self._logger.info("DRY RUN: would validate netplan configuration")
            return

        result = self._runner.run(list(NETPLAN_GENERATE), timeout=self._timeout)
        if not result.ok:
            self._logger.error(
                "Netplan validation failed",
                extra={"stdout": result.stdout, "stderr": result.stderr, "returncode": result.returncode},
            )
            raise NetplanValidationError(f"netplan validation failed ({result.describe()})")
        self._logger.info("Netplan configuration is valid")


class NetplanApplier:
    """Validate, then apply the configuration with fallbacks."""

    def __init__(
        self,
        context: AgentContext,
        runner: CommandRunner,
        environment: EnvironmentProbe,
        validator: NetplanValidator | None = None,
    ):
        self._settings = context.settings.netplan
        self._simulate = context.simulate
        self._runner = runner
        self._environment = environment
        self._validator = validator or NetplanValidator(context, runner)
        self._logger = context.get_logger("netplan.applier")

    def primary_strategy(self, host_namespace: bool) -> ApplyStrategy:
        name = "nsenter-netplan-apply" if host_namespace else "netplan-apply"
        return ApplyStrategy(
            name, NETPLAN_APPLY, host_namespace=host_namespace, timeout=self._settings.apply_timeout
        )

    def fallback_chain(self, host_namespace: bool) -> list[FallbackStep]:
        """Ordered fallback steps for the current environment."""
        timeout = self._settings.command_timeout
        steps: list[FallbackStep] = []

        if host_namespace:
            steps.append(FallbackStep(
                ApplyStrategy("systemd-run-netplan-apply", DETACHED_APPLY, host_namespace=True, timeout=timeout),
                on_success=OnSuccess.DONE,
                on_failure=OnFailure.CONTINUE,
            ))

        steps.append(FallbackStep(
            ApplyStrategy("netplan-generate", NETPLAN_GENERATE, timeout=timeout),
            on_success=OnSuccess.CONTINUE,
            on_failure=OnFailure.FATAL,
        ))

        if host_namespace:
            steps.append(FallbackStep(
                FirstSuccessful("manual-reload", [
                    ApplyStrategy("networkctl-reload", NETWORKCTL_RELOAD, host_namespace=True, timeout=timeout),
                    ApplyStrategy("restart-systemd-networkd", RESTART_NETWORKD, host_namespace=True, timeout=timeout),
                ]),
                on_success=OnSuccess.DONE,
                on_failure=OnFailure.WARN,
            ))

        return steps

    def apply(self) -> ApplyResult:
        """Bring the live network in line with the written configuration.

        Returns:
            ApplyResult; ``success`` is True whenever this returns

        Raises:
            NetplanValidationError: If validation fails (nothing is applied)
            NetplanApplyError: If the primary apply and every fallback up to
                and including configuration regeneration failed
        """
        if self._simulate:
            self._logger.info("DRY RUN: would apply netplan configuration")
            return ApplyResult(success=True, method="simulated")

        self._validator.validate()

        containerized = self._environment.is_containerized()
        privileged = self._environment.is_privileged()
        if containerized and not privileged:
            self._logger.info("Running in non-privileged container - skipping netplan apply")
            return ApplyResult(success=True, method="skipped", skipped=True)

        host_namespace = containerized and privileged
        primary = self.primary_strategy(host_namespace)
        self._logger.info(f"Applying netplan configuration ({primary.name})")
        outcome = primary.attempt(self._runner)
        if outcome.ok:
            self._logger.info("Applied netplan configuration", extra={"output": outcome.output})
            return ApplyResult(success=True, method=primary.name, outcomes=(outcome,))

        self._logger.error(f"Primary netplan apply failed: {outcome.output}")
        return self._run_fallbacks(self.fallback_chain(host_namespace), [outcome])

    def _run_fallbacks(self, steps: list[FallbackStep], outcomes: list[StrategyOutcome]) -> ApplyResult:
        last_ok: str | None = None
        for step in steps:
            self._logger.info(f"Trying fallback: {step.strategy.name}")
            outcome = step.strategy.attempt(self._runner)
            outcomes.append(outcome)

            if outcome.ok:
                self._logger.info(f"Fallback {step.strategy.name} succeeded", extra={"output": outcome.output})
                last_ok = step.strategy.name
                if step.on_success is OnSuccess.DONE:
                    return ApplyResult(success=True, method=step.strategy.name, outcomes=tuple(outcomes))
                continue

            if step.on_failure is OnFailure.FATAL:
                self._logger.error(f"Fallback {step.strategy.name} failed: {outcome.output}")
                raise NetplanApplyError(
                    f"all netplan apply methods failed; {step.strategy.name}: {outcome.output}"
                )
            if step.on_failure is OnFailure.WARN:
                self._logger.warning(f"Fallback {step.strategy.name} failed: {outcome.output}")
            else:
                self._logger.info(f"Fallback {step.strategy.name} failed: {outcome.output}")

        self._logger.warning(
            "Fallback chain exhausted; configuration regenerated but not applied to the running network"
        )
        return ApplyResult(success=True, method=last_ok or "none", outcomes=tuple(outcomes))
