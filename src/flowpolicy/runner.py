"""Policy runner: evaluates named statement sets against one graph snapshot."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import threading
from typing import Iterable, Protocol, Sequence

from flowpolicy.compiler import CompiledStatement, compile_statements
from flowpolicy.config import RunnerSettings
from flowpolicy.exceptions import MalformedStatement, NoFlowFromSource, PolicyViolation
from flowpolicy.graph import GraphContext
from flowpolicy.json_types import JSONObject
from flowpolicy.log import get_logger
from flowpolicy.model import Statement
from flowpolicy.outcome import FailureKind, VerificationResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class Policy:
    name: str
    statements: tuple[Statement, ...]

    def __post_init__(self) -> None:
        statements = tuple(self.statements)
        seen: set[str] = set()
        for statement in statements:
            if statement.name in seen:
                raise MalformedStatement(
                    f"policy {self.name!r} declares statement {statement.name!r} twice"
                )
            seen.add(statement.name)
        object.__setattr__(self, "statements", statements)


class DiagnosticsSink(Protocol):
    def report(self, policy: str, statement: str, passed: bool, message: str) -> None:
        """Record the outcome of one statement."""


@dataclass(frozen=True)
class DiagnosticEntry:
    policy: str
    statement: str
    passed: bool
    message: str


class Diagnostics:
    """In-memory sink; safe to share between worker threads."""

    def __init__(self) -> None:
        self.entries: list[DiagnosticEntry] = []
        self._lock = threading.Lock()

    def report(self, policy: str, statement: str, passed: bool, message: str) -> None:
        with self._lock:
            self.entries.append(DiagnosticEntry(policy, statement, passed, message))

    @property
    def failures(self) -> list[DiagnosticEntry]:
        return [entry for entry in self.entries if not entry.passed]


@dataclass(frozen=True)
class PolicyReport:
    policy: str
    results: tuple[VerificationResult, ...]

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> tuple[VerificationResult, ...]:
        return tuple(result for result in self.results if not result.passed)

    def to_json(self) -> JSONObject:
        return {
            "policy": self.policy,
            "passed": self.passed,
            "results": [result.to_json() for result in self.results],
        }


class PolicyRunner:
    """Runs policies against a read-only graph context.

    ``fail_fast`` stops at the first failing statement; ``exhaustive`` runs
    every statement and records every violation. Outcomes go to the sink in
    declaration order; any failure raises ``PolicyViolation`` afterwards.
    """

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        sink: DiagnosticsSink | None = None,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.sink = sink if sink is not None else Diagnostics()

    def evaluate(self, policy: Policy, ctx: GraphContext) -> PolicyReport:
        """Evaluate without raising; the report carries every outcome."""
        compiled = compile_statements(policy.statements)
        if self.settings.workers > 1 and len(compiled) > 1:
            results = self._evaluate_parallel(compiled, ctx)
        else:
            results = self._evaluate_serial(compiled, ctx)
        for result in results:
            self.sink.report(policy.name, result.statement, result.passed, result.message)
        return PolicyReport(policy=policy.name, results=tuple(results))

    def run(self, policy: Policy, ctx: GraphContext) -> PolicyReport:
        report = self.evaluate(policy, ctx)
        failures = report.failures
        if not failures:
            logger.debug("policy %s: %d statements hold", policy.name, len(report.results))
            return report
        for failure in failures:
            logger.info("policy %s: %s", policy.name, failure.message)
        if failures[0].kind is FailureKind.NO_FLOW_FROM_SOURCE:
            raise NoFlowFromSource(policy.name, failures)
        raise PolicyViolation(policy.name, failures)

    def _evaluate_one(self, statement: CompiledStatement, ctx: GraphContext) -> VerificationResult:
        return statement.evaluate(
            ctx,
            exhaustive=self.settings.exhaustive,
            unknown=self.settings.unknown_markers,
        )

    def _evaluate_serial(
        self, compiled: Sequence[CompiledStatement], ctx: GraphContext
    ) -> list[VerificationResult]:
        results: list[VerificationResult] = []
        for statement in compiled:
            result = self._evaluate_one(statement, ctx)
            results.append(result)
            if not result.passed and not self.settings.exhaustive:
                break
        return results

    def _evaluate_parallel(
        self, compiled: Sequence[CompiledStatement], ctx: GraphContext
    ) -> list[VerificationResult]:
        results: list[VerificationResult] = []
        with ThreadPoolExecutor(max_workers=self.settings.workers) as pool:
            futures = [pool.submit(self._evaluate_one, statement, ctx) for statement in compiled]
            # Declaration order; under fail_fast nothing after the first failure is read.
            for index, future in enumerate(futures):
                result = future.result()
                results.append(result)
                if not result.passed and not self.settings.exhaustive:
                    for pending in futures[index + 1 :]:
                        pending.cancel()
                    break
        return results


def run_policy(
    name: str,
    statements: Iterable[Statement],
    ctx: GraphContext,
    *,
    settings: RunnerSettings | None = None,
    sink: DiagnosticsSink | None = None,
) -> PolicyReport:
    """Register ``statements`` under ``name`` and run them against ``ctx``."""
    policy = Policy(name=name, statements=tuple(statements))
    return PolicyRunner(settings=settings, sink=sink).run(policy, ctx)
