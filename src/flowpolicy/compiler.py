"""Quantifier compiler.

A statement's quantifier pair selects one of four verification plans. Every
plan works on premises: for a source ``a`` the premise is the part of the
destination set reachable from ``a`` along the statement's edge kind.

* some/some: each source's matched pairs must satisfy the obligation.
* some/all: only sources whose premise is the entire destination set are
  held to the obligation; others pass.
* all/some: every source must match at least one destination before any
  obligation runs.
* all/all: every source must match the entire destination set before any
  obligation runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from flowpolicy.graph import GraphContext
from flowpolicy.invariants import never
from flowpolicy.log import get_logger
from flowpolicy.model import Node, Quantifier, Statement, ordered_nodes
from flowpolicy.obligations import ObligationEvaluator
from flowpolicy.outcome import FailureKind, VerificationResult, Violation
from flowpolicy.selector import UnknownMarkerPolicy, check_declared, resolve_marker

logger = get_logger(__name__)

PremiseTest = Callable[[frozenset[Node], frozenset[Node]], bool]


def _any_premise(premise: frozenset[Node], destinations: frozenset[Node]) -> bool:
    return True


def _non_empty(premise: frozenset[Node], destinations: frozenset[Node]) -> bool:
    return bool(premise)


def _covers_destinations(premise: frozenset[Node], destinations: frozenset[Node]) -> bool:
    return premise == destinations


@dataclass(frozen=True)
class VerificationPlan:
    # Gate over every source, run to completion before any obligation.
    precheck: PremiseTest | None
    precheck_failure: str
    # Decides whether a source's obligation applies at all.
    triggers: PremiseTest
    summary: str


_PLANS: dict[tuple[Quantifier, Quantifier], VerificationPlan] = {
    (Quantifier.SOME, Quantifier.SOME): VerificationPlan(
        precheck=None,
        precheck_failure="",
        triggers=_any_premise,
        summary="for each source, every matched destination satisfies the obligation",
    ),
    (Quantifier.SOME, Quantifier.ALL): VerificationPlan(
        precheck=None,
        precheck_failure="",
        triggers=_covers_destinations,
        summary=(
            "for each source reaching the entire destination set, "
            "the matched destinations satisfy the obligation"
        ),
    ),
    (Quantifier.ALL, Quantifier.SOME): VerificationPlan(
        precheck=_non_empty,
        precheck_failure="reaches no destination",
        triggers=_any_premise,
        summary=(
            "every source reaches at least one destination, then every "
            "matched destination satisfies the obligation"
        ),
    ),
    (Quantifier.ALL, Quantifier.ALL): VerificationPlan(
        precheck=_covers_destinations,
        precheck_failure="does not reach every destination",
        triggers=_any_premise,
        summary=(
            "every source reaches the entire destination set, then every "
            "matched destination satisfies the obligation"
        ),
    ),
}


def premise(
    ctx: GraphContext, statement: Statement, source: Node, destinations: frozenset[Node]
) -> frozenset[Node]:
    return frozenset(
        node for node in ctx.influencees(source, statement.edge_kind) if node in destinations
    )


@dataclass(frozen=True)
class CompiledStatement:
    statement: Statement
    plan: VerificationPlan

    @property
    def name(self) -> str:
        return self.statement.name

    def evaluate(
        self,
        ctx: GraphContext,
        *,
        exhaustive: bool = False,
        unknown: UnknownMarkerPolicy = UnknownMarkerPolicy.ERROR,
    ) -> VerificationResult:
        statement = self.statement
        for marker in sorted(statement.obligation.markers, key=str):
            check_declared(ctx, marker, unknown=unknown)
        sources = ordered_nodes(resolve_marker(ctx, statement.source, unknown=unknown))
        destinations = resolve_marker(ctx, statement.destination, unknown=unknown)
        logger.debug(
            "statement %s: %d sources, %d destinations, plan %s/%s",
            statement.name,
            len(sources),
            len(destinations),
            *statement.quantifiers,
        )

        premises: dict[Node, frozenset[Node]] = {}
        if self.plan.precheck is not None:
            missing = self._precheck(ctx, sources, destinations, premises, exhaustive=exhaustive)
            if missing:
                return VerificationResult(statement.name, tuple(missing))

        evaluator = ObligationEvaluator(statement, ctx, exhaustive=exhaustive)
        for source in sources:
            matched = premises.get(source)
            if matched is None:
                matched = premise(ctx, statement, source, destinations)
            if not self.plan.triggers(matched, destinations):
                continue
            if not evaluator.check_source(source, matched) and not exhaustive:
                break
        logger.debug(
            "statement %s: %d obligation evaluations, %d violations",
            statement.name,
            evaluator.evaluations,
            len(evaluator.violations),
        )
        return VerificationResult(statement.name, tuple(evaluator.violations))

    def _precheck(
        self,
        ctx: GraphContext,
        sources: Iterable[Node],
        destinations: frozenset[Node],
        premises: dict[Node, frozenset[Node]],
        *,
        exhaustive: bool,
    ) -> list[Violation]:
        precheck = self.plan.precheck
        if precheck is None:
            never("precheck requested for a plan without one", statement=self.name)
        missing: list[Violation] = []
        for source in sources:
            matched = premise(ctx, self.statement, source, destinations)
            premises[source] = matched
            if precheck(matched, destinations):
                continue
            missing.append(
                Violation(
                    kind=FailureKind.NO_FLOW_FROM_SOURCE,
                    source=source,
                    detail=f"{self.plan.precheck_failure} marked {self.statement.destination}",
                )
            )
            if not exhaustive:
                break
        return missing

    def describe(self) -> str:
        statement = self.statement
        lines = [
            f"{statement.name}: {statement.render()}",
            f"  sources: nodes marked {statement.source}",
            f"  destinations: nodes marked {statement.destination}",
            f"  premise: destinations among {statement.edge_kind} influencees of the source",
            f"  check: {self.plan.summary}",
            f"  obligation ({statement.obligation.shape}): {statement.obligation.label}",
        ]
        return "\n".join(lines)


def compile_statement(statement: Statement) -> CompiledStatement:
    plan = _PLANS.get(statement.quantifiers)
    if plan is None:
        never("no verification plan for quantifier pair", quantifiers=statement.quantifiers)
    logger.debug("compiled %s with %s/%s plan", statement.name, *statement.quantifiers)
    return CompiledStatement(statement=statement, plan=plan)


def compile_statements(statements: Iterable[Statement]) -> tuple[CompiledStatement, ...]:
    return tuple(compile_statement(statement) for statement in statements)
