"""Built-in obligations and the evaluator that applies them to matches."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Iterable

from flowpolicy.exceptions import MalformedStatement
from flowpolicy.graph import GraphContext, flows_avoiding, flows_to, has_control_flow_influence
from flowpolicy.invariants import never
from flowpolicy.log import get_logger
from flowpolicy.model import (
    ALWAYS,
    EdgeKind,
    Marker,
    Node,
    Obligation,
    ObligationShape,
    Quantifier,
    Statement,
    as_marker,
    ordered_nodes,
)
from flowpolicy.outcome import FailureKind, Violation
from flowpolicy.selector import UnknownMarkerPolicy, resolve_marker

logger = get_logger(__name__)


class Role(StrEnum):
    SOURCE = "source"
    DESTINATION = "destination"
    MARKED = "marked"


@dataclass(frozen=True)
class Endpoint:
    role: Role
    marker: Marker | None = None
    quantifier: Quantifier = Quantifier.SOME
    label: str = ""

    @classmethod
    def source(cls, label: str = "source") -> Endpoint:
        return cls(Role.SOURCE, label=label)

    @classmethod
    def destination(cls, label: str = "destination") -> Endpoint:
        return cls(Role.DESTINATION, label=label)

    @classmethod
    def marked(cls, marker: Marker | str, quantifier: Quantifier = Quantifier.SOME) -> Endpoint:
        marker = as_marker(marker)
        return cls(Role.MARKED, marker=marker, quantifier=quantifier, label=f"{quantifier} {marker}")

    @property
    def bound(self) -> bool:
        return self.role is not Role.MARKED

    def nodes(self, ctx: GraphContext, source: Node, destination: Node) -> Iterable[Node]:
        match self.role:
            case Role.SOURCE:
                return (source,)
            case Role.DESTINATION:
                return (destination,)
            case Role.MARKED if self.marker is not None:
                # Markers were checked against the snapshot before evaluation.
                return resolve_marker(ctx, self.marker, unknown=UnknownMarkerPolicy.EMPTY)
        never("endpoint without a node selection", role=self.role)

    def markers(self) -> frozenset[Marker]:
        return frozenset() if self.marker is None else frozenset({self.marker})


def _quantify(quantifier: Quantifier, outcomes: Iterable[bool]) -> bool:
    if quantifier is Quantifier.ALL:
        return all(outcomes)
    return any(outcomes)


def _relation(edge_kind: EdgeKind) -> Callable[[GraphContext, Node, Node], bool]:
    if edge_kind is EdgeKind.DATA:
        return lambda ctx, a, b: flows_to(ctx, a, b, EdgeKind.DATA)
    return has_control_flow_influence


def always() -> Obligation:
    return ALWAYS


def influence(subject: Endpoint, target: Endpoint, edge_kind: EdgeKind = EdgeKind.DATA) -> Obligation:
    """``subject`` flows to (or controls) ``target``.

    Marked endpoints are quantified over every node with the marker; the
    subject's quantifier is the outer one.
    """
    relation = _relation(edge_kind)
    verb = "flows to" if edge_kind is EdgeKind.DATA else "has control flow influence on"

    def check(ctx: GraphContext, source: Node, destination: Node) -> bool:
        targets = tuple(target.nodes(ctx, source, destination))
        return _quantify(
            subject.quantifier,
            (
                _quantify(target.quantifier, (relation(ctx, s, t) for t in targets))
                for s in subject.nodes(ctx, source, destination)
            ),
        )

    return Obligation(
        ObligationShape.PAIR,
        check,
        description=f"{subject.label} {verb} {target.label}",
        markers=subject.markers() | target.markers(),
    )


def authorized_by(marker: Marker | str, target: Endpoint | None = None) -> Obligation:
    """Some check marked ``marker`` sees the source's data and controls ``target``."""
    marker = as_marker(marker)
    target = target or Endpoint.destination()
    if not target.bound:
        raise MalformedStatement("only the bound source or destination can be authorized")

    def check(ctx: GraphContext, source: Node, destination: Node) -> bool:
        guarded = tuple(target.nodes(ctx, source, destination))
        return any(
            flows_to(ctx, source, check_node, EdgeKind.DATA)
            and all(has_control_flow_influence(ctx, check_node, node) for node in guarded)
            for check_node in resolve_marker(ctx, marker, unknown=UnknownMarkerPolicy.EMPTY)
        )

    return Obligation(
        ObligationShape.PAIR,
        check,
        description=f"{target.label} is authorized by some {marker}",
        markers=frozenset({marker}),
    )


def through(
    checkpoint: Marker | str,
    subject: Endpoint | None = None,
    target: Endpoint | None = None,
) -> Obligation:
    """``subject`` flows to ``target`` and every such data path passes a node
    marked ``checkpoint``; removing the checkpoints disconnects the two."""
    checkpoint = as_marker(checkpoint)
    subject = subject or Endpoint.source()
    target = target or Endpoint.destination()

    def check(ctx: GraphContext, source: Node, destination: Node) -> bool:
        blocked = resolve_marker(ctx, checkpoint, unknown=UnknownMarkerPolicy.EMPTY)
        targets = tuple(target.nodes(ctx, source, destination))
        return _quantify(
            subject.quantifier,
            (
                _quantify(
                    target.quantifier,
                    (
                        flows_to(ctx, s, t, EdgeKind.DATA) and not flows_avoiding(ctx, s, t, blocked)
                        for t in targets
                    ),
                )
                for s in subject.nodes(ctx, source, destination)
            ),
        )

    return Obligation(
        ObligationShape.PAIR,
        check,
        description=f"{subject.label} flows to {target.label} through some {checkpoint}",
        markers=subject.markers() | target.markers() | frozenset({checkpoint}),
    )


def _combine(obligations: tuple[Obligation, ...], joiner: str) -> tuple[ObligationShape, frozenset[Marker], str]:
    if not obligations:
        raise MalformedStatement(f"'{joiner}' needs at least one obligation")
    shapes = {obligation.shape for obligation in obligations}
    if len(shapes) != 1:
        raise MalformedStatement(f"cannot combine pair and set obligations with '{joiner}'")
    markers = frozenset().union(*(obligation.markers for obligation in obligations))
    description = f" {joiner} ".join(f"({obligation.label})" for obligation in obligations)
    return shapes.pop(), markers, description


def all_of(*obligations: Obligation) -> Obligation:
    shape, markers, description = _combine(obligations, "and")

    def check(ctx: GraphContext, source: Node, target: object) -> bool:
        return all(obligation(ctx, source, target) for obligation in obligations)

    return Obligation(shape, check, description=description, markers=markers)


def any_of(*obligations: Obligation) -> Obligation:
    shape, markers, description = _combine(obligations, "or")

    def check(ctx: GraphContext, source: Node, target: object) -> bool:
        return any(obligation(ctx, source, target) for obligation in obligations)

    return Obligation(shape, check, description=description, markers=markers)


def premise_matches(marker: Marker | str) -> Obligation:
    """The source's matched destinations are exactly the nodes marked ``marker``."""
    marker = as_marker(marker)

    def check(ctx: GraphContext, source: Node, premise: frozenset[Node]) -> bool:
        return premise == resolve_marker(ctx, marker, unknown=UnknownMarkerPolicy.EMPTY)

    return Obligation(
        ObligationShape.SET,
        check,
        description=f"matched destinations equal every {marker}",
        markers=frozenset({marker}),
    )


def premise_size_at_least(count: int) -> Obligation:
    if count < 0:
        raise MalformedStatement(f"premise size bound must be non-negative, got {count}")

    def check(ctx: GraphContext, source: Node, premise: frozenset[Node]) -> bool:
        return len(premise) >= count

    return Obligation(ObligationShape.SET, check, description=f"at least {count} matched destinations")


class ObligationEvaluator:
    """Runs a statement's obligation over matched pairs and records failures.

    In fail-fast mode evaluation for a source stops at its first failing pair;
    in exhaustive mode every pair is evaluated and every failure recorded.
    """

    def __init__(self, statement: Statement, ctx: GraphContext, *, exhaustive: bool = False):
        self.statement = statement
        self.ctx = ctx
        self.exhaustive = exhaustive
        self.evaluations = 0
        self.violations: list[Violation] = []

    def check_source(self, source: Node, premise: frozenset[Node]) -> bool:
        obligation = self.statement.obligation
        if obligation.shape is ObligationShape.SET:
            self.evaluations += 1
            if obligation(self.ctx, source, premise):
                return True
            self._record(source, None, obligation)
            return False
        passed = True
        for destination in ordered_nodes(premise):
            self.evaluations += 1
            if obligation(self.ctx, source, destination):
                continue
            self._record(source, destination, obligation)
            passed = False
            if not self.exhaustive:
                break
        return passed

    def _record(self, source: Node, destination: Node | None, obligation: Obligation) -> None:
        logger.debug(
            "statement %s: obligation %r unmet for source=%r destination=%r",
            self.statement.name,
            obligation.label,
            source,
            destination,
        )
        self.violations.append(
            Violation(
                kind=FailureKind.OBLIGATION_UNMET,
                source=source,
                destination=destination,
                detail=f"obligation {obligation.label!r} unmet",
            )
        )
