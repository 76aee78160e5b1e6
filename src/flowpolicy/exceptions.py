"""Error kinds raised by flowpolicy."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from flowpolicy.model import Marker
    from flowpolicy.outcome import VerificationResult


class FlowPolicyError(Exception):
    """Base class for every error flowpolicy raises on purpose."""


class MalformedStatement(FlowPolicyError):
    """A statement's parts disagree with each other at construction time."""


class UnknownMarker(FlowPolicyError):
    def __init__(self, marker: Marker):
        super().__init__(f"marker {marker.text!r} is not declared by the graph")
        self.marker = marker


class PolicySyntaxError(FlowPolicyError):
    def __init__(self, message: str, *, line: int, column: int):
        super().__init__(f"{message} (line {line}, column {column})")
        self.reason = message
        self.line = line
        self.column = column


class GraphFormatError(FlowPolicyError):
    """The serialized graph snapshot could not be understood."""


class ConfigError(FlowPolicyError):
    """A configuration value is outside the accepted set."""


class PolicyViolation(FlowPolicyError):
    """One or more statements of a named policy did not hold.

    ``results`` holds the failing verification results in declaration
    order; ``statement`` names the first of them.
    """

    def __init__(self, policy: str, results: Sequence[VerificationResult]):
        self.policy = policy
        self.results = tuple(results)
        self.statement = self.results[0].statement if self.results else ""
        lines = [f"policy {policy!r} violated"]
        lines.extend(f"  {result.message}" for result in self.results)
        super().__init__("\n".join(lines))


class NoFlowFromSource(PolicyViolation):
    """A universally quantified source failed its reachability pre-check."""


class NeverThrown(RuntimeError):
    """Raised by ``invariants.never`` when a supposedly dead path runs."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})
