from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from flowpolicy.json_types import JSONObject
from flowpolicy.model import Node


class FailureKind(StrEnum):
    NO_FLOW_FROM_SOURCE = "no_flow_from_source"
    OBLIGATION_UNMET = "obligation_unmet"


@dataclass(frozen=True)
class Violation:
    kind: FailureKind
    source: Node
    destination: Node | None = None
    detail: str = ""

    def render(self) -> str:
        if self.kind is FailureKind.NO_FLOW_FROM_SOURCE:
            text = f"source {self.source!r}: {self.detail or 'no flow to the destination set'}"
        elif self.destination is None:
            text = f"source {self.source!r}: {self.detail or 'obligation unmet'}"
        else:
            text = f"pair ({self.source!r}, {self.destination!r}): {self.detail or 'obligation unmet'}"
        return text

    def to_json(self) -> JSONObject:
        return {
            "kind": self.kind.value,
            "source": repr(self.source),
            "destination": None if self.destination is None else repr(self.destination),
            "detail": self.detail,
        }


@dataclass(frozen=True)
class VerificationResult:
    statement: str
    violations: tuple[Violation, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def kind(self) -> FailureKind | None:
        if not self.violations:
            return None
        return self.violations[0].kind

    @property
    def message(self) -> str:
        if self.passed:
            return f"statement {self.statement!r} holds"
        rendered = "; ".join(violation.render() for violation in self.violations)
        return f"statement {self.statement!r} failed ({self.kind}): {rendered}"

    def to_json(self) -> JSONObject:
        return {
            "statement": self.statement,
            "passed": self.passed,
            "violations": [violation.to_json() for violation in self.violations],
        }
