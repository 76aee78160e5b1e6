"""Statement model: markers, quantifiers, obligations and statements."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from collections.abc import Hashable, Iterable
import inspect
from typing import TYPE_CHECKING, Callable, TypeAlias, TypeVar

from flowpolicy.exceptions import MalformedStatement

if TYPE_CHECKING:
    from flowpolicy.graph import GraphContext

Node: TypeAlias = Hashable

EnumT = TypeVar("EnumT", bound=StrEnum)


class EdgeKind(StrEnum):
    DATA = "data"
    CONTROL = "control"


class Quantifier(StrEnum):
    SOME = "some"
    ALL = "all"


class ObligationShape(StrEnum):
    PAIR = "pair"
    SET = "set"


@dataclass(frozen=True)
class Marker:
    text: str

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text:
            raise MalformedStatement(f"marker text must be a non-empty string, got {self.text!r}")

    @classmethod
    def intern(cls, text: str) -> Marker:
        return _intern_marker(text)

    def __str__(self) -> str:
        return self.text


@lru_cache(maxsize=None)
def _intern_marker(text: str) -> Marker:
    return Marker(text)


def ordered_nodes(nodes: Iterable[Node]) -> list[Node]:
    """Deterministic iteration order over opaque nodes, for diagnostics."""
    return sorted(nodes, key=repr)


def as_marker(value: Marker | str) -> Marker:
    if isinstance(value, Marker):
        return value
    if isinstance(value, str):
        return Marker.intern(value)
    raise MalformedStatement(f"expected a marker, got {value!r}")


def coerce_enum(value: object, enum_type: type[EnumT], what: str) -> EnumT:
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        try:
            return enum_type(value.strip().lower())
        except ValueError:
            pass
    choices = ", ".join(member.value for member in enum_type)
    raise MalformedStatement(f"{what} must be one of {choices}; got {value!r}")


def _accepts_positional(func: Callable[..., object], arity: int) -> bool:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        # Builtins without an introspectable signature are accepted as-is.
        return True
    try:
        signature.bind(*([None] * arity))
    except TypeError:
        return False
    return True


@dataclass(frozen=True)
class Obligation:
    """A predicate a matched source/destination pair, or a source's matched
    destination set, has to satisfy.

    PAIR obligations are called as ``check(ctx, source, destination)``; SET
    obligations as ``check(ctx, source, premise)``. The graph context is passed
    explicitly so obligations may query it without holding global state.
    """

    shape: ObligationShape
    check: Callable[..., object]
    description: str = ""
    markers: frozenset[Marker] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", coerce_enum(self.shape, ObligationShape, "obligation shape"))
        if not callable(self.check):
            raise MalformedStatement(f"obligation check must be callable, got {self.check!r}")
        if not _accepts_positional(self.check, 3):
            raise MalformedStatement(
                f"obligation {self.label!r} must accept (ctx, source, {self._target_name()})"
            )
        object.__setattr__(self, "markers", frozenset(as_marker(m) for m in self.markers))

    def _target_name(self) -> str:
        return "destination" if self.shape is ObligationShape.PAIR else "premise"

    @property
    def label(self) -> str:
        return self.description or getattr(self.check, "__name__", repr(self.check))

    def __call__(self, ctx: GraphContext, source: Node, target: object) -> bool:
        return bool(self.check(ctx, source, target))


def _always_holds(ctx: GraphContext, source: Node, destination: Node) -> bool:
    return True


ALWAYS = Obligation(ObligationShape.PAIR, _always_holds, description="always")


def as_obligation(value: object) -> Obligation:
    if isinstance(value, Obligation):
        return value
    if callable(value):
        return Obligation(ObligationShape.PAIR, value)
    raise MalformedStatement(f"obligation must be callable, got {value!r}")


@dataclass(frozen=True)
class Statement:
    """One quantified flow assertion; immutable once built."""

    name: str
    source: Marker
    destination: Marker
    edge_kind: EdgeKind = EdgeKind.DATA
    source_quantifier: Quantifier = Quantifier.SOME
    destination_quantifier: Quantifier = Quantifier.SOME
    obligation: Obligation = field(default=ALWAYS)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise MalformedStatement("statement name must be a non-empty string")
        object.__setattr__(self, "source", as_marker(self.source))
        object.__setattr__(self, "destination", as_marker(self.destination))
        object.__setattr__(self, "edge_kind", coerce_enum(self.edge_kind, EdgeKind, "edge kind"))
        object.__setattr__(
            self,
            "source_quantifier",
            coerce_enum(self.source_quantifier, Quantifier, "source quantifier"),
        )
        object.__setattr__(
            self,
            "destination_quantifier",
            coerce_enum(self.destination_quantifier, Quantifier, "destination quantifier"),
        )
        obligation = as_obligation(self.obligation)
        if (
            obligation.shape is ObligationShape.SET
            and self.destination_quantifier is not Quantifier.ALL
        ):
            raise MalformedStatement(
                f"statement {self.name!r}: set obligation {obligation.label!r} "
                "requires the 'all' destination quantifier"
            )
        object.__setattr__(self, "obligation", obligation)

    @property
    def quantifiers(self) -> tuple[Quantifier, Quantifier]:
        return (self.source_quantifier, self.destination_quantifier)

    def markers(self) -> frozenset[Marker]:
        return frozenset({self.source, self.destination}) | self.obligation.markers

    def render(self) -> str:
        relation = "flows to" if self.edge_kind is EdgeKind.DATA else "has control flow influence on"
        return (
            f"{self.source_quantifier} {self.source} {relation} "
            f"{self.destination_quantifier} {self.destination} then {self.obligation.label}"
        )
