"""Graph context contract and an in-memory snapshot implementation.

The dependency graph itself is produced elsewhere; flowpolicy only reads it
through ``GraphContext``. ``InMemoryGraph`` is the snapshot used by the CLI
(loaded from JSON) and by tests.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Collection, Iterable, Mapping, Protocol

from flowpolicy.exceptions import GraphFormatError, MalformedStatement
from flowpolicy.json_types import JSONValue
from flowpolicy.model import EdgeKind, Marker, Node, as_marker, coerce_enum


class GraphContext(Protocol):
    def controllers(self) -> Iterable[str]:
        """Every analysis scope known to the snapshot."""

    def nodes_for_controller(self, controller: str) -> Iterable[Node]:
        """All nodes inside one scope."""

    def has_marker(self, marker: Marker, node: Node) -> bool:
        """Whether ``node`` carries ``marker``."""

    def is_declared(self, marker: Marker) -> bool:
        """Whether the annotation layer ever declared ``marker``."""

    def direct_influencees(self, node: Node, edge_kind: EdgeKind) -> Iterable[Node]:
        """Nodes one ``edge_kind`` edge away from ``node``."""

    def influencees(self, node: Node, edge_kind: EdgeKind) -> Iterable[Node]:
        """Nodes transitively reachable from ``node`` along ``edge_kind``."""


def flows_to(ctx: GraphContext, source: Node, target: Node, edge_kind: EdgeKind) -> bool:
    return any(node == target for node in ctx.influencees(source, edge_kind))


def flows_avoiding(ctx: GraphContext, source: Node, target: Node, blocked: Collection[Node]) -> bool:
    """``target`` is data-reachable from ``source`` along a path that never
    enters a ``blocked`` node. Blocked endpoints count as passing a checkpoint.
    """
    if source in blocked or target in blocked:
        return False
    seen = {source}
    queue = deque([source])
    while queue:
        for successor in ctx.direct_influencees(queue.popleft(), EdgeKind.DATA):
            if successor == target:
                return True
            if successor in seen or successor in blocked:
                continue
            seen.add(successor)
            queue.append(successor)
    return False


def has_control_flow_influence(ctx: GraphContext, influencer: Node, target: Node) -> bool:
    """``influencer`` decides whether ``target`` happens.

    Holds when ``target`` is a control influencee of ``influencer`` itself or
    of any value ``influencer`` flows into.
    """
    if flows_to(ctx, influencer, target, EdgeKind.CONTROL):
        return True
    return any(
        flows_to(ctx, derived, target, EdgeKind.CONTROL)
        for derived in ctx.influencees(influencer, EdgeKind.DATA)
    )


@dataclass(frozen=True)
class InMemoryGraph:
    controller_nodes: Mapping[str, tuple[Node, ...]]
    node_markers: Mapping[Node, frozenset[Marker]]
    successors: Mapping[EdgeKind, Mapping[Node, frozenset[Node]]]
    declared_markers: frozenset[Marker] = field(default_factory=frozenset)

    def controllers(self) -> Iterable[str]:
        return tuple(self.controller_nodes)

    def nodes_for_controller(self, controller: str) -> Iterable[Node]:
        return self.controller_nodes.get(controller, ())

    def has_marker(self, marker: Marker, node: Node) -> bool:
        return marker in self.node_markers.get(node, frozenset())

    def is_declared(self, marker: Marker) -> bool:
        return marker in self.declared_markers

    def direct_influencees(self, node: Node, edge_kind: EdgeKind) -> Iterable[Node]:
        return self.successors.get(edge_kind, {}).get(node, frozenset())

    def influencees(self, node: Node, edge_kind: EdgeKind) -> Iterable[Node]:
        edges = self.successors.get(edge_kind, {})
        seen: set[Node] = set()
        queue = deque(edges.get(node, ()))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(edges.get(current, ()))
        return frozenset(seen)

    @classmethod
    def build(
        cls,
        *,
        controllers: Mapping[str, Iterable[Node]],
        markers: Mapping[Node, Iterable[Marker | str]] | None = None,
        edges: Iterable[tuple[Node, Node, EdgeKind | str]] = (),
        declared: Iterable[Marker | str] | None = None,
    ) -> InMemoryGraph:
        controller_nodes = {name: tuple(dict.fromkeys(nodes)) for name, nodes in controllers.items()}
        node_markers = {
            node: frozenset(as_marker(m) for m in labels)
            for node, labels in (markers or {}).items()
        }
        successors: dict[EdgeKind, dict[Node, set[Node]]] = defaultdict(lambda: defaultdict(set))
        for source, target, kind in edges:
            successors[coerce_enum(kind, EdgeKind, "edge kind")][source].add(target)
        if declared is None:
            declared_markers = frozenset().union(*node_markers.values()) if node_markers else frozenset()
        else:
            declared_markers = frozenset(as_marker(m) for m in declared)
        return cls(
            controller_nodes=controller_nodes,
            node_markers=node_markers,
            successors={
                kind: {node: frozenset(targets) for node, targets in by_node.items()}
                for kind, by_node in successors.items()
            },
            declared_markers=declared_markers,
        )


def _string_list(value: JSONValue, where: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise GraphFormatError(f"{where} must be a list of strings")
    return list(value)


def graph_from_payload(payload: JSONValue) -> InMemoryGraph:
    if not isinstance(payload, dict):
        raise GraphFormatError("graph snapshot must be a JSON object")
    raw_controllers = payload.get("controllers")
    if not isinstance(raw_controllers, dict):
        raise GraphFormatError("'controllers' must map controller names to node lists")
    controllers = {
        str(name): _string_list(nodes, f"controllers.{name}")
        for name, nodes in raw_controllers.items()
    }
    raw_markers = payload.get("markers", {})
    if not isinstance(raw_markers, dict):
        raise GraphFormatError("'markers' must map node ids to marker lists")
    markers = {
        str(node): _string_list(labels, f"markers.{node}")
        for node, labels in raw_markers.items()
    }
    raw_edges = payload.get("edges", [])
    if not isinstance(raw_edges, list):
        raise GraphFormatError("'edges' must be a list")
    edges: list[tuple[Node, Node, str]] = []
    for index, entry in enumerate(raw_edges):
        if not isinstance(entry, dict):
            raise GraphFormatError(f"edges[{index}] must be an object")
        source = entry.get("from")
        target = entry.get("to")
        kind = entry.get("kind", EdgeKind.DATA.value)
        if not isinstance(source, str) or not isinstance(target, str) or not isinstance(kind, str):
            raise GraphFormatError(f"edges[{index}] needs string 'from', 'to' and 'kind'")
        edges.append((source, target, kind))
    declared = payload.get("declared_markers")
    try:
        return InMemoryGraph.build(
            controllers=controllers,
            markers=markers,
            edges=edges,
            declared=None if declared is None else _string_list(declared, "declared_markers"),
        )
    except MalformedStatement as exc:
        raise GraphFormatError(str(exc)) from exc


def load_graph(path: Path) -> InMemoryGraph:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise GraphFormatError(f"cannot read graph snapshot {path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GraphFormatError(f"graph snapshot {path} is not valid JSON: {exc}") from exc
    return graph_from_payload(payload)
