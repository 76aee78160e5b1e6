from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from flowpolicy.graph import InMemoryGraph


@pytest.fixture
def make_graph():
    """Build an in-memory snapshot; every node lands in one 'main' controller
    unless ``controllers`` is given."""

    def _make(
        *,
        markers: dict[str, list[str]],
        edges: list[tuple[str, str, str]] | tuple = (),
        controllers: dict[str, list[str]] | None = None,
        declared: list[str] | None = None,
    ) -> InMemoryGraph:
        if controllers is None:
            nodes = set(markers) | {node for edge in edges for node in edge[:2]}
            controllers = {"main": sorted(nodes)}
        return InMemoryGraph.build(
            controllers=controllers,
            markers=markers,
            edges=edges,
            declared=declared,
        )

    return _make


@pytest.fixture
def fan_out_graph(make_graph):
    """x reaches both destinations y and z over data edges."""
    return make_graph(
        markers={"x": ["src"], "y": ["dst"], "z": ["dst"]},
        edges=[("x", "y", "data"), ("x", "z", "data")],
    )


@pytest.fixture
def partial_graph(make_graph):
    """x reaches y but not z."""
    return make_graph(
        markers={"x": ["src"], "y": ["dst"], "z": ["dst"]},
        edges=[("x", "y", "data")],
    )


@pytest.fixture
def community_graph(make_graph):
    """A community value guarded by a delete check and a ban check before a write."""
    return make_graph(
        markers={
            "comm": ["community"],
            "dc": ["delete_check"],
            "bc": ["ban_check"],
            "w": ["db_write"],
        },
        edges=[
            ("comm", "w", "data"),
            ("comm", "dc", "data"),
            ("comm", "bc", "data"),
            ("dc", "w", "control"),
            ("bc", "w", "control"),
        ],
    )


class CountingObligation:
    """Pair obligation that records every call and answers from ``verdicts``."""

    def __init__(self, verdicts: dict[tuple[str, str], bool] | None = None, default: bool = True):
        self.calls: list[tuple[str, str]] = []
        self.verdicts = dict(verdicts or {})
        self.default = default

    def __call__(self, ctx, source, destination) -> bool:
        self.calls.append((source, destination))
        return self.verdicts.get((source, destination), self.default)


@pytest.fixture
def counting_obligation():
    return CountingObligation
