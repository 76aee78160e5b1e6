from __future__ import annotations

from enum import StrEnum

from flowpolicy.exceptions import UnknownMarker
from flowpolicy.graph import GraphContext
from flowpolicy.log import get_logger
from flowpolicy.model import Marker, Node, as_marker

logger = get_logger(__name__)


class UnknownMarkerPolicy(StrEnum):
    ERROR = "error"
    EMPTY = "empty"


def check_declared(
    ctx: GraphContext,
    marker: Marker,
    *,
    unknown: UnknownMarkerPolicy = UnknownMarkerPolicy.ERROR,
) -> bool:
    """Return whether ``marker`` is declared, raising under the ERROR policy."""
    if ctx.is_declared(marker):
        return True
    if unknown is UnknownMarkerPolicy.ERROR:
        raise UnknownMarker(marker)
    logger.debug("marker %s is undeclared; resolving to the empty set", marker)
    return False


def resolve_marker(
    ctx: GraphContext,
    marker: Marker | str,
    *,
    unknown: UnknownMarkerPolicy = UnknownMarkerPolicy.ERROR,
) -> frozenset[Node]:
    """Every node carrying ``marker`` across all controllers of the snapshot."""
    marker = as_marker(marker)
    if not check_declared(ctx, marker, unknown=unknown):
        return frozenset()
    return frozenset(
        node
        for controller in ctx.controllers()
        for node in ctx.nodes_for_controller(controller)
        if ctx.has_marker(marker, node)
    )
