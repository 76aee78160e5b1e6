from __future__ import annotations

import dataclasses

import pytest

from flowpolicy import obligations
from flowpolicy.exceptions import MalformedStatement
from flowpolicy.model import (
    ALWAYS,
    EdgeKind,
    Marker,
    Obligation,
    ObligationShape,
    Quantifier,
    Statement,
)


def test_marker_intern_returns_same_object_for_equal_text() -> None:
    first = Marker.intern("credit_card")
    second = Marker.intern("credit_card")
    assert first is second
    assert first == Marker("credit_card")
    assert Marker.intern("Credit_Card") != first


def test_marker_rejects_empty_text() -> None:
    with pytest.raises(MalformedStatement):
        Marker("")


def test_statement_coerces_strings() -> None:
    statement = Statement(
        name="s",
        source="card",
        destination="store",
        edge_kind="control",
        source_quantifier="ALL",
        destination_quantifier="some",
    )
    assert statement.source is Marker.intern("card")
    assert statement.edge_kind is EdgeKind.CONTROL
    assert statement.quantifiers == (Quantifier.ALL, Quantifier.SOME)
    assert statement.obligation is ALWAYS


def test_statement_wraps_plain_callable_as_pair_obligation() -> None:
    def checked(ctx, source, destination):
        return True

    statement = Statement(name="s", source="a", destination="b", obligation=checked)
    assert statement.obligation.shape is ObligationShape.PAIR
    assert statement.obligation.label == "checked"


@pytest.mark.parametrize("edge_kind", ["ambient", 3, None])
def test_statement_rejects_unknown_edge_kind(edge_kind) -> None:
    with pytest.raises(MalformedStatement, match="edge kind"):
        Statement(name="s", source="a", destination="b", edge_kind=edge_kind)


def test_statement_rejects_unknown_quantifier() -> None:
    with pytest.raises(MalformedStatement, match="source quantifier"):
        Statement(name="s", source="a", destination="b", source_quantifier="most")


def test_statement_rejects_non_callable_obligation() -> None:
    with pytest.raises(MalformedStatement, match="callable"):
        Statement(name="s", source="a", destination="b", obligation="yes")


def test_statement_rejects_obligation_with_wrong_arity() -> None:
    with pytest.raises(MalformedStatement, match="must accept"):
        Statement(name="s", source="a", destination="b", obligation=lambda destination: True)


@pytest.mark.parametrize("destination_quantifier", [Quantifier.SOME])
def test_set_obligation_requires_all_destination_quantifier(destination_quantifier) -> None:
    with pytest.raises(MalformedStatement, match="requires the 'all' destination quantifier"):
        Statement(
            name="s",
            source="a",
            destination="b",
            destination_quantifier=destination_quantifier,
            obligation=obligations.premise_size_at_least(1),
        )


@pytest.mark.parametrize("source_quantifier", [Quantifier.SOME, Quantifier.ALL])
def test_set_obligation_accepted_with_all_destination(source_quantifier) -> None:
    statement = Statement(
        name="s",
        source="a",
        destination="b",
        source_quantifier=source_quantifier,
        destination_quantifier=Quantifier.ALL,
        obligation=obligations.premise_matches("b"),
    )
    assert statement.obligation.shape is ObligationShape.SET
    assert statement.markers() == {Marker("a"), Marker("b")}


def test_statement_is_immutable() -> None:
    statement = Statement(name="s", source="a", destination="b")
    with pytest.raises(dataclasses.FrozenInstanceError):
        statement.source_quantifier = Quantifier.ALL  # type: ignore[misc]


def test_statement_requires_a_name() -> None:
    with pytest.raises(MalformedStatement, match="name"):
        Statement(name="  ", source="a", destination="b")


def test_obligation_shape_is_validated() -> None:
    with pytest.raises(MalformedStatement, match="obligation shape"):
        Obligation("triple", lambda ctx, a, b: True)


def test_render_names_relation_and_obligation() -> None:
    statement = Statement(
        name="s",
        source="a",
        destination="b",
        edge_kind=EdgeKind.CONTROL,
        source_quantifier=Quantifier.ALL,
    )
    assert statement.render() == "all a has control flow influence on some b then always"
