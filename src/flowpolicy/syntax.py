"""Parser for quantified flow statements.

A policy is a sequence of statements, each terminated by a period::

    card_consent: if some credit_card flows to some store
        then some consent has control flow influence on store.
    always, all community flows to all db_write.

A bare marker inside an obligation refers to the source or destination bound
by the premise; quantified markers (``some m`` / ``all m``) range over every
node carrying the marker. ``and`` binds tighter than ``or``.
``a flows to b through some m`` requires every data path from ``a`` to
``b`` to pass a node marked ``m``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import re

from flowpolicy.exceptions import MalformedStatement, PolicySyntaxError
from flowpolicy.model import ALWAYS, EdgeKind, Marker, Obligation, Quantifier, Statement
from flowpolicy.obligations import Endpoint, all_of, any_of, authorized_by, influence, through
from flowpolicy.runner import Policy

KEYWORDS = frozenset(
    {
        "all",
        "always",
        "and",
        "authorized",
        "by",
        "control",
        "flow",
        "flows",
        "has",
        "if",
        "influence",
        "is",
        "on",
        "or",
        "some",
        "then",
        "through",
        "to",
    }
)

_DATA_RELATION = ("flows", "to")
_CONTROL_RELATION = ("has", "control", "flow", "influence", "on")

_TOKEN_RE = re.compile(
    r"(?P<space>[ \t\r]+)"
    r"|(?P<newline>\n)"
    r"|(?P<comment>#[^\n]*)"
    r"|(?P<word>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<punct>[().:,])"
)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int
    column: int

    def describe(self) -> str:
        return "end of input" if self.kind == "eof" else repr(self.text)


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    line = 1
    line_start = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise PolicySyntaxError(
                f"unexpected character {text[pos]!r}", line=line, column=pos - line_start + 1
            )
        kind = match.lastgroup
        if kind == "newline":
            line += 1
            line_start = match.end()
        elif kind in ("word", "punct"):
            tokens.append(Token(kind, match.group(), line, match.start() - line_start + 1))
        pos = match.end()
    tokens.append(Token("eof", "", line, pos - line_start + 1))
    return tokens


@dataclass(frozen=True)
class _Premise:
    source_quantifier: Quantifier
    source: Marker
    edge_kind: EdgeKind
    destination_quantifier: Quantifier
    destination: Marker


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.index = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.peek()
        if token.kind != "eof":
            self.index += 1
        return token

    def at(self, *words: str) -> bool:
        return all(self.peek(offset).text == word for offset, word in enumerate(words))

    def error(self, message: str, token: Token | None = None) -> PolicySyntaxError:
        token = token or self.peek()
        return PolicySyntaxError(message, line=token.line, column=token.column)

    def expect(self, text: str) -> Token:
        if not self.at(text):
            raise self.error(f"expected {text!r}, found {self.peek().describe()}")
        return self.advance()

    def policy(self, name: str) -> Policy:
        statements: list[Statement] = []
        while self.peek().kind != "eof":
            statements.append(self.statement(len(statements) + 1))
        try:
            return Policy(name=name, statements=tuple(statements))
        except MalformedStatement as exc:
            raise PolicySyntaxError(str(exc), line=1, column=1) from exc

    def statement(self, index: int) -> Statement:
        start = self.peek()
        name = f"statement_{index}"
        if start.kind == "word" and start.text not in KEYWORDS and self.peek(1).text == ":":
            name = self.advance().text
            self.advance()
        if self.at("always"):
            self.advance()
            if self.at(","):
                self.advance()
        conditional = self.at("if")
        if conditional:
            self.advance()
        premise = self.premise()
        obligation = ALWAYS
        if not conditional and self.at("through"):
            if premise.edge_kind is not EdgeKind.DATA:
                raise self.error("'through' only follows 'flows to'")
            obligation = through(
                self.checkpoint(),
                Endpoint.source(label=premise.source.text),
                Endpoint.destination(label=premise.destination.text),
            )
        if self.at("then"):
            self.advance()
            stated = self.obligation(premise)
            obligation = stated if obligation is ALWAYS else all_of(obligation, stated)
        elif conditional:
            raise self.error(f"expected 'then', found {self.peek().describe()}")
        self.expect(".")
        try:
            return Statement(
                name=name,
                source=premise.source,
                destination=premise.destination,
                edge_kind=premise.edge_kind,
                source_quantifier=premise.source_quantifier,
                destination_quantifier=premise.destination_quantifier,
                obligation=obligation,
            )
        except MalformedStatement as exc:
            raise self.error(str(exc), start) from exc

    def premise(self) -> _Premise:
        source_quantifier = self.quantifier()
        source_token = self.peek()
        source = self.marker()
        edge_kind = self.relation()
        destination_quantifier = self.quantifier()
        destination = self.marker()
        if source == destination:
            raise self.error(
                f"premise uses marker {source} on both sides; obligations could not tell them apart",
                source_token,
            )
        return _Premise(source_quantifier, source, edge_kind, destination_quantifier, destination)

    def checkpoint(self) -> Marker:
        self.expect("through")
        self.expect("some")
        return self.marker()

    def quantifier(self) -> Quantifier:
        if self.at("some") or self.at("all"):
            return Quantifier(self.advance().text)
        raise self.error(f"expected 'some' or 'all', found {self.peek().describe()}")

    def marker(self) -> Marker:
        token = self.peek()
        if token.kind != "word" or token.text in KEYWORDS:
            raise self.error(f"expected a marker name, found {token.describe()}")
        self.advance()
        return Marker.intern(token.text)

    def relation(self) -> EdgeKind:
        if self.at(*_DATA_RELATION):
            self.index += len(_DATA_RELATION)
            return EdgeKind.DATA
        if self.at(*_CONTROL_RELATION):
            self.index += len(_CONTROL_RELATION)
            return EdgeKind.CONTROL
        raise self.error(
            f"expected 'flows to' or 'has control flow influence on', found {self.peek().describe()}"
        )

    def obligation(self, premise: _Premise) -> Obligation:
        parts = [self.conjunction(premise)]
        while self.at("or"):
            self.advance()
            parts.append(self.conjunction(premise))
        return parts[0] if len(parts) == 1 else any_of(*parts)

    def conjunction(self, premise: _Premise) -> Obligation:
        parts = [self.atom(premise)]
        while self.at("and"):
            self.advance()
            parts.append(self.atom(premise))
        return parts[0] if len(parts) == 1 else all_of(*parts)

    def atom(self, premise: _Premise) -> Obligation:
        if self.at("("):
            self.advance()
            inner = self.obligation(premise)
            self.expect(")")
            return inner
        subject_token = self.peek()
        subject = self.endpoint(premise)
        if self.at("is"):
            self.advance()
            self.expect("authorized")
            self.expect("by")
            self.expect("some")
            marker = self.marker()
            if not subject.bound:
                raise self.error("only a premise marker can be authorized", subject_token)
            return authorized_by(marker, subject)
        edge_kind = self.relation()
        target = self.endpoint(premise)
        if self.at("through"):
            if edge_kind is not EdgeKind.DATA:
                raise self.error("'through' only follows 'flows to'")
            return through(self.checkpoint(), subject, target)
        return influence(subject, target, edge_kind)

    def endpoint(self, premise: _Premise) -> Endpoint:
        if self.at("some") or self.at("all"):
            quantifier = self.quantifier()
            return Endpoint.marked(self.marker(), quantifier)
        token = self.peek()
        marker = self.marker()
        if marker == premise.source:
            return Endpoint.source(label=marker.text)
        if marker == premise.destination:
            return Endpoint.destination(label=marker.text)
        raise self.error(
            f"marker {marker} is not bound by the premise; quantify it with 'some' or 'all'",
            token,
        )


def parse_statement(text: str, name: str | None = None) -> Statement:
    """Parse exactly one statement; the trailing period is optional."""
    source = text.strip()
    if not source.endswith("."):
        source += "."
    policy = parse_policy(source, name="statement")
    if len(policy.statements) != 1:
        raise PolicySyntaxError(
            f"expected one statement, found {len(policy.statements)}", line=1, column=1
        )
    statement = policy.statements[0]
    if name is None:
        return statement
    try:
        return replace(statement, name=name)
    except MalformedStatement as exc:
        raise PolicySyntaxError(str(exc), line=1, column=1) from exc


def parse_policy(text: str, name: str) -> Policy:
    return _Parser(tokenize(text)).policy(name)
