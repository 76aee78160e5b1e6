"""flowpolicy package root."""

from flowpolicy.compiler import CompiledStatement, compile_statement
from flowpolicy.exceptions import (
    FlowPolicyError,
    MalformedStatement,
    NoFlowFromSource,
    PolicySyntaxError,
    PolicyViolation,
    UnknownMarker,
)
from flowpolicy.model import EdgeKind, Marker, Obligation, ObligationShape, Quantifier, Statement
from flowpolicy.runner import Policy, PolicyRunner, run_policy
from flowpolicy.syntax import parse_policy, parse_statement

__all__ = [
    "__version__",
    "CompiledStatement",
    "EdgeKind",
    "FlowPolicyError",
    "MalformedStatement",
    "Marker",
    "NoFlowFromSource",
    "Obligation",
    "ObligationShape",
    "Policy",
    "PolicyRunner",
    "PolicySyntaxError",
    "PolicyViolation",
    "Quantifier",
    "Statement",
    "UnknownMarker",
    "compile_statement",
    "parse_policy",
    "parse_statement",
    "run_policy",
]

__version__ = "0.1.0"
