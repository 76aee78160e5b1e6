from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from flowpolicy.compiler import compile_statements
from flowpolicy.config import (
    logging_defaults,
    logging_level,
    merge_payload,
    runner_defaults,
    runner_settings,
)
from flowpolicy.exceptions import FlowPolicyError
from flowpolicy.graph import load_graph
from flowpolicy.log import setup_logging
from flowpolicy.runner import Diagnostics, Policy, PolicyRunner
from flowpolicy.syntax import parse_policy

app = typer.Typer(add_completion=False, help="Verify quantified flow policies against a dependency graph.")

EXIT_OK = 0
EXIT_VIOLATION = 1
EXIT_ERROR = 2


def _fail(message: str) -> typer.Exit:
    typer.echo(f"error: {message}", err=True)
    return typer.Exit(code=EXIT_ERROR)


def _read_policy(path: Path, name: Optional[str]) -> Policy:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise _fail(f"cannot read policy {path}: {exc}") from exc
    try:
        return parse_policy(text, name=name or path.stem)
    except FlowPolicyError as exc:
        raise _fail(f"{path}: {exc}") from exc


@app.command()
def check(
    policy_path: Path = typer.Argument(..., metavar="POLICY", help="Policy file to verify."),
    graph: Path = typer.Option(..., "--graph", help="Graph snapshot (JSON)."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to flowpolicy.toml."),
    root: Path = typer.Option(Path("."), "--root", help="Directory searched for flowpolicy.toml."),
    mode: Optional[str] = typer.Option(None, "--mode", help="fail_fast or exhaustive."),
    unknown_markers: Optional[str] = typer.Option(None, "--unknown-markers", help="error or empty."),
    workers: Optional[int] = typer.Option(None, "--workers", help="Statements evaluated in parallel."),
    name: Optional[str] = typer.Option(None, "--name", help="Policy name (default: file stem)."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report here."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run every statement of POLICY against the graph snapshot."""
    try:
        level = logging.DEBUG if verbose else logging_level(logging_defaults(root, config))
        setup_logging(level)
        payload = {"mode": mode, "unknown_markers": unknown_markers, "workers": workers}
        settings = runner_settings(merge_payload(payload, runner_defaults(root, config)))
    except FlowPolicyError as exc:
        raise _fail(str(exc)) from exc

    policy = _read_policy(policy_path, name)
    diagnostics = Diagnostics()
    runner = PolicyRunner(settings=settings, sink=diagnostics)
    try:
        ctx = load_graph(graph)
        outcome = runner.evaluate(policy, ctx)
    except FlowPolicyError as exc:
        raise _fail(str(exc)) from exc

    for entry in diagnostics.entries:
        status = "PASS" if entry.passed else "FAIL"
        typer.echo(f"{status} {entry.statement}" + ("" if entry.passed else f": {entry.message}"))
    if report is not None:
        report.parent.mkdir(parents=True, exist_ok=True)
        report.write_text(json.dumps(outcome.to_json(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    if outcome.passed:
        typer.echo(f"Policy {policy.name} successful")
        raise typer.Exit(code=EXIT_OK)
    typer.echo(f"Policy {policy.name} violated", err=True)
    raise typer.Exit(code=EXIT_VIOLATION)


@app.command()
def explain(
    policy_path: Path = typer.Argument(..., metavar="POLICY", help="Policy file to compile."),
    name: Optional[str] = typer.Option(None, "--name", help="Policy name (default: file stem)."),
) -> None:
    """Print the verification procedure compiled for each statement."""
    policy = _read_policy(policy_path, name)
    typer.echo(f"policy {policy.name}")
    for compiled in compile_statements(policy.statements):
        typer.echo(compiled.describe())


def main() -> None:
    app()
