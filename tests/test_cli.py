from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from flowpolicy import cli

POLICY = """\
card_consent: if some credit_card flows to some store
    then some consent has control flow influence on store.
"""


def _graph_payload(*, guarded: bool) -> dict[str, object]:
    edges = [
        {"from": "card", "to": "store", "kind": "data"},
        {"from": "consent", "to": "decision", "kind": "data"},
    ]
    if guarded:
        edges.append({"from": "decision", "to": "store", "kind": "control"})
    return {
        "controllers": {"checkout": ["card", "store", "consent", "decision"]},
        "markers": {"card": ["credit_card"], "store": ["store"], "consent": ["consent"]},
        "edges": edges,
    }


@pytest.fixture
def workspace(tmp_path: Path):
    def _write(*, guarded: bool = True, policy: str = POLICY) -> tuple[Path, Path]:
        policy_path = tmp_path / "payments.policy"
        policy_path.write_text(policy, encoding="utf-8")
        graph_path = tmp_path / "graph.json"
        graph_path.write_text(json.dumps(_graph_payload(guarded=guarded)), encoding="utf-8")
        return policy_path, graph_path

    return _write


def _check(tmp_path: Path, policy: Path, graph: Path, *extra: str):
    runner = CliRunner()
    return runner.invoke(
        cli.app,
        ["check", str(policy), "--graph", str(graph), "--root", str(tmp_path), *extra],
    )


def test_check_passes_guarded_graph(tmp_path: Path, workspace) -> None:
    policy, graph = workspace(guarded=True)
    result = _check(tmp_path, policy, graph)
    assert result.exit_code == 0, result.output
    assert "PASS card_consent" in result.output
    assert "Policy payments successful" in result.output


def test_check_fails_unguarded_graph(tmp_path: Path, workspace) -> None:
    policy, graph = workspace(guarded=False)
    report = tmp_path / "out" / "report.json"
    result = _check(tmp_path, policy, graph, "--report", str(report), "--name", "pci")
    assert result.exit_code == 1
    assert "FAIL card_consent" in result.output
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["policy"] == "pci"
    assert payload["passed"] is False
    assert payload["results"][0]["violations"][0]["destination"] == "'store'"


def test_check_reports_syntax_errors(tmp_path: Path, workspace) -> None:
    policy, graph = workspace(policy="if some credit_card flows to some store.")
    result = _check(tmp_path, policy, graph)
    assert result.exit_code == 2
    assert "expected 'then'" in result.output


def test_check_reports_unknown_markers(tmp_path: Path, workspace) -> None:
    policy, graph = workspace(policy="some credit_card flows to some ledger.")
    result = _check(tmp_path, policy, graph)
    assert result.exit_code == 2
    assert "'ledger'" in result.output
    relaxed = _check(tmp_path, policy, graph, "--unknown-markers", "empty")
    assert relaxed.exit_code == 0, relaxed.output


def test_check_rejects_bad_mode(tmp_path: Path, workspace) -> None:
    policy, graph = workspace()
    result = _check(tmp_path, policy, graph, "--mode", "eventually")
    assert result.exit_code == 2
    assert "mode must be one of" in result.output


def test_check_uses_config_file(tmp_path: Path, workspace) -> None:
    policy, graph = workspace(policy="some credit_card flows to some ledger.")
    (tmp_path / "flowpolicy.toml").write_text('[runner]\nunknown_markers = "empty"\n')
    result = _check(tmp_path, policy, graph)
    assert result.exit_code == 0, result.output


def test_check_reports_missing_graph(tmp_path: Path, workspace) -> None:
    policy, _graph = workspace()
    result = _check(tmp_path, policy, tmp_path / "absent.json")
    assert result.exit_code == 2
    assert "cannot read graph snapshot" in result.output


def test_explain_prints_compiled_plans(tmp_path: Path, workspace) -> None:
    policy, _graph = workspace(policy="always, all credit_card flows to all store.")
    result = CliRunner().invoke(cli.app, ["explain", str(policy)])
    assert result.exit_code == 0, result.output
    assert "policy payments" in result.output
    assert "statement_1: all credit_card flows to all store then always" in result.output
    assert "every source reaches the entire destination set" in result.output


def test_check_rejects_unknown_logging_level(tmp_path: Path, workspace) -> None:
    policy, graph = workspace()
    (tmp_path / "flowpolicy.toml").write_text('[logging]\nlevel = "loud"\n')
    result = _check(tmp_path, policy, graph)
    assert result.exit_code == 2
    assert "level must be one of" in result.output
