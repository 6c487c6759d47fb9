"""Unit tests for the command line interface."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from agent_flow_engine.cli import (
    EXIT_CANCELLED,
    EXIT_INVALID,
    EXIT_OK,
    EXIT_RUN_FAILED,
    _parse_var,
    main,
)

FLOW: dict[str, Any] = {
    "code": "fetch-and-summarize",
    "inputs": [
        {"name": "topic", "type": "string", "required": True},
        {"name": "pages", "type": "json", "default": ["intro", "usage"]},
    ],
    "flow": {
        "kind": "sequence",
        "children": [
            {
                "kind": "step",
                "agent": "fetch",
                "inputs": {"pages": {"kind": "var", "name": "pages"}},
            },
            {
                "kind": "loop",
                "source": {"kind": "path", "path": "$.input[0]"},
                "body": {
                    "kind": "step",
                    "agent": "summarize",
                    "inputs": {"text": {"kind": "template", "template": "@topic: @item"}},
                },
            },
        ],
    },
}


@pytest.fixture
def flow_file(clean_env: None, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("FLOW_ENGINE_LLM_PROVIDER", "echo")
    monkeypatch.setenv("FLOW_ENGINE_LOG_LEVEL", "WARNING")
    path = tmp_path / "flow.json"
    path.write_text(json.dumps(FLOW), encoding="utf-8")
    return path


def test_parse_var_reads_json_when_possible() -> None:
    assert _parse_var("limit=3") == ("limit", 3)
    assert _parse_var('pages=["a"]') == ("pages", ["a"])
    assert _parse_var("topic=rust lang") == ("topic", "rust lang")


def test_annotate_prints_ids_and_labels(
    flow_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["annotate", str(flow_file)]) == EXIT_OK

    annotated = json.loads(capsys.readouterr().out)
    fetch = annotated["flow"]["children"][0]
    assert fetch["id"]
    assert fetch["label"] == "fetch"
    assert fetch["inputs"] == FLOW["flow"]["children"][0]["inputs"]


def test_annotate_writes_output_file(flow_file: Path, tmp_path: Path) -> None:
    output = tmp_path / "annotated.json"

    assert main(["annotate", str(flow_file), "--output", str(output)]) == EXIT_OK

    annotated = json.loads(output.read_text(encoding="utf-8"))
    assert annotated["flow"]["children"][1]["body"]["label"] == "summarize"


def test_resolve_prints_addressed_node(
    flow_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["resolve", str(flow_file), "$.input[1].input"]) == EXIT_OK

    node = json.loads(capsys.readouterr().out)
    assert node["agent"] == "summarize"


def test_resolve_reports_bad_paths(
    flow_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["resolve", str(flow_file), "$.input[7]"]) == EXIT_INVALID

    assert "input[7]" in capsys.readouterr().err


def test_run_prints_result_tree(flow_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["run", str(flow_file), "--var", "topic=rust"]) == EXIT_OK

    result = json.loads(capsys.readouterr().out)
    assert result["status"] == "succeeded"
    assert result["tree"]["output"] == [["intro", "usage"], ["rust: intro", "rust: usage"]]


def test_run_reads_variables_file_and_streams_events(
    flow_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    variables = tmp_path / "vars.json"
    variables.write_text(json.dumps({"topic": "go", "pages": ["faq"]}), encoding="utf-8")

    code = main(["run", str(flow_file), "--vars-file", str(variables), "--events"])

    captured = capsys.readouterr()
    assert code == EXIT_OK
    assert json.loads(captured.out)["tree"]["output"] == [["faq"], ["go: faq"]]
    events = [json.loads(line) for line in captured.err.splitlines() if '"previous"' in line]
    assert events[0]["path"] == "$"
    assert events[-1]["status"] == "succeeded"


def test_run_with_missing_variable_fails(
    flow_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["run", str(flow_file)]) == EXIT_RUN_FAILED

    result = json.loads(capsys.readouterr().out)
    assert result["status"] == "failed"


def test_run_can_resume(flow_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    annotated = tmp_path / "annotated.json"
    main(["annotate", str(flow_file), "--output", str(annotated)])
    main(["run", str(annotated)])
    previous = tmp_path / "previous.json"
    previous.write_text(capsys.readouterr().out.split("\n", 1)[1], encoding="utf-8")

    code = main(["run", str(annotated), "--var", "topic=rust", "--resume", str(previous)])

    assert code == EXIT_OK
    result = json.loads(capsys.readouterr().out)
    fetch_events = [e for e in result["trace"] if e["path"] == "$.input[0]"]
    assert fetch_events[-1]["message"] == "reused from previous run"


def test_run_resumes_a_document_without_ids(
    flow_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["run", str(flow_file)]) == EXIT_RUN_FAILED
    previous = tmp_path / "previous.json"
    previous.write_text(capsys.readouterr().out, encoding="utf-8")

    code = main(["run", str(flow_file), "--var", "topic=rust", "--resume", str(previous)])

    assert code == EXIT_OK
    result = json.loads(capsys.readouterr().out)
    fetch_events = [e for e in result["trace"] if e["path"] == "$.input[0]"]
    assert fetch_events[-1]["message"] == "reused from previous run"
    first_run = json.loads(previous.read_text(encoding="utf-8"))
    assert result["tree"]["children"][0]["node_id"] == first_run["tree"]["children"][0]["node_id"]


def test_invalid_document_is_rejected(
    clean_env: None, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"code": "x", "flow": {"kind": "teleport"}}), encoding="utf-8")

    assert main(["annotate", str(path)]) == EXIT_INVALID
    assert "Invalid flow document" in capsys.readouterr().err


def test_configuration_errors_exit_early(
    flow_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("FLOW_ENGINE_LOG_FORMAT", "xml")

    assert main(["annotate", str(flow_file)]) == EXIT_INVALID
    assert "Configuration error" in capsys.readouterr().err


def test_cancelled_run_exit_code(
    flow_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    from agent_flow_engine.flows import RunCancelledError, RunResult, RunStatus
    from agent_flow_engine.flows.results import NodeResult

    partial = RunResult(
        status=RunStatus.CANCELLED,
        tree=NodeResult(path="$", node_id="r", kind="sequence", label="s", status="cancelled"),
    )

    async def cancelled_run(*args: Any, **kwargs: Any) -> RunResult:
        raise RunCancelledError(partial)

    monkeypatch.setattr("agent_flow_engine.cli.FlowRunner.run", cancelled_run)

    assert main(["run", str(flow_file), "--var", "topic=x"]) == EXIT_CANCELLED
    assert json.loads(capsys.readouterr().out)["status"] == "cancelled"
