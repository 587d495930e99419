"""Integration tests for main CLI."""

import json
from unittest.mock import MagicMock, patch

from conftest import VALID_REVIEW

from pr_review_guard.execution.degradation import DegradationMode, ServiceName
from pr_review_guard.main import build_parser, load_files, main
from pr_review_guard.pipeline import PipelineResult


def _write_config(tmp_path, body=""):
    config_file = tmp_path / ".ai-review.yaml"
    config_file.write_text(body)
    return str(config_file)


def test_parser_gate_arguments():
    args = build_parser().parse_args([
        "gate", "--review", "r.json", "--branch", "main", "--author", "alice",
        "--message", "URGENT fix",
    ])

    assert args.command == "gate"
    assert args.review == "r.json"
    assert args.message == "URGENT fix"
    assert args.environment is None


def test_load_files_skips_ignored(tmp_path):
    (tmp_path / "app.py").write_text("print('hi')\n")
    (tmp_path / "poetry.lock").write_text("lock")

    files = load_files(
        [str(tmp_path / "app.py"), str(tmp_path / "poetry.lock")], ["*.lock"]
    )

    assert [f.path for f in files] == [str(tmp_path / "app.py")]
    assert files[0].size_bytes == 12
    assert files[0].estimated_tokens == 3


def test_analyze_small_changeset(tmp_path, capsys):
    source = tmp_path / "app.py"
    source.write_text("x = 1\n")

    exit_code = main(["--config", _write_config(tmp_path), "analyze", str(source)])

    assert exit_code == 0
    assert "Within limits" in capsys.readouterr().out


def test_analyze_oversized_file_exits_nonzero(tmp_path, capsys):
    source = tmp_path / "dump.sql"
    source.write_text("x" * 200)
    config = _write_config(tmp_path, "limits:\n  max_file_size_bytes: 100\n  max_tokens: 10000\n")

    exit_code = main(["--config", config, "analyze", str(source)])

    assert exit_code == 1
    assert "SKIP (oversized_files)" in capsys.readouterr().out


def test_gate_blocks_high_issue_on_main(tmp_path, capsys):
    review_file = tmp_path / "review.json"
    review_file.write_text(json.dumps(VALID_REVIEW))

    exit_code = main([
        "--config", _write_config(tmp_path),
        "gate", "--review", str(review_file), "--branch", "main", "--author", "alice",
        "--message", "Add query",
    ])

    assert exit_code == 1
    assert "❌ Quality gate failed" in capsys.readouterr().out


def test_gate_override_passes(tmp_path, capsys):
    review_file = tmp_path / "review.json"
    review_file.write_text(json.dumps({
        "severity_breakdown": {"high": 1},
        "commit_author": "alice",
        "target_branch": "main",
        "commit_message": "URGENT: payment outage",
    }))

    exit_code = main(["--config", _write_config(tmp_path), "gate", "--review", str(review_file)])

    assert exit_code == 0
    assert "URGENT override used" in capsys.readouterr().out


def test_gate_feature_branch_passes(tmp_path):
    review_file = tmp_path / "review.json"
    review_file.write_text(json.dumps(VALID_REVIEW))

    exit_code = main([
        "--config", _write_config(tmp_path),
        "gate", "--review", str(review_file), "--branch", "feature/x",
    ])

    assert exit_code == 0


def test_invalid_config_exits_nonzero(tmp_path, capsys):
    config = _write_config(tmp_path, "quality_gates:\n  severity_threshold: CRITICAL\n")

    exit_code = main(["--config", config, "health"])

    assert exit_code == 1
    assert "Config error" in capsys.readouterr().err


def test_missing_review_file_is_reported(tmp_path, capsys):
    exit_code = main([
        "--config", _write_config(tmp_path), "gate", "--review", str(tmp_path / "missing.json"),
    ])

    assert exit_code == 1
    assert "Error:" in capsys.readouterr().err


@patch("pr_review_guard.main.default_probes")
def test_health_offline_exits_nonzero(mock_probes, tmp_path, capsys):
    mock_probes.return_value = {}

    exit_code = main(["--config", _write_config(tmp_path), "health"])

    assert exit_code == 1
    assert "Mode: OFFLINE" in capsys.readouterr().out


@patch("pr_review_guard.main.default_probes")
def test_health_all_up(mock_probes, tmp_path, capsys):
    mock_probes.return_value = {name: (lambda: True) for name in ServiceName}

    exit_code = main(["--config", _write_config(tmp_path), "health"])

    assert exit_code == 0
    assert "Mode: FULL" in capsys.readouterr().out


def test_review_requires_api_key(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    source = tmp_path / "app.py"
    source.write_text("x = 1\n")

    with patch("dotenv.load_dotenv"):
        exit_code = main(["--config", _write_config(tmp_path), "review", str(source)])

    assert exit_code == 1
    assert "ANTHROPIC_API_KEY not set" in capsys.readouterr().err


@patch("pr_review_guard.main.ReviewPipeline")
@patch("pr_review_guard.main.AnthropicReviewInvoker")
@patch("pr_review_guard.main.default_probes")
def test_review_runs_pipeline(mock_probes, mock_invoker_class, mock_pipeline_class,
                              tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    mock_probes.return_value = {}
    source = tmp_path / "app.py"
    source.write_text("x = 1\n")
    output_file = tmp_path / "out.json"

    gate = MagicMock(blocked=True)
    mock_pipeline = MagicMock()
    mock_pipeline.run.return_value = PipelineResult(
        mode=DegradationMode.FULL, response=VALID_REVIEW, gate=gate
    )
    mock_pipeline.evaluator.generate_status_message.return_value = "❌ Quality gate failed: x"
    mock_pipeline_class.return_value = mock_pipeline

    with patch("pr_review_guard.main.print_review_result") as mock_print:
        exit_code = main([
            "--config", _write_config(tmp_path),
            "review", str(source), "--branch", "main", "--author", "alice",
            "--message", "Add query", "--output", str(output_file),
        ])

    assert exit_code == 1
    mock_invoker_class.assert_called_once()
    files, context = mock_pipeline.run.call_args.args
    assert [f.path for f in files] == [str(source)]
    assert context.target_branch == "main"
    assert mock_pipeline.run.call_args.kwargs["commit_message"] == "Add query"
    mock_print.assert_called_once()
    assert json.loads(output_file.read_text()) == VALID_REVIEW
