"""Tests for the command line interface."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from pricecheck.errors import NetworkError
from pricecheck.main import EXIT_CODE_FAIL, EXIT_CODE_OK, app
from pricecheck.pipeline import RunReport

runner = CliRunner()


@pytest.fixture
def data_path(tmp_path, monkeypatch):
    path = tmp_path / "pricing.json"
    monkeypatch.setenv("DATA_PATH", str(path))
    monkeypatch.setenv("STORE_BACKEND", "file")
    monkeypatch.delenv("EXTRACTION_API_KEY", raising=False)
    monkeypatch.delenv("EXTRACTION_BASE_URL", raising=False)
    return path


def test_seed_then_compare(data_path) -> None:
    result = runner.invoke(app, ["seed"])

    assert result.exit_code == EXIT_CODE_OK
    assert "Seeded 12 models" in result.output
    assert data_path.exists()

    result = runner.invoke(app, ["compare"])

    assert result.exit_code == EXIT_CODE_OK
    assert "Best overall" in result.output


def test_seed_twice_is_harmless(data_path) -> None:
    runner.invoke(app, ["seed"])

    result = runner.invoke(app, ["seed"])

    assert result.exit_code == EXIT_CODE_OK
    assert "already exists" in result.output


def test_compare_without_data_fails(data_path) -> None:
    result = runner.invoke(app, ["compare"])

    assert result.exit_code == EXIT_CODE_FAIL
    assert "No pricing data found" in result.output


def test_top_and_search(data_path) -> None:
    runner.invoke(app, ["seed"])

    assert runner.invoke(app, ["top", "--limit", "3"]).exit_code == EXIT_CODE_OK

    result = runner.invoke(app, ["search", "nomatch-xyz"])
    assert result.exit_code == EXIT_CODE_OK
    assert "No models match" in result.output


def test_merge_valid_payload(data_path) -> None:
    runner.invoke(app, ["seed"])
    payload = json.dumps(
        {
            "id": "xai",
            "name": "xAI",
            "models": [{"name": "Grok 2", "input_per_million": 2, "output_per_million": 10}],
        }
    )

    result = runner.invoke(app, ["merge", "xai", payload])

    assert result.exit_code == EXIT_CODE_OK
    document = json.loads(data_path.read_text(encoding="utf-8"))
    assert document["metadata"]["total_model_count"] == 13


def test_merge_payload_from_file(data_path, tmp_path) -> None:
    payload_file = tmp_path / "openai.json"
    payload_file.write_text(
        json.dumps(
            {
                "id": "openai",
                "name": "OpenAI",
                "models": [{"name": "GPT-4o", "input_per_million": 2.5, "output_per_million": 10}],
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["merge", "openai", str(payload_file)])

    assert result.exit_code == EXIT_CODE_OK


def test_merge_invalid_payload_fails(data_path) -> None:
    result = runner.invoke(app, ["merge", "openai", '{"id": "openai"}'])

    assert result.exit_code == EXIT_CODE_FAIL
    assert "Invalid provider data format" in result.output
    assert not data_path.exists()


def test_merge_missing_arguments_fails(data_path) -> None:
    result = runner.invoke(app, ["merge", "openai"])

    assert result.exit_code != EXIT_CODE_OK


def test_approve_without_pending_fails(data_path) -> None:
    result = runner.invoke(app, ["approve"])

    assert result.exit_code == EXIT_CODE_FAIL
    assert "No pending dataset" in result.output


def test_extract_without_credentials_fails(data_path) -> None:
    result = runner.invoke(app, ["extract", "https://docs.x.ai/pricing"])

    assert result.exit_code == EXIT_CODE_FAIL
    assert "EXTRACTION_API_KEY" in result.output


def test_submit_requires_website(data_path) -> None:
    result = runner.invoke(app, ["submit", "--provider", "Acme"])

    assert result.exit_code == EXIT_CODE_FAIL
    assert "Provider name and website are required" in result.output


def test_submit_queues_submission(data_path) -> None:
    result = runner.invoke(
        app,
        [
            "submit",
            "--provider", "Acme",
            "--website", "https://acme.ai/pricing",
            "--model", "Acme 1",
            "--input", "1.5",
            "--output", "3",
        ],
    )

    assert result.exit_code == EXIT_CODE_OK
    queued = json.loads((data_path.parent / "submissions.json").read_text(encoding="utf-8"))
    assert queued[0]["status"] == "pending"
    assert queued[0]["input_price"] == 1.5


def test_submit_with_corrupt_queue_fails_cleanly(data_path) -> None:
    (data_path.parent / "submissions.json").write_text("{not json", encoding="utf-8")

    result = runner.invoke(
        app,
        ["submit", "--provider", "Acme", "--website", "https://acme.ai/pricing"],
    )

    assert result.exit_code == EXIT_CODE_FAIL
    assert "Error:" in result.output


def test_update_prints_report(data_path) -> None:
    report = RunReport(published=True, total_models=12)

    with patch("pricecheck.main.run_once", new=AsyncMock(return_value=report)) as run:
        result = runner.invoke(app, ["update", "--auto-publish"])

    assert result.exit_code == EXIT_CODE_OK
    assert "Published" in result.output
    assert run.call_args.kwargs == {"auto_publish": True}


def test_update_failure_exits_nonzero(data_path) -> None:
    with patch("pricecheck.main.run_once", new=AsyncMock(side_effect=NetworkError("down"))):
        result = runner.invoke(app, ["update"])

    assert result.exit_code == EXIT_CODE_FAIL
