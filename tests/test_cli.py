import json
from pathlib import Path

from typer.testing import CliRunner

from licitagraph import cli

runner = CliRunner()


def _write_batches(path: Path) -> Path:
    batches = [
        {
            "pageNumber": 3,
            "entities": [
                {"type": "MULTA", "semanticKey": "MULTA:ATRASO", "name": "Multa por atraso", "rawValue": "10%"}
            ],
            "sections": [{"level": "CHAPTER", "number": "5", "title": "Das Sanções"}],
        },
        {
            "timelineEvents": [
                {
                    "sourceSemanticKey": "PRAZO:SESSAO",
                    "eventType": "SESSAO_PUBLICA",
                    "dateNormalized": "2024-09-24",
                    "title": "Sessão pública",
                }
            ]
        },
    ]
    path.write_text(json.dumps(batches), encoding="utf-8")
    return path


def test_ingest_prints_batches_structure_and_timeline(tmp_path: Path) -> None:
    payload = _write_batches(tmp_path / "batches.json")

    result = runner.invoke(
        cli.app,
        ["ingest", str(payload), "--document-id", "edital-001", "--config", str(tmp_path / "missing.yaml")],
    )

    assert result.exit_code == 0, result.output
    assert "Batches for edital-001" in result.output
    assert "Das Sanções" in result.output
    assert "Sessão pública" in result.output
    assert "Events: 1" in result.output


def test_ingest_rejects_unreadable_payload(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    result = runner.invoke(
        cli.app, ["ingest", str(bad), "-d", "edital-001", "--config", str(tmp_path / "missing.yaml")]
    )

    assert result.exit_code == 1
    assert "Could not read" in result.output


def test_entities_reports_empty_document(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["entities", "edital-404", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 0
    assert "No entities found." in result.output


def test_clear_requires_confirmation(tmp_path: Path) -> None:
    result = runner.invoke(
        cli.app, ["clear", "edital-001", "--config", str(tmp_path / "missing.yaml")], input="n\n"
    )

    assert result.exit_code == 1


def test_clear_with_yes_prints_counts(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["clear", "edital-001", "-y", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 0
    assert "entities=0" in result.output
