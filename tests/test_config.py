"""Tests for configuration loading and override behavior.

Environment variables override YAML values, which override model defaults.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from licitagraph.utils.config import Config, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's local environment out of the assertions."""
    for name in ("NEO4J_PASSWORD", "NEO4J_URI", "STORAGE_BACKEND", "TIMELINE__CRITICAL_WINDOW_DAYS"):
        monkeypatch.delenv(name, raising=False)


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


def test_defaults_without_file() -> None:
    cfg = load_config(None)

    assert cfg.database.storage_backend == "memory"
    assert cfg.unification.numeric_tolerance == pytest.approx(0.001)
    assert cfg.timeline.critical_window_days == 30
    assert cfg.timeline.default_importance == "MEDIUM"
    assert cfg.batch.word_cap == 8000
    assert cfg.normalization.days_per_month == 30


def test_yaml_loads_values(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_yaml(
        cfg_path,
        {
            "database": {"neo4j_password": "yaml_pw"},
            "timeline": {"critical_window_days": 7},
            "batch": {"word_cap": 500},
        },
    )

    cfg = load_config(cfg_path)

    assert cfg.database.neo4j_password == "yaml_pw"
    assert cfg.timeline.critical_window_days == 7
    assert cfg.batch.word_cap == 500
    # Untouched sections keep their defaults
    assert cfg.batch.max_pages_per_batch == 10


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_yaml(cfg_path, {"database": {"neo4j_password": "yaml_pw", "neo4j_user": "yaml_user"}})

    monkeypatch.setenv("NEO4J_PASSWORD", "env_pw")

    cfg = load_config(cfg_path)

    assert cfg.database.neo4j_password == "env_pw"
    assert cfg.database.neo4j_user == "yaml_user"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        Config.from_yaml(tmp_path / "absent.yaml")


def test_invalid_yaml_root_type_raises(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump(["not", "a", "mapping"]), encoding="utf-8")

    with pytest.raises(ValueError, match="YAML config root must be a mapping"):
        load_config(cfg_path)


def test_invalid_log_level_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_yaml(cfg_path, {"logging": {"level": "chatty"}})

    with pytest.raises(ValueError):
        load_config(cfg_path)


def test_log_level_is_uppercased(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_yaml(cfg_path, {"logging": {"level": "debug"}})

    assert load_config(cfg_path).logging.level == "DEBUG"


def test_repository_config_file_loads() -> None:
    cfg_path = Path(__file__).resolve().parents[1] / "config" / "config.yaml"

    cfg = load_config(cfg_path)

    assert cfg.database.storage_backend == "memory"
    assert cfg.batch.context_entity_limit == 50
