import importlib.util
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from qbank_quiz.config import API_KEY_ENVS, DATA_DIR_ENV, AppConfig, load_toml, setup_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(API_KEY_ENVS.values()) + [DATA_DIR_ENV]:
        monkeypatch.delenv(name, raising=False)


def test_toml_overrides(tmp_path):
    toml_path = tmp_path / "config.toml"
    toml_path.write_text(
        '[practice]\nmax_sessions_per_quiz = 3\nautosave_delay = 1.5\n\n[translation]\ntarget_lang = "ja"\n',
        encoding="utf-8",
    )
    cfg = AppConfig(data_dir=tmp_path, config_toml_path=toml_path)
    assert cfg.max_sessions_per_quiz == 3
    assert cfg.autosave_delay == 1.5
    assert cfg.default_target_lang == "ja"
    assert cfg.data_dir == tmp_path


def test_broken_toml_is_ignored(tmp_path):
    toml_path = tmp_path / "config.toml"
    toml_path.write_text("[practice\n", encoding="utf-8")
    assert load_toml(toml_path) == {}
    cfg = AppConfig(data_dir=tmp_path, config_toml_path=toml_path)
    assert cfg.max_sessions_per_quiz == 5


def test_data_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "custom"))
    cfg = AppConfig(config_toml_path=tmp_path / "none.toml")
    assert cfg.data_dir == (tmp_path / "custom").resolve()


def test_api_keys_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    cfg = AppConfig(data_dir=tmp_path, config_toml_path=tmp_path / "none.toml")
    assert cfg.api_keys["openai"] == "sk-test"


def test_json_helpers(tmp_path):
    path = tmp_path / "nested" / "data.json"
    assert AppConfig.read_json(path) is None
    AppConfig.write_json(path, {"キー": 1})
    assert AppConfig.read_json(path) == {"キー": 1}


def test_setup_logging_adds_rotating_handler_once(tmp_path):
    cfg = AppConfig(data_dir=tmp_path, config_toml_path=tmp_path / "none.toml", log_dir=tmp_path / "log")
    logger = logging.getLogger("qbank_quiz")
    before = list(logger.handlers)
    try:
        setup_logging(cfg)
        setup_logging(cfg)
        added = [h for h in logger.handlers if h not in before]
        assert len(added) <= 1
        assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    finally:
        for h in logger.handlers:
            if h not in before:
                logger.removeHandler(h)
                h.close()


# ----------------------------------------------------------------------
# tools/migrate_questions.py
# ----------------------------------------------------------------------
def load_migrate_tool():
    path = Path(__file__).resolve().parent.parent / "tools" / "migrate_questions.py"
    spec = importlib.util.spec_from_file_location("migrate_questions", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_migrate_tool(data_dir):
    tool = load_migrate_tool()
    assert tool.engine_for_filename("questions_zh.json") == "google"
    assert tool.engine_for_filename("questions.json") == "None"

    changed = tool.migrate(data_dir, dry_run=True)
    assert {p.name for p in changed} == {"questions.json", "questions_zh.json", "questions_part2.json"}
    assert "created_at" not in json.loads((data_dir / "demo" / "questions.json").read_text(encoding="utf-8"))[0]

    tool.migrate(data_dir, source="manual")
    base = json.loads((data_dir / "demo" / "questions.json").read_text(encoding="utf-8"))
    zh = json.loads((data_dir / "demo" / "questions_zh.json").read_text(encoding="utf-8"))
    assert base[0]["source"] == "unit"
    assert base[1]["source"] == "manual"
    assert base[0]["translation_engine"] == "None"
    assert zh[0]["translation_engine"] == "google"
    assert base[0]["created_at"].endswith("Z")

    assert tool.migrate(data_dir) == []
