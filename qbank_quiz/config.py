"""
config.py
=========

アプリ全体で利用する設定値を一元管理する。
問題データのルート、練習履歴の保存先、ログ、翻訳エンジンの API キーなど
すべてこのクラスを通じて取得する。

本ファイルは app.py と tools/migrate_questions.py の共通設定でもある。
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import toml


# ------------------------------------------------------------
# 基本パス定義
# ------------------------------------------------------------

ROOT_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = ROOT_DIR.parent / "outputs"
DATA_DIR_ENV = "QUIZ_DATA_PATH"

# 翻訳エンジンごとの API キー環境変数
API_KEY_ENVS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
}


# ------------------------------------------------------------
# AppConfig
# ------------------------------------------------------------

@dataclass
class AppConfig:
    """
    アプリ設定クラス。

    - 問題データ (outputs/) のパス
    - 練習履歴 JSON のパスと保持件数
    - ログ出力先
    - 翻訳エンジンの API キー
    """

    # ---------- ファイルパス ----------
    data_dir: Optional[Path] = None
    sessions_path: Path = ROOT_DIR / "data" / "practice_sessions.json"
    config_toml_path: Path = ROOT_DIR / "config.toml"

    # ---------- ログ ----------
    log_dir: Path = ROOT_DIR / "log"
    log_file: str = "qbank_quiz.log"

    # ---------- 練習セッション ----------
    max_sessions_per_quiz: int = 5
    autosave_delay: float = 0.5

    # ---------- 翻訳 ----------
    translation_config_filename: str = "translation-config.json"
    default_target_lang: str = "zh-TW"
    api_keys: Dict[str, str] = field(default_factory=dict)

    # ============================================================
    # 初期化処理
    # ============================================================

    def __post_init__(self):
        if self.data_dir is None:
            self.data_dir = self._resolve_data_dir()
        self.data_dir = Path(self.data_dir)

        # config.toml による上書き
        self._apply_toml(load_toml(self.config_toml_path))

        for engine, env_name in API_KEY_ENVS.items():
            if engine not in self.api_keys:
                key = self._load_api_key(env_name)
                if key:
                    self.api_keys[engine] = key

    # ============================================================
    # 内部関数
    # ============================================================

    @staticmethod
    def _resolve_data_dir() -> Path:
        """QUIZ_DATA_PATH が設定されていればそれを、なければ ../outputs を使う。"""
        env = os.environ.get(DATA_DIR_ENV)
        if env:
            return (Path.cwd() / env).resolve()
        return DEFAULT_DATA_DIR

    def _apply_toml(self, cfg: Dict[str, Any]) -> None:
        """config.toml の [paths] / [practice] / [translation] を反映する。"""
        paths = cfg.get("paths")
        if isinstance(paths, dict):
            if paths.get("data_dir") and not os.environ.get(DATA_DIR_ENV):
                self.data_dir = (ROOT_DIR / paths["data_dir"]).resolve()
            if paths.get("sessions_path"):
                self.sessions_path = (ROOT_DIR / paths["sessions_path"]).resolve()
            if paths.get("log_dir"):
                self.log_dir = (ROOT_DIR / paths["log_dir"]).resolve()

        practice = cfg.get("practice")
        if isinstance(practice, dict):
            try:
                self.max_sessions_per_quiz = int(
                    practice.get("max_sessions_per_quiz", self.max_sessions_per_quiz)
                )
                self.autosave_delay = float(
                    practice.get("autosave_delay", self.autosave_delay)
                )
            except (TypeError, ValueError):
                logging.getLogger(__name__).warning(
                    "Ignoring invalid [practice] values in config.toml"
                )

        translation = cfg.get("translation")
        if isinstance(translation, dict):
            lang = translation.get("target_lang")
            if isinstance(lang, str) and lang:
                self.default_target_lang = lang

    def _load_api_key(self, env_name: str) -> str:
        """
        環境変数 → ルートの .env の順に API キーを探す。
        見つからなければ空文字（そのエンジンは未設定扱い）。
        """
        key = os.environ.get(env_name)
        if key:
            return key

        env_path = ROOT_DIR / ".env"
        if env_path.exists():
            for line in env_path.read_text(encoding="utf-8").splitlines():
                if line.startswith(f"{env_name}="):
                    return line.split("=", 1)[1].strip()

        return ""

    # ============================================================
    # JSON 読み取りユーティリティ
    # ============================================================

    @staticmethod
    def read_json(path: Path):
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def write_json(path: Path, data: Any):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


# ------------------------------------------------------------
# config.toml
# ------------------------------------------------------------

def load_toml(path: Path) -> Dict[str, Any]:
    """config.toml を読み込む。存在しない・壊れている場合は空 dict。"""
    if not path.exists():
        return {}
    try:
        return toml.load(str(path))
    except (toml.TomlDecodeError, OSError) as e:
        logging.getLogger(__name__).error(f"Failed to read {path}: {e}")
        return {}


# ------------------------------------------------------------
# ロギング
# ------------------------------------------------------------

def setup_logging(config: AppConfig) -> logging.Logger:
    """qbank_quiz ロガーにローテーション付きファイル出力を設定する。"""
    logger = logging.getLogger("qbank_quiz")
    logger.setLevel(logging.INFO)

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = config.log_dir / config.log_file
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        )
        logger.addHandler(file_handler)

    # 他ライブラリのログもコンソールで見えるようにする
    logging.basicConfig(level=logging.INFO)
    return logger
