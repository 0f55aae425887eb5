"""
tools/migrate_questions.py
===========================

outputs/ 以下の問題ファイルにメタデータを補うスクリプト。

主な役割:
- created_at が無い問題にファイルの更新日時 (ISO 8601) を入れる
- translation_engine が無い問題に、ファイル名に "zh" を含めば "google"、それ以外は "None" を入れる
- source が無い問題に既定の出典を入れる

変更の無いファイルは書き換えない。
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from qbank_quiz.config import AppConfig, setup_logging
from qbank_quiz.question_bank import TRANSLATION_CONFIG_FILENAME, ensure_metadata

logger = logging.getLogger("qbank_quiz.tools.migrate")

DEFAULT_SOURCE = "考试宝"


def engine_for_filename(filename: str) -> str:
    return "google" if "zh" in filename else "None"


def file_created_at(path: Path) -> str:
    mtime = path.stat().st_mtime
    return datetime.fromtimestamp(mtime, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def migrate(data_dir: Path, source: str = DEFAULT_SOURCE, dry_run: bool = False) -> List[Path]:
    """
    data_dir 配下の全問題セットを処理し、更新した（dry_run なら更新が必要な）ファイルを返す。
    """
    if not data_dir.exists():
        logger.error(f"Outputs directory not found: {data_dir}")
        return []

    changed: List[Path] = []
    for exam_path in sorted(data_dir.iterdir()):
        if exam_path.name.startswith(".") or not exam_path.is_dir():
            continue
        logger.info(f"Processing set: {exam_path.name}")

        for path in sorted(exam_path.glob("*.json")):
            if path.name == TRANSLATION_CONFIG_FILENAME:
                continue
            try:
                questions = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error(f"Error processing {path.name}: {e}")
                continue
            if not isinstance(questions, list):
                continue

            new_questions, updated = ensure_metadata(
                [q for q in questions if isinstance(q, dict)],
                created_at=file_created_at(path),
                translation_engine=engine_for_filename(path.name),
                source=source,
            )
            if not updated:
                logger.info(f"No changes needed for {path.name}.")
                continue

            changed.append(path)
            if dry_run:
                logger.info(f"[dry-run] {path.name} would be updated.")
                continue
            path.write_text(json.dumps(new_questions, ensure_ascii=False, indent=2), encoding="utf-8")
            logger.info(f"Updated {path.name} with metadata.")

    return changed


# -------------------------------------------------------------
#  CLI エントリーポイント
# -------------------------------------------------------------
def main() -> None:
    config = AppConfig()
    setup_logging(config)

    parser = argparse.ArgumentParser(
        description="問題ファイルに created_at / translation_engine / source を補うスクリプト",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=config.data_dir,
        help=f"問題データのディレクトリ（デフォルト: {config.data_dir}）",
    )
    parser.add_argument(
        "--source",
        type=str,
        default=DEFAULT_SOURCE,
        help=f"source が無い問題に入れる出典（デフォルト: {DEFAULT_SOURCE}）",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="ファイルには書き込まず、更新対象だけを表示する",
    )
    args = parser.parse_args()

    changed = migrate(args.data_dir, source=args.source, dry_run=args.dry_run)
    print(f"{len(changed)} file(s) {'need updates' if args.dry_run else 'updated'}.")


if __name__ == "__main__":
    main()
