"""
question_bank.py
===========================

問題データのディレクトリを読み込み、問題セット一覧と問題リストを提供するモジュール。

ディレクトリ構成:

outputs/
  nvidia-ncp-ads/
    README.md              # YAML front matter に title / description / tags
    questions.json         # ベース言語
    questions_zh.json      # 翻訳版（{base}_{locale}.json）
    questions_part2.json   # 別グループ
    translation-config.json

目的:
- {base}_{locale}.json をグループ単位にまとめる
- 複数言語のファイルを 1 つの Question (translations 付き) にマージする
- エディタ用の読み書き（1 問更新 / 一括保存）
- 壊れたファイルへの耐性（ログに残してスキップ）
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import frontmatter

from .models import LocalizedContent, Question, QuizSet, QuizSetGroup, QuizVariant

logger = logging.getLogger(__name__)

TRANSLATION_CONFIG_FILENAME = "translation-config.json"

# ファイル名の末尾で言語を判定する
KNOWN_LOCALES: Dict[str, str] = {
    "en": "English",
    "zh": "Google Translate (ZH)",
    "ja": "Japanese",
    "ko": "Korean",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
}
BASE_LOCALE = "en"

CONTEXT_FILE_EXTENSIONS = (".md", ".txt", ".json")


# ----------------------------------------------------------------------
#  ファイル名の解析
# ----------------------------------------------------------------------
def parse_variant_filename(filename: str) -> Tuple[str, str, str]:
    """
    "questions_zh.json" → ("questions", "zh", "Google Translate (ZH)")
    "questions.json"    → ("questions", "en", "Original")
    """
    name = filename[: -len(".json")] if filename.endswith(".json") else filename
    base, sep, suffix = name.rpartition("_")
    if sep and base and suffix in KNOWN_LOCALES:
        return base, suffix, KNOWN_LOCALES[suffix]
    return name, BASE_LOCALE, "Original"


def group_label(base_name: str) -> str:
    """questions → Full Question Bank / questions_part2 → Questions part2"""
    label = base_name.replace("_", " ")
    if label.lower() == "questions":
        return "Full Question Bank"
    return label[:1].upper() + label[1:]


def ensure_metadata(
    questions: List[Dict[str, Any]],
    created_at: str,
    translation_engine: str,
    source: str,
) -> Tuple[List[Dict[str, Any]], bool]:
    """
    created_at / translation_engine / source が無い問題に値を補う。
    戻り値は (新しいリスト, 変更があったか)。
    """
    updated = False
    result = []
    for q in questions:
        new_q = dict(q)
        if not new_q.get("created_at"):
            new_q["created_at"] = created_at
            updated = True
        if "translation_engine" not in new_q:
            new_q["translation_engine"] = translation_engine
            updated = True
        if not new_q.get("source"):
            new_q["source"] = source
            updated = True
        result.append(new_q)
    return result, updated


# ----------------------------------------------------------------------
#  QuestionBank
# ----------------------------------------------------------------------
class QuestionBank:
    """
    outputs/ ディレクトリ全体を扱うクラス。

    主な機能:
    - list_quiz_sets(): 問題セット一覧
    - load_questions(): 指定ファイル群から問題リストを作る
    - read_question_file() / save_question() / save_questions(): エディタ用
    - load_translation_settings() / save_translation_settings()
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    # ------------------------------------------------------------------
    # パス
    # ------------------------------------------------------------------
    def quiz_dir(self, slug: str) -> Path:
        path = (self.data_dir / slug).resolve()
        if path.parent != self.data_dir.resolve():
            raise ValueError(f"Invalid quiz slug: {slug}")
        return path

    def _file_path(self, slug: str, filename: str) -> Path:
        quiz_dir = self.quiz_dir(slug)
        path = (quiz_dir / filename).resolve()
        if path.parent != quiz_dir:
            raise ValueError(f"Invalid filename: {filename}")
        return path

    # ------------------------------------------------------------------
    # 問題セット一覧
    # ------------------------------------------------------------------
    def list_quiz_sets(self) -> List[QuizSet]:
        if not self.data_dir.exists():
            logger.warning(f"Outputs directory not found at: {self.data_dir}")
            return []

        quiz_sets: List[QuizSet] = []
        for item in sorted(self.data_dir.iterdir()):
            if item.name.startswith(".") or not item.is_dir():
                continue
            quiz_set = self._read_quiz_set(item)
            if quiz_set is not None:
                quiz_sets.append(quiz_set)
        return quiz_sets

    def get_quiz_set(self, slug: str) -> Optional[QuizSet]:
        for qs in self.list_quiz_sets():
            if qs.slug == slug:
                return qs
        return None

    def _read_quiz_set(self, exam_path: Path) -> Optional[QuizSet]:
        title = exam_path.name
        description = ""
        tags: List[str] = []
        readme_content = ""

        readme_path = exam_path / "README.md"
        if readme_path.exists():
            post = frontmatter.load(str(readme_path))
            title = post.metadata.get("title") or title
            description = post.metadata.get("description") or ""
            tags = list(post.metadata.get("tags") or [])
            readme_content = post.content

        variants_by_base: Dict[str, List[QuizVariant]] = {}
        counts: Dict[str, int] = {}

        for path in sorted(exam_path.glob("*.json")):
            if path.name == TRANSLATION_CONFIG_FILENAME:
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error(f"Error parsing {path.name} in {exam_path.name}: {e}")
                continue
            if not isinstance(data, list):
                continue

            base, lang, label = parse_variant_filename(path.name)
            metadata: Dict[str, Any] = {}
            if data and isinstance(data[0], dict):
                first = data[0]
                metadata = {
                    "translation_engine": first.get("translation_engine"),
                    "source": first.get("source"),
                    "created_at": first.get("created_at"),
                }

            variants_by_base.setdefault(base, []).append(
                QuizVariant(filename=path.name, language=lang, label=label, metadata=metadata)
            )
            # グループの問題数は各ファイルの最大値
            counts[base] = max(counts.get(base, 0), len(data))

        groups: List[QuizSetGroup] = []
        for base in sorted(variants_by_base):
            variants = sorted(
                variants_by_base[base],
                key=lambda v: 0 if (v.label == "Original" or v.language == BASE_LOCALE) else 1,
            )
            groups.append(
                QuizSetGroup(
                    id=base,
                    label=group_label(base),
                    base_question_count=counts[base],
                    variants=variants,
                )
            )

        if not groups:
            return None

        return QuizSet(
            slug=exam_path.name,
            title=title,
            description=description,
            tags=tags,
            readme_content=readme_content,
            groups=groups,
        )

    # ------------------------------------------------------------------
    # 問題の読み込み
    # ------------------------------------------------------------------
    def load_questions(
        self,
        slug: str,
        filenames: List[str],
        merge_translations: bool = True,
    ) -> List[Question]:
        """
        指定ファイル群から問題リストを作る。

        merge_translations=True:
            同じ id の問題を 1 つにまとめ、各ファイルの内容を translations[locale] に入れる。
            本体（question / options）は最初に読んだファイルのもの。
        merge_translations=False ("mixed" モード):
            各ファイルの問題を別々の問題として並べる。en 以外は id を "{id}_{locale}" にする。
        """
        exam_dir = self.quiz_dir(slug)
        if not exam_dir.exists():
            raise FileNotFoundError(f"Exam directory not found: {slug}")

        all_questions: List[Question] = []
        merged: Dict[str, Question] = {}

        for filename in filenames:
            path = self._file_path(slug, filename)
            if not path.exists():
                logger.warning(f"Question file not found: {slug}/{filename}")
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                logger.error(f"Error reading questions from {filename}: {e}")
                continue
            if not isinstance(data, list):
                continue

            _, locale, _ = parse_variant_filename(filename)

            for index, item in enumerate(data):
                if not isinstance(item, dict):
                    continue
                q = Question.from_dict(item, index=index)

                if not merge_translations:
                    if locale != BASE_LOCALE:
                        q.id = f"{q.id}_{locale}"
                    q.translations = {}
                    all_questions.append(q)
                    continue

                key = str(q.id)
                if key not in merged:
                    merged[key] = q.clone()
                    merged[key].translations = {}
                    all_questions.append(merged[key])

                merged[key].translations[locale] = _localized_from(q)

        return all_questions

    def list_files(self, slug: str) -> List[str]:
        quiz_dir = self.quiz_dir(slug)
        if not quiz_dir.exists():
            raise FileNotFoundError(f"Quiz not found: {slug}")
        return sorted(p.name for p in quiz_dir.glob("*.json"))

    # ------------------------------------------------------------------
    # エディタ用の読み書き
    # ------------------------------------------------------------------
    def read_question_file(self, slug: str, filename: str = "questions.json") -> List[Dict[str, Any]]:
        path = self._file_path(slug, filename)
        if not path.exists():
            raise FileNotFoundError(f"Questions file not found: {slug}/{filename}")
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"{filename} is not a JSON array")
        return data

    def save_questions(self, slug: str, filename: str, questions: List[Dict[str, Any]]) -> int:
        """一括保存（別名保存を含む）。保存件数を返す。"""
        path = self._file_path(slug, filename)
        if not path.parent.exists():
            raise FileNotFoundError(f"Quiz directory not found: {slug}")
        _write_json(path, questions)
        logger.info(f"Saved {len(questions)} questions to {slug}/{filename}")
        return len(questions)

    def save_question(self, slug: str, filename: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        1 問を id で上書き、無ければ追加する。保存後の問題を返す。
        """
        qid = payload.get("id")
        if qid is None or qid == "":
            raise ValueError("Question ID is required")

        path = self._file_path(slug, filename)
        if not path.parent.exists():
            raise FileNotFoundError(f"Quiz directory not found: {slug}")

        questions: List[Dict[str, Any]] = []
        if path.exists():
            questions = self.read_question_file(slug, filename)

        now = _now_iso()
        fields = {
            k: payload.get(k)
            for k in ("type", "question", "options", "correct_answer", "analysis")
            if k in payload
        }

        for i, q in enumerate(questions):
            if q.get("id") == qid:
                questions[i] = {**q, **fields, "updated_at": now}
                saved = questions[i]
                break
        else:
            saved = {
                "id": qid,
                "type": fields.get("type") or "选择题",
                "question": fields.get("question", ""),
                "options": fields.get("options", []),
                "correct_answer": fields.get("correct_answer", ""),
                "analysis": fields.get("analysis", ""),
                "created_at": now,
                "source": "Playground",
            }
            questions.append(saved)

        _write_json(path, questions)
        return saved

    # ------------------------------------------------------------------
    # 翻訳設定 / コンテキストファイル
    # ------------------------------------------------------------------
    def load_translation_settings(self, slug: str) -> Optional[Dict[str, Any]]:
        quiz_dir = self.quiz_dir(slug)
        if not quiz_dir.exists():
            raise FileNotFoundError(f"Quiz not found: {slug}")
        path = quiz_dir / TRANSLATION_CONFIG_FILENAME
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def save_translation_settings(self, slug: str, settings: Dict[str, Any]) -> Path:
        quiz_dir = self.quiz_dir(slug)
        if not quiz_dir.exists():
            raise FileNotFoundError(f"Quiz not found: {slug}")
        path = quiz_dir / TRANSLATION_CONFIG_FILENAME
        _write_json(path, settings)
        return path

    @property
    def base_dir(self) -> Path:
        """コンテキストファイルを探す範囲（outputs/ の 1 つ上）。"""
        return self.data_dir.resolve().parent

    def list_context_files(self) -> List[str]:
        """ルート直下と outputs/ docs/ 配下の .md/.txt/.json を相対パスで返す。"""
        base = self.base_dir
        files = [
            p.name
            for p in sorted(base.iterdir())
            if p.is_file() and p.suffix.lower() in CONTEXT_FILE_EXTENSIONS
        ]
        for sub in ("outputs", "docs"):
            sub_dir = base / sub
            if not sub_dir.is_dir():
                continue
            for p in sorted(sub_dir.rglob("*")):
                rel = p.relative_to(base)
                if any(part.startswith(".") or part in ("node_modules", "dist", "build") for part in rel.parts):
                    continue
                if p.is_file() and p.suffix.lower() in CONTEXT_FILE_EXTENSIONS:
                    files.append(rel.as_posix())
        return files

    def read_context_file(self, rel_path: str) -> str:
        """base_dir 配下のファイルだけ読み込める。"""
        base = self.base_dir
        path = (base / rel_path).resolve()
        if base != path and base not in path.parents:
            raise ValueError(f"Invalid path: {rel_path}")
        if not path.exists():
            raise FileNotFoundError(f"File not found: {rel_path}")
        return path.read_text(encoding="utf-8")


# ----------------------------------------------------------------------
# ユーティリティ
# ----------------------------------------------------------------------
def _localized_from(q: Question) -> LocalizedContent:
    return LocalizedContent(
        question=q.question,
        options=q.clone().options,
        analysis=q.analysis,
    )


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
