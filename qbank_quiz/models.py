"""
models.py
======================

問題・練習セッション・問題セットのデータモデル。

問題ファイル (JSON 配列) の 1 要素は以下の形を想定する:

{
  "id": 1,
  "type": "选择题",
  "question": "問題文",
  "options": [{"label": "A", "text": "..."}, ...],
  "correct_answer": "B",
  "analysis": "解説",
  "created_at": "...",
  "source": "...",
  "translation_engine": "google"
}

複数言語のファイルをマージした場合、各言語の内容は translations[locale] に入る。
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

QuestionId = Union[str, int]

# Question.from_dict が自前で扱うキー（それ以外は extra に退避する）
_QUESTION_KEYS = {
    "id",
    "type",
    "question",
    "options",
    "correct_answer",
    "analysis",
    "explanation",
    "translations",
    "originalIndex",
    "created_at",
    "source",
    "translation_engine",
}


def label_for(index: int) -> str:
    """0 → A, 1 → B, ..."""
    return chr(ord("A") + index)


# ----------------------------------------------------------------------
#  選択肢 / 言語別コンテンツ
# ----------------------------------------------------------------------
@dataclass
class Option:
    label: str
    text: str

    @classmethod
    def from_raw(cls, raw: Any, index: int) -> "Option":
        """{"label","text"} 形式と単なる文字列の両方を受け付ける。"""
        if isinstance(raw, dict):
            label = str(raw.get("label") or label_for(index)).strip()
            return cls(label=label, text=str(raw.get("text") or ""))
        return cls(label=label_for(index), text=str(raw))

    def to_dict(self) -> Dict[str, str]:
        return {"label": self.label, "text": self.text}


def parse_options(raw: Any) -> List[Option]:
    if not isinstance(raw, list):
        return []
    return [Option.from_raw(item, i) for i, item in enumerate(raw)]


@dataclass
class LocalizedContent:
    question: str
    options: List[Option] = field(default_factory=list)
    analysis: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalizedContent":
        return cls(
            question=str(data.get("question") or ""),
            options=parse_options(data.get("options")),
            analysis=data.get("analysis") or data.get("explanation") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "question": self.question,
            "options": [o.to_dict() for o in self.options],
        }
        if self.analysis is not None:
            d["analysis"] = self.analysis
        return d


# ----------------------------------------------------------------------
#  問題
# ----------------------------------------------------------------------
@dataclass
class Question:
    id: QuestionId
    question: str
    options: List[Option]
    correct_answer: str
    type: str = "multiple-choice"
    analysis: str = ""
    translations: Dict[str, LocalizedContent] = field(default_factory=dict)
    original_index: Optional[int] = None

    # メタデータ
    created_at: Optional[str] = None
    source: Optional[str] = None
    translation_engine: Optional[str] = None

    # 未知のキー（エディタで保存するときにそのまま書き戻す）
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: Optional[int] = None) -> "Question":
        """
        JSON の 1 要素から Question を作る。

        index: ファイル内の 0 始まり位置。originalIndex が無い場合の補完に使う。
        """
        translations = {}
        raw_tr = data.get("translations")
        if isinstance(raw_tr, dict):
            for lang, content in raw_tr.items():
                if isinstance(content, dict):
                    translations[lang] = LocalizedContent.from_dict(content)

        original_index = data.get("originalIndex")
        if original_index is None and index is not None:
            original_index = data.get("id") or index + 1

        return cls(
            id=data.get("id"),
            type=data.get("type") or "multiple-choice",
            question=str(data.get("question") or ""),
            options=parse_options(data.get("options")),
            correct_answer=str(data.get("correct_answer") or "").strip(),
            analysis=data.get("analysis") or data.get("explanation") or "",
            translations=translations,
            original_index=original_index,
            created_at=data.get("created_at"),
            source=data.get("source"),
            translation_engine=data.get("translation_engine"),
            extra={k: v for k, v in data.items() if k not in _QUESTION_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = dict(self.extra)
        d.update(
            {
                "id": self.id,
                "type": self.type,
                "question": self.question,
                "options": [o.to_dict() for o in self.options],
                "correct_answer": self.correct_answer,
                "analysis": self.analysis,
            }
        )
        if self.translations:
            d["translations"] = {k: v.to_dict() for k, v in self.translations.items()}
        if self.original_index is not None:
            d["originalIndex"] = self.original_index
        for key in ("created_at", "source", "translation_engine"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d

    def clone(self) -> "Question":
        return copy.deepcopy(self)

    # ------------------------------------------------------------
    # 表示用ヘルパー
    # ------------------------------------------------------------
    def find_option(self, label: str) -> Optional[Option]:
        for o in self.options:
            if o.label == label:
                return o
        return None

    def localized(self, field_name: str, lang: str) -> str:
        """
        question / analysis を言語別に返す。

        en はベース言語として扱い、translations に無ければ本体の値を使う。
        それ以外の言語で翻訳が無い場合は "Translation not available"。
        """
        content = self.translations.get(lang)
        value = getattr(content, field_name, None) if content else None
        if value:
            return value
        if lang == "en":
            return getattr(self, field_name) or ""
        return "Translation not available"

    def option_text(self, label: str, lang: str) -> str:
        content = self.translations.get(lang)
        if content:
            for o in content.options:
                if o.label == label:
                    return o.text
        if lang == "en":
            opt = self.find_option(label)
            return opt.text if opt else ""
        return "N/A"


# ----------------------------------------------------------------------
#  練習セッション（永続化用スナップショット）
# ----------------------------------------------------------------------
@dataclass
class PracticeSession:
    id: str
    quiz_slug: str
    quiz_title: str
    filenames: List[str]
    mode: str
    questions: List[Question]
    started_at: str
    last_updated_at: str
    shuffle_seed: Optional[str] = None
    current_index: int = 0
    answers: Dict[str, str] = field(default_factory=dict)
    bookmarked_questions: List[str] = field(default_factory=list)
    completed_at: Optional[str] = None
    is_completed: bool = False
    score: Optional[int] = None
    total_questions: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeSession":
        questions = [
            Question.from_dict(q) for q in data.get("questions", []) if isinstance(q, dict)
        ]
        return cls(
            id=str(data.get("id", "")),
            quiz_slug=str(data.get("quizSlug", "")),
            quiz_title=str(data.get("quizTitle", "")),
            filenames=list(data.get("filenames") or []),
            shuffle_seed=data.get("shuffleSeed"),
            mode=str(data.get("mode") or "original"),
            questions=questions,
            current_index=int(data.get("currentIndex") or 0),
            answers={str(k): str(v) for k, v in (data.get("answers") or {}).items()},
            bookmarked_questions=[str(b) for b in data.get("bookmarkedQuestions") or []],
            started_at=str(data.get("startedAt", "")),
            last_updated_at=str(data.get("lastUpdatedAt", "")),
            completed_at=data.get("completedAt"),
            is_completed=bool(data.get("isCompleted", False)),
            score=data.get("score"),
            total_questions=int(data.get("totalQuestions") or len(questions)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quizSlug": self.quiz_slug,
            "quizTitle": self.quiz_title,
            "filenames": list(self.filenames),
            "shuffleSeed": self.shuffle_seed,
            "mode": self.mode,
            "questions": [q.to_dict() for q in self.questions],
            "currentIndex": self.current_index,
            "answers": dict(self.answers),
            "bookmarkedQuestions": list(self.bookmarked_questions),
            "startedAt": self.started_at,
            "lastUpdatedAt": self.last_updated_at,
            "completedAt": self.completed_at,
            "isCompleted": self.is_completed,
            "score": self.score,
            "totalQuestions": self.total_questions,
        }

    @property
    def answered_count(self) -> int:
        return len(self.answers)


# ----------------------------------------------------------------------
#  問題セット（ディレクトリ単位）
# ----------------------------------------------------------------------
@dataclass
class QuizVariant:
    filename: str
    language: str
    label: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QuizSetGroup:
    id: str
    label: str
    base_question_count: int
    variants: List[QuizVariant] = field(default_factory=list)


@dataclass
class QuizSet:
    slug: str
    title: str
    readme_content: str
    groups: List[QuizSetGroup]
    description: str = ""
    tags: List[str] = field(default_factory=list)
