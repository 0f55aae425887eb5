"""
session.py
=====================================

1 回の練習（クイズ）の状態を管理するモジュール。

QuizSession は次の 2 つの問題リストを持つ:

- canonical: 選択肢をシャッフルしていない基準の問題リスト
- questions: 画面に表示している問題リスト（選択肢シャッフル済みのことがある）

選択肢シャッフルの ON/OFF はクイズ中いつでも切り替えられる。
切り替えでラベルが変わっても、回答は「選んだ選択肢の本文」で引き直すので
途中の回答は失われない。

状態遷移:
    not_started → active → finished
    restart() でいつでも active（回答クリア）に戻れる。
"""

from __future__ import annotations

import logging
import random
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from .models import PracticeSession, Question, QuestionId
from .shuffle import RandomFn, shuffle_question_options

logger = logging.getLogger(__name__)

QuizStatus = Literal["not_started", "active", "finished"]


class QuizSession:
    """
    練習セッションの状態クラス。

    主な機能:
    - start() / restart(): 問題のセットアップ
    - toggle_shuffle_options(): 選択肢シャッフルの切り替え（回答を保持）
    - answer() / next_question() / prev_question() / jump_to(): 解答と移動
    - finish(): 採点
    - resume_from_session() / to_session(): 永続化との変換

    すべての操作は 1 つのロックの中で行い、canonical / questions / answers を
    まとめて更新する。
    """

    def __init__(
        self,
        shuffle_options: bool = False,
        random_fn: Optional[RandomFn] = None,
    ):
        self.shuffle_options = shuffle_options
        self._random_fn: RandomFn = random_fn or random.random
        self._lock = threading.RLock()

        self.canonical: List[Question] = []
        self.questions: List[Question] = []
        self.title: str = ""
        self.current_index: int = 0
        self.answers: Dict[str, str] = {}
        self.bookmarks: List[str] = []
        self.status: QuizStatus = "not_started"
        self.score: int = 0

        # 永続化用の識別情報
        self.session_id: Optional[str] = None
        self.quiz_slug: str = ""
        self.filenames: List[str] = []
        self.shuffle_seed: Optional[str] = None
        self.mode: str = "original"
        self.started_at: Optional[str] = None
        # start / restart / 再開 / 選択肢シャッフル切り替えのたびに増える
        self.generation: int = 0

    # ------------------------------------------------------------------
    # 問題リストの導出
    # ------------------------------------------------------------------
    def _derive_active(self) -> List[Question]:
        """canonical から表示用リストを作る。毎回ディープコピーする。"""
        active = [q.clone() for q in self.canonical]
        if self.shuffle_options:
            for q in active:
                shuffle_question_options(q, self._random_fn)
        return active

    def _reset_progress(self) -> None:
        self.current_index = 0
        self.answers = {}
        self.bookmarks = []
        self.score = 0
        self.status = "active"

    # ------------------------------------------------------------------
    # 開始 / リスタート
    # ------------------------------------------------------------------
    def start(
        self,
        questions: Sequence[Question],
        title: str,
        *,
        quiz_slug: str = "",
        filenames: Optional[List[str]] = None,
        shuffle_seed: Optional[str] = None,
        mode: str = "original",
    ) -> None:
        """
        新しい練習を始める。

        questions は問題順シャッフル済みのものを渡す想定。
        選択肢シャッフルが ON なら問題ごとに新しい並べ替えを作る。
        """
        with self._lock:
            self.canonical = [q.clone() for q in questions]
            self.questions = self._derive_active()
            self.title = title
            self.quiz_slug = quiz_slug
            self.filenames = list(filenames or [])
            self.shuffle_seed = shuffle_seed
            self.mode = mode
            self.session_id = None
            self.started_at = _now_iso()
            self._reset_progress()
            self.generation += 1
            logger.info(
                f"Quiz started: {title} ({len(self.questions)} questions, "
                f"shuffle_options={self.shuffle_options})"
            )

    def restart(self) -> None:
        """同じ問題で最初からやり直す。選択肢は新しく並べ替える。"""
        with self._lock:
            self.questions = self._derive_active()
            self._reset_progress()
            self.generation += 1

    # ------------------------------------------------------------------
    # 選択肢シャッフルの切り替え
    # ------------------------------------------------------------------
    def toggle_shuffle_options(self, enabled: bool) -> None:
        """
        選択肢シャッフルを ON/OFF する。

        1. 現在の回答を「選択肢の本文」として控える
        2. 表示用リストを作り直す（ON: 新しい並べ替え / OFF: canonical のまま）
        3. 控えた本文と一致する選択肢の新しいラベルへ回答を付け替える
           一致が無い問題の回答は破棄する
        """
        with self._lock:
            if enabled == self.shuffle_options:
                return
            self.shuffle_options = enabled

            if self.status == "not_started":
                return
            self.generation += 1

            answered_texts: Dict[str, str] = {}
            for q in self.questions:
                key = _key(q.id)
                label = self.answers.get(key)
                if label is None:
                    continue
                opt = q.find_option(label)
                if opt is not None:
                    answered_texts[key] = opt.text

            self.questions = self._derive_active()

            remapped: Dict[str, str] = {}
            for q in self.questions:
                key = _key(q.id)
                text = answered_texts.get(key)
                if text is None:
                    continue
                for opt in q.options:
                    if opt.text == text:
                        remapped[key] = opt.label
                        break
                else:
                    logger.warning(f"Dropped answer of question {q.id}: option text not found")

            self.answers = remapped

    # ------------------------------------------------------------------
    # 解答 / 移動
    # ------------------------------------------------------------------
    def answer(self, question_id: QuestionId, label: str) -> bool:
        """回答を記録し、正解かどうかを返す。"""
        with self._lock:
            key = _key(question_id)
            self.answers[key] = label
            q = self.find_question(question_id)
            return q is not None and label == q.correct_answer

    def next_question(self) -> None:
        with self._lock:
            if self.current_index < len(self.questions) - 1:
                self.current_index += 1

    def prev_question(self) -> None:
        with self._lock:
            if self.current_index > 0:
                self.current_index -= 1

    def jump_to(self, index: int) -> None:
        with self._lock:
            if 0 <= index < len(self.questions):
                self.current_index = index

    def finish(self) -> int:
        """現在の表示用リストの correct_answer と回答を突き合わせて採点する。"""
        with self._lock:
            self.score = sum(
                1 for q in self.questions if self.answers.get(_key(q.id)) == q.correct_answer
            )
            self.status = "finished"
            logger.info(f"Quiz finished: {self.title} {self.score}/{len(self.questions)}")
            return self.score

    # ------------------------------------------------------------------
    # ブックマーク
    # ------------------------------------------------------------------
    def bookmark(self, question_id: QuestionId) -> None:
        with self._lock:
            key = _key(question_id)
            if key not in self.bookmarks:
                self.bookmarks.append(key)

    def unbookmark(self, question_id: QuestionId) -> None:
        with self._lock:
            key = _key(question_id)
            if key in self.bookmarks:
                self.bookmarks.remove(key)

    def toggle_bookmark(self, question_id: QuestionId) -> bool:
        """ブックマーク状態を反転し、反転後の状態を返す。"""
        with self._lock:
            if self.is_bookmarked(question_id):
                self.unbookmark(question_id)
                return False
            self.bookmark(question_id)
            return True

    def is_bookmarked(self, question_id: QuestionId) -> bool:
        return _key(question_id) in self.bookmarks

    # ------------------------------------------------------------------
    # 状態参照
    # ------------------------------------------------------------------
    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"

    @property
    def is_last_question(self) -> bool:
        return self.current_index == len(self.questions) - 1

    def find_question(self, question_id: QuestionId) -> Optional[Question]:
        key = _key(question_id)
        for q in self.questions:
            if _key(q.id) == key:
                return q
        return None

    def get_answer(self, question_id: QuestionId) -> Optional[str]:
        return self.answers.get(_key(question_id))

    def has_progress(self) -> bool:
        with self._lock:
            return self.current_index > 0 or bool(self.answers) or self.is_finished

    def progress_signature(self) -> tuple:
        """
        自動保存で「前回から変化したか」を判定するための値。

        generation を含むので、選択肢の並びが作り直された後は
        回答が同じでも別の値になる。
        """
        with self._lock:
            return (
                self.generation,
                self.session_id,
                self.current_index,
                tuple(sorted(self.answers.items())),
                tuple(self.bookmarks),
                self.is_finished,
                self.score,
                self.shuffle_options,
            )

    # ------------------------------------------------------------------
    # 永続化との変換
    # ------------------------------------------------------------------
    def resume_from_session(self, session: PracticeSession) -> None:
        """
        保存済みセッションから再開する。

        保存されている問題リストは保存時のシャッフル状態のスナップショットなので
        そのまま表示用に使う。元の（シャッフル前の）順番は復元できないため、
        canonical も同じスナップショットのコピーになる。
        """
        with self._lock:
            self.questions = [q.clone() for q in session.questions]
            self.canonical = [q.clone() for q in session.questions]
            self.title = session.quiz_title
            self.quiz_slug = session.quiz_slug
            self.filenames = list(session.filenames)
            self.shuffle_seed = session.shuffle_seed
            self.mode = session.mode
            self.session_id = session.id
            self.started_at = session.started_at
            self.answers = dict(session.answers)
            self.bookmarks = list(session.bookmarked_questions)
            self.current_index = min(max(session.current_index, 0), max(len(self.questions) - 1, 0))
            self.score = session.score or 0
            self.status = "finished" if session.is_completed else "active"
            self.generation += 1
            logger.info(f"Resumed session {session.id} ({len(self.answers)} answers)")

    def to_session(self) -> PracticeSession:
        """現在の状態を保存用のスナップショットにする。初回は ID を採番する。"""
        with self._lock:
            if self.session_id is None:
                self.session_id = str(uuid.uuid4())
            now = _now_iso()
            finished = self.is_finished
            return PracticeSession(
                id=self.session_id,
                quiz_slug=self.quiz_slug,
                quiz_title=self.title,
                filenames=list(self.filenames),
                shuffle_seed=self.shuffle_seed,
                mode=self.mode,
                questions=[q.clone() for q in self.questions],
                current_index=self.current_index,
                answers=dict(self.answers),
                bookmarked_questions=list(self.bookmarks),
                started_at=self.started_at or now,
                last_updated_at=now,
                completed_at=now if finished else None,
                is_completed=finished,
                score=self.score if finished else None,
                total_questions=len(self.questions),
            )

    def snapshot_if_changed(
        self, last_signature: Optional[tuple]
    ) -> Optional[Tuple[PracticeSession, tuple]]:
        """
        保存すべき変化があれば (スナップショット, その時点の signature) を返す。

        問題が無い・進捗が無い・last_signature から変化が無い場合は None。
        判定とスナップショット作成を同じロックの中で行う。
        """
        with self._lock:
            if not self.questions or not self.title or not self.has_progress():
                return None
            if self.progress_signature() == last_signature:
                return None
            session = self.to_session()
            return session, self.progress_signature()


# ----------------------------------------------------------------------
# ユーティリティ
# ----------------------------------------------------------------------
def _key(question_id: QuestionId) -> str:
    return str(question_id)


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
