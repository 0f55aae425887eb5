"""
history.py
=====================================

練習セッション（途中経過・結果）の保存を担当するモジュール。

data/practice_sessions.json の構造:

{
  "sessions": [
    {
      "id": "...",
      "quizSlug": "nvidia-ncp-ads",
      "questions": [...],     # 保存時のシャッフル状態のスナップショット
      "answers": {"1": "B"},
      "lastUpdatedAt": "...",
      ...
    }
  ]
}

1 つのクイズにつき最新 max_per_quiz 件だけを残し、古いものは保存時に削除する。
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import PracticeSession
from .session import QuizSession

logger = logging.getLogger(__name__)

MAX_SESSIONS_PER_QUIZ = 5


class PracticeHistory:
    """
    練習セッションの保存・読み込みを行うクラス。
    """

    def __init__(self, path: Path, max_per_quiz: int = MAX_SESSIONS_PER_QUIZ):
        self.path = Path(path)
        self.max_per_quiz = max_per_quiz
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # ロード / セーブ
    # ------------------------------------------------------------------
    def _load_raw(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Practice history is corrupted ({self.path}): {e}")
            return []
        sessions = data.get("sessions") if isinstance(data, dict) else None
        if not isinstance(sessions, list):
            return []
        return [s for s in sessions if isinstance(s, dict)]

    def _write_raw(self, sessions: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump({"sessions": sessions}, f, ensure_ascii=False, indent=2)

    def all(self) -> List[PracticeSession]:
        return [PracticeSession.from_dict(s) for s in self._load_raw()]

    # ------------------------------------------------------------------
    # 公開 API
    # ------------------------------------------------------------------
    def save(self, session: PracticeSession) -> None:
        """
        セッションを追加または更新する。

        - 既存セッションの startedAt / completedAt は保存済みの値を優先
        - 同じクイズのセッションが上限を超えたら、更新日時の古いものから削除
        """
        with self._lock:
            raw = self._load_raw()
            data = session.to_dict()

            existing_index = next(
                (i for i, s in enumerate(raw) if s.get("id") == session.id), None
            )
            if existing_index is not None:
                prev = raw[existing_index]
                data["startedAt"] = prev.get("startedAt") or data["startedAt"]
                if prev.get("completedAt") and data.get("isCompleted"):
                    data["completedAt"] = prev["completedAt"]
                raw[existing_index] = data
            else:
                raw.insert(0, data)

            quiz_sessions = [s for s in raw if s.get("quizSlug") == session.quiz_slug]
            if len(quiz_sessions) > self.max_per_quiz:
                quiz_sessions.sort(key=lambda s: s.get("lastUpdatedAt", ""), reverse=True)
                keep_ids = {s.get("id") for s in quiz_sessions[: self.max_per_quiz]}
                pruned = len(quiz_sessions) - len(keep_ids)
                raw = [
                    s
                    for s in raw
                    if s.get("quizSlug") != session.quiz_slug or s.get("id") in keep_ids
                ]
                logger.info(f"Pruned {pruned} old session(s) of {session.quiz_slug}")

            self._write_raw(raw)

    def get(self, session_id: str) -> Optional[PracticeSession]:
        for s in self._load_raw():
            if s.get("id") == session_id:
                return PracticeSession.from_dict(s)
        return None

    def delete(self, session_id: str) -> None:
        with self._lock:
            raw = self._load_raw()
            self._write_raw([s for s in raw if s.get("id") != session_id])

    def clear_quiz(self, quiz_slug: str) -> None:
        with self._lock:
            raw = self._load_raw()
            self._write_raw([s for s in raw if s.get("quizSlug") != quiz_slug])

    def list_by_quiz(self, quiz_slug: str) -> List[PracticeSession]:
        """指定クイズのセッションを更新日時の新しい順で返す。"""
        sessions = [s for s in self.all() if s.quiz_slug == quiz_slug]
        sessions.sort(key=lambda s: s.last_updated_at, reverse=True)
        return sessions

    def get_in_progress(
        self,
        quiz_slug: str,
        filenames: List[str],
        mode: str,
    ) -> Optional[PracticeSession]:
        """クイズ・ファイル構成・モードが一致する未完了セッションを探す。"""
        wanted = set(filenames)
        for s in self.list_by_quiz(quiz_slug):
            if (
                s.mode == mode
                and not s.is_completed
                and len(s.filenames) == len(filenames)
                and set(s.filenames) == wanted
            ):
                return s
        return None


# ----------------------------------------------------------------------
#  自動保存（デバウンス）
# ----------------------------------------------------------------------
class AutoSaver:
    """
    QuizSession の変更を一定時間まとめてから PracticeHistory に保存する。

    - schedule(): 操作のたびに呼ぶ。delay 秒以内の連続操作は 1 回の保存になる
    - flush(): 即座に保存する（ページ遷移前など）
    - 進捗が無い、または前回保存時から変化が無い場合は保存しない
    - 保存に失敗してもセッションの状態は巻き戻さない
    """

    def __init__(self, quiz: QuizSession, history: PracticeHistory, delay: float = 0.5):
        self.quiz = quiz
        self.history = history
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._last_signature: Optional[tuple] = None
        self._lock = threading.Lock()

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> bool:
        """保存した場合 True を返す。"""
        snapshot = self.quiz.snapshot_if_changed(self._last_signature)
        if snapshot is None:
            return False
        session, signature = snapshot

        try:
            self.history.save(session)
        except OSError as e:
            logger.error(f"Failed to save practice session: {e}")
            return False

        self._last_signature = signature
        return True
