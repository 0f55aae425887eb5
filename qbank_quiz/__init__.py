"""
qbank_quiz パッケージ
======================

このパッケージは、問題集練習アプリの内部ロジックを提供する。

主な役割:
- 設定管理・ロギング（config）
- 問題データの読み込みとエディタ用の保存（question_bank）
- 問題順・選択肢のシャッフルとラベル付け直し（shuffle）
- 練習セッションの状態管理（session）
- 練習履歴の保存と自動保存（history）
- 翻訳エンジンと一括翻訳（translation / batch）

app.py は Streamlit UI のみを担当し、内部ロジックはすべて本パッケージから呼ぶ。
UI コンポーネント (ui) は streamlit に依存するため、ここでは import しない。
"""

from .batch import BatchTranslationJob
from .config import AppConfig, setup_logging
from .history import AutoSaver, PracticeHistory
from .models import Option, PracticeSession, Question, QuizSet
from .question_bank import QuestionBank
from .session import QuizSession
from .shuffle import mulberry32, shuffle_question_options, shuffle_questions
from .translation import TranslationError, TranslationSettings, create_engine

__all__ = [
    "AppConfig",
    "setup_logging",
    "QuestionBank",
    "Option",
    "Question",
    "QuizSet",
    "PracticeSession",
    "QuizSession",
    "PracticeHistory",
    "AutoSaver",
    "mulberry32",
    "shuffle_questions",
    "shuffle_question_options",
    "TranslationSettings",
    "TranslationError",
    "create_engine",
    "BatchTranslationJob",
]
