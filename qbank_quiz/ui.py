"""
ui.py
======================

Streamlit ベースの UI コンポーネントをまとめたモジュール。

責務:
- テーマと CSS
- 問題カード（問題文・選択肢・解説）の描画。EN / ZH / 左右分割の言語表示
- 進捗バー、問題ナビゲーター、結果画面

ここでは「見た目」と「ユーザー操作の入力」だけを扱い、
回答の記録や保存などのロジックは app.py 側 (QuizSession / AutoSaver) に任せる。

戻り値として「何が押されたか」「どの選択肢が選ばれたか」を返す。
"""

from __future__ import annotations

import html
from typing import Any, Dict, List, Optional

import streamlit as st

from .models import Question
from .session import QuizSession

LANGUAGE_MODES = {"en": "EN", "zh": "中文", "split": "EN | 中文"}

# ----------------------------------------------------------------------
#  テーマ定義
# ----------------------------------------------------------------------
THEMES: Dict[str, Dict[str, str]] = {
    "light": {
        "bg": "#f8fafc",
        "text": "#0f172a",
        "surface": "#f1f5f9",
        "surface_alt": "#ffffff",
        "border": "#e2e8f0",
        "primary": "#4f46e5",
        "correct": "#22c55e",
        "incorrect": "#ef4444",
    },
    "dark": {
        "bg": "#000000",
        "text": "#f5f5f5",
        "surface": "#171717",
        "surface_alt": "#262626",
        "border": "#404040",
        "primary": "#818cf8",
        "correct": "#4ade80",
        "incorrect": "#f87171",
    },
}


# ----------------------------------------------------------------------
#  CSS 生成
# ----------------------------------------------------------------------
def _generate_css(theme: Dict[str, str]) -> str:
    """テーマに応じたグローバル CSS を生成する。"""

    return f"""
    <style>
    .qq-container {{
        max-width: 860px;
        margin: 0 auto;
    }}

    .qq-question-box {{
        background: {theme['surface_alt']};
        color: {theme['text']};
        padding: 1.1rem;
        border-radius: 12px;
        border: 1px solid {theme['border']};
        font-size: 1.1rem;
        line-height: 1.6;
        margin-bottom: 0.75rem;
        white-space: pre-wrap;
    }}

    .qq-option {{
        padding: 0.75rem 0.9rem;
        border-radius: 10px;
        border: 2px solid {theme['border']};
        background: {theme['surface_alt']};
        margin-bottom: 0.45rem;
    }}

    .qq-option-correct {{
        background: {theme['correct']}22;
        border-color: {theme['correct']};
    }}

    .qq-option-missed {{
        background: {theme['correct']}11;
        border: 2px dashed {theme['correct']};
    }}

    .qq-option-incorrect {{
        background: {theme['incorrect']}22;
        border-color: {theme['incorrect']};
    }}

    .qq-label {{
        display: inline-block;
        width: 1.8rem;
        font-weight: 700;
    }}

    .qq-sub {{
        font-size: 0.85rem;
        opacity: 0.7;
        margin-top: 0.2rem;
    }}

    .qq-analysis-box {{
        padding: 0.9rem;
        border-radius: 10px;
        background: {theme['surface']};
        border: 1px solid {theme['border']};
        font-size: 0.95rem;
        line-height: 1.6;
        white-space: pre-wrap;
    }}

    .qq-progress {{
        display: flex;
        align-items: center;
        gap: 0.5rem;
        font-size: 0.8rem;
    }}

    .qq-progress-bar {{
        flex: 1;
        height: 8px;
        background: {theme['border']};
        border-radius: 4px;
        overflow: hidden;
    }}

    .qq-progress-fill {{
        height: 8px;
        background: {theme['primary']};
        border-radius: 4px;
    }}

    .qq-score {{
        font-size: 2.4rem;
        font-weight: 700;
        text-align: center;
        color: {theme['primary']};
    }}
    </style>
    """


# ----------------------------------------------------------------------
#  テーマ関連
# ----------------------------------------------------------------------
def ensure_theme() -> str:
    """セッションに theme キーを用意し、現在のテーマキーを返す。"""
    theme_key = st.session_state.get("theme", "light")
    if theme_key not in THEMES:
        theme_key = "light"
    st.session_state["theme"] = theme_key
    return theme_key


def inject_css() -> None:
    st.markdown(_generate_css(THEMES[ensure_theme()]), unsafe_allow_html=True)


def render_theme_selector() -> str:
    theme_key = ensure_theme()
    options = list(THEMES)
    selected = st.radio(
        "Theme",
        options,
        index=options.index(theme_key),
        horizontal=True,
        format_func=lambda k: k.capitalize(),
    )
    st.session_state["theme"] = selected
    return selected


def render_language_switcher(key: str = "language_mode") -> str:
    """EN / 中文 / 分割表示を切り替える。選ばれたモードを返す。"""
    modes = list(LANGUAGE_MODES)
    current = st.session_state.get(key, "en")
    return st.radio(
        "Language",
        modes,
        index=modes.index(current) if current in modes else 0,
        horizontal=True,
        format_func=lambda m: LANGUAGE_MODES[m],
        key=key,
    )


# ----------------------------------------------------------------------
#  表示用ヘルパー
# ----------------------------------------------------------------------
def _esc(text: Any) -> str:
    return html.escape(str(text or ""))


def _text(q: Question, field_name: str, language_mode: str) -> str:
    if language_mode == "split":
        en = _esc(q.localized(field_name, "en"))
        zh = _esc(q.localized(field_name, "zh"))
        return f"{en}<div class='qq-sub'>{zh}</div>"
    return _esc(q.localized(field_name, language_mode))


def _option_html(q: Question, label: str, language_mode: str) -> str:
    if language_mode == "split":
        en = _esc(q.option_text(label, "en"))
        zh = _esc(q.option_text(label, "zh"))
        return f"{en}<div class='qq-sub'>{zh}</div>"
    return _esc(q.option_text(label, language_mode))


def _option_class(label: str, selected: Optional[str], correct: str) -> str:
    if selected is None:
        return "qq-option"
    if label == selected and label == correct:
        return "qq-option qq-option-correct"
    if label == selected:
        return "qq-option qq-option-incorrect"
    if label == correct:
        return "qq-option qq-option-missed"
    return "qq-option"


def render_progress(quiz: QuizSession) -> None:
    total = len(quiz.questions)
    answered = len(quiz.answers)
    percent = int(answered / total * 100) if total else 0
    st.markdown(
        "<div class='qq-progress'>"
        f"<div>Question {quiz.current_index + 1} / {total}</div>"
        "<div class='qq-progress-bar'>"
        f"<div class='qq-progress-fill' style='width:{percent}%'></div>"
        "</div>"
        f"<div>{answered} answered</div>"
        "</div>",
        unsafe_allow_html=True,
    )


# ----------------------------------------------------------------------
#  公開 API: 問題カード
# ----------------------------------------------------------------------
def render_question_card(quiz: QuizSession, language_mode: str = "en") -> Dict[str, Any]:
    """
    現在の問題を描画し、ユーザー操作の結果を返す。

    戻り値:
        {
          "selected_label": Optional[str],  # 新たに押された選択肢ラベル
          "clicked_next": bool,
          "clicked_prev": bool,
          "clicked_finish": bool,
          "clicked_bookmark": bool,
        }
    """
    result: Dict[str, Any] = {
        "selected_label": None,
        "clicked_next": False,
        "clicked_prev": False,
        "clicked_finish": False,
        "clicked_bookmark": False,
    }

    q = quiz.current_question
    if q is None:
        st.error("No questions loaded.")
        return result

    selected = quiz.get_answer(q.id)

    st.markdown("<div class='qq-container'>", unsafe_allow_html=True)
    st.markdown(
        f"<div class='qq-question-box'>{_text(q, 'question', language_mode)}</div>",
        unsafe_allow_html=True,
    )

    for opt in q.options:
        if selected is None:
            # 未回答: ボタンで選ばせる
            label_text = f"{opt.label}. {q.option_text(opt.label, 'en' if language_mode == 'split' else language_mode)}"
            if st.button(label_text, key=f"qq_opt_{q.id}_{opt.label}", use_container_width=True):
                result["selected_label"] = opt.label
            if language_mode == "split":
                st.caption(q.option_text(opt.label, "zh"))
        else:
            st.markdown(
                f"<div class='{_option_class(opt.label, selected, q.correct_answer)}'>"
                f"<span class='qq-label'>{_esc(opt.label)}</span>"
                f"{_option_html(q, opt.label, language_mode)}</div>",
                unsafe_allow_html=True,
            )

    if selected is not None:
        if selected == q.correct_answer:
            st.success("Correct!")
        else:
            st.error(f"Incorrect. Correct answer: {q.correct_answer}")
        with st.expander("Analysis", expanded=True):
            st.markdown(
                f"<div class='qq-analysis-box'>{_text(q, 'analysis', language_mode)}</div>",
                unsafe_allow_html=True,
            )

    col_prev, col_mark, col_next = st.columns(3)
    with col_prev:
        if st.button("◀ Prev", key="qq_prev", use_container_width=True, disabled=quiz.current_index == 0):
            result["clicked_prev"] = True
    with col_mark:
        mark = "★ Bookmarked" if quiz.is_bookmarked(q.id) else "☆ Bookmark"
        if st.button(mark, key="qq_bookmark", use_container_width=True):
            result["clicked_bookmark"] = True
    with col_next:
        if quiz.is_last_question:
            if st.button("Finish ▶", key="qq_finish", use_container_width=True, type="primary"):
                result["clicked_finish"] = True
        elif st.button("Next ▶", key="qq_next", use_container_width=True):
            result["clicked_next"] = True

    st.markdown("</div>", unsafe_allow_html=True)
    return result


def render_navigator(quiz: QuizSession, columns: int = 10) -> Optional[int]:
    """
    問題番号のグリッド。押された問題の index を返す。
    ✓ 正解 / ✗ 不正解 / ★ ブックマーク
    """
    st.caption(f"{len(quiz.answers)} of {len(quiz.questions)} answered")
    jump: Optional[int] = None
    cols = st.columns(columns)
    for idx, q in enumerate(quiz.questions):
        answer = quiz.get_answer(q.id)
        mark = ""
        if answer is not None:
            mark = "✓" if answer == q.correct_answer else "✗"
        if quiz.is_bookmarked(q.id):
            mark += "★"
        label = f"{idx + 1}{mark}"
        with cols[idx % columns]:
            if st.button(
                label,
                key=f"qq_nav_{idx}",
                type="primary" if idx == quiz.current_index else "secondary",
            ):
                jump = idx
    return jump


# ----------------------------------------------------------------------
#  結果 / 解析
# ----------------------------------------------------------------------
def render_result(quiz: QuizSession) -> Dict[str, bool]:
    total = len(quiz.questions)
    percent = int(quiz.score / total * 100) if total else 0
    st.markdown(f"<div class='qq-score'>{quiz.score} / {total}</div>", unsafe_allow_html=True)
    st.progress(percent / 100)
    st.caption(f"{percent}% correct · {len(quiz.answers)} answered")

    col_restart, col_analysis, col_home = st.columns(3)
    return {
        "clicked_restart": col_restart.button("Restart", use_container_width=True),
        "clicked_analysis": col_analysis.button("Review answers", use_container_width=True),
        "clicked_home": col_home.button("Home", use_container_width=True),
    }


def render_analysis_card(
    index: int,
    question: Question,
    user_answer: Optional[str],
    language_mode: str = "en",
) -> None:
    """解析ページ用。回答済みの 1 問を結果付きで表示する。"""
    status = "Unanswered"
    if user_answer is not None:
        status = "Correct" if user_answer == question.correct_answer else "Incorrect"
    with st.expander(f"Q{index + 1} · {status}", expanded=status == "Incorrect"):
        st.markdown(
            f"<div class='qq-question-box'>{_text(question, 'question', language_mode)}</div>",
            unsafe_allow_html=True,
        )
        for opt in question.options:
            st.markdown(
                f"<div class='{_option_class(opt.label, user_answer or '', question.correct_answer)}'>"
                f"<span class='qq-label'>{_esc(opt.label)}</span>"
                f"{_option_html(question, opt.label, language_mode)}</div>",
                unsafe_allow_html=True,
            )
        st.markdown(
            f"<div class='qq-analysis-box'>{_text(question, 'analysis', language_mode)}</div>",
            unsafe_allow_html=True,
        )


def filter_questions(
    quiz: QuizSession,
    status: str,
) -> List[int]:
    """解析ページのフィルタ (all / incorrect / bookmarked) に合う問題の index。"""
    indexes = []
    for idx, q in enumerate(quiz.questions):
        answer = quiz.get_answer(q.id)
        if status == "incorrect" and (answer is None or answer == q.correct_answer):
            continue
        if status == "bookmarked" and not quiz.is_bookmarked(q.id):
            continue
        indexes.append(idx)
    return indexes
