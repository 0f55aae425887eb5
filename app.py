"""
app.py
======================

問題集練習アプリ（Streamlit）エントリーポイント。

特徴:
- ホーム画面（問題セット一覧）→ 詳細（ファイル選択・モード・シード）→ 練習
- 問題順のシード付きシャッフル、選択肢シャッフルはクイズ中に ON/OFF 可能
- 練習の途中経過を自動保存し、履歴から再開できる
- 解析ページで完了済みセッションの回答を見直せる
- エディタ: 問題の修正、LLM による一括翻訳、翻訳エンジン設定

前提:
- 問題データは ../outputs/<slug>/*.json （環境変数 QUIZ_DATA_PATH で変更可）
- 翻訳エンジンの API キーは環境変数 or .env or translation-config.json
"""

from __future__ import annotations

import random
import uuid
from typing import List, Optional

import pandas as pd
import streamlit as st

from qbank_quiz.batch import BatchTranslationJob
from qbank_quiz.config import AppConfig, setup_logging
from qbank_quiz.history import AutoSaver, PracticeHistory
from qbank_quiz.models import Option, QuizSet
from qbank_quiz.question_bank import BASE_LOCALE, QuestionBank
from qbank_quiz.session import QuizSession
from qbank_quiz.shuffle import NO_SHUFFLE_SEED, normalize_seed, shuffle_questions
from qbank_quiz.translation import (
    ENGINE_TYPES,
    EngineConfig,
    TranslationError,
    TranslationSettings,
    create_engine,
)
from qbank_quiz.ui import (
    filter_questions,
    inject_css,
    render_analysis_card,
    render_language_switcher,
    render_navigator,
    render_progress,
    render_question_card,
    render_result,
    render_theme_selector,
)

MODES = {
    "original": "Original (base language only)",
    "translated": "Translated (merge languages, switchable)",
    "mixed": "Mixed (every file as separate questions)",
}


# ----------------------------------------------------------------------
#  セッションに保持するオブジェクト
# ----------------------------------------------------------------------
def get_config() -> AppConfig:
    if "app_config" not in st.session_state:
        config = AppConfig()
        setup_logging(config)
        st.session_state["app_config"] = config
    return st.session_state["app_config"]


def get_bank() -> QuestionBank:
    if "question_bank" not in st.session_state:
        st.session_state["question_bank"] = QuestionBank(get_config().data_dir)
    return st.session_state["question_bank"]


def get_history() -> PracticeHistory:
    if "practice_history" not in st.session_state:
        cfg = get_config()
        st.session_state["practice_history"] = PracticeHistory(
            cfg.sessions_path, max_per_quiz=cfg.max_sessions_per_quiz
        )
    return st.session_state["practice_history"]


def get_quiz() -> QuizSession:
    if "quiz" not in st.session_state:
        st.session_state["quiz"] = QuizSession()
    return st.session_state["quiz"]


def get_autosaver() -> AutoSaver:
    if "autosaver" not in st.session_state:
        st.session_state["autosaver"] = AutoSaver(
            get_quiz(), get_history(), delay=get_config().autosave_delay
        )
    return st.session_state["autosaver"]


def set_page(page: str, **params) -> None:
    # ページを離れる前に未保存の進捗を書き出す
    if get_page() == "play" and page != "play":
        saver = get_autosaver()
        saver.cancel()
        saver.flush()
    st.session_state["page"] = page
    st.session_state.update(params)


def get_page() -> str:
    return st.session_state.get("page", "home")


def go(page: str, **params) -> None:
    set_page(page, **params)
    st.rerun()


def load_settings(slug: str) -> TranslationSettings:
    return TranslationSettings.from_dict(get_bank().load_translation_settings(slug))


# ----------------------------------------------------------------------
#  ページ: ホーム
# ----------------------------------------------------------------------
def render_home_page() -> None:
    st.markdown("## 📚 Question Banks")

    quiz_sets = get_bank().list_quiz_sets()
    if not quiz_sets:
        st.info(f"No quiz sets found in {get_config().data_dir}")
        return

    for qs in quiz_sets:
        total = sum(g.base_question_count for g in qs.groups)
        with st.container(border=True):
            st.markdown(f"### {qs.title}")
            if qs.description:
                st.write(qs.description)
            if qs.tags:
                st.caption(" · ".join(f"#{t}" for t in qs.tags))
            st.caption(f"{len(qs.groups)} group(s) · {total} questions")
            col1, col2 = st.columns(2)
            if col1.button("Open", key=f"open_{qs.slug}", use_container_width=True):
                go("detail", slug=qs.slug)
            if col2.button("Editor", key=f"edit_{qs.slug}", use_container_width=True):
                go("editor", slug=qs.slug)


# ----------------------------------------------------------------------
#  ページ: 問題セット詳細
# ----------------------------------------------------------------------
def _files_for_mode(qs: QuizSet, group_id: str, mode: str) -> List[str]:
    group = next((g for g in qs.groups if g.id == group_id), None)
    if group is None:
        return []
    if mode == "original":
        return [v.filename for v in group.variants if v.language == BASE_LOCALE][:1]
    return [v.filename for v in group.variants]


def render_detail_page() -> None:
    slug = st.session_state.get("slug", "")
    qs = get_bank().get_quiz_set(slug)
    if qs is None:
        st.error(f"Quiz set not found: {slug}")
        if st.button("🏠 Home"):
            go("home")
        return

    st.markdown(f"## {qs.title}")
    if qs.readme_content:
        with st.expander("README"):
            st.markdown(qs.readme_content)

    group_ids = [g.id for g in qs.groups]
    labels = {g.id: f"{g.label} ({g.base_question_count})" for g in qs.groups}
    group_id = st.selectbox("Question group", group_ids, format_func=lambda g: labels[g])
    mode = st.radio("Mode", list(MODES), format_func=lambda m: MODES[m])

    files = _files_for_mode(qs, group_id, mode)
    st.caption("Files: " + ", ".join(files))

    col_seed, col_dice, col_reset = st.columns([3, 1, 1])
    if col_dice.button("🎲", help="Randomize Seed"):
        st.session_state["seed_input"] = str(random.randint(0, 999999))
    if col_reset.button("↺", help="Reset to Original Order"):
        st.session_state["seed_input"] = NO_SHUFFLE_SEED
    seed = col_seed.text_input("Shuffle seed (-1 for original order)", key="seed_input") or NO_SHUFFLE_SEED
    if normalize_seed(seed) is None:
        st.caption("Questions keep their original order.")
    else:
        st.caption(f"Questions are shuffled with seed {seed}.")

    in_progress = get_history().get_in_progress(slug, files, mode)
    col_start, col_resume = st.columns(2)
    if col_start.button("▶ Start Quiz", type="primary", use_container_width=True, disabled=not files):
        start_quiz(qs, files, mode, seed)
    if in_progress is not None and col_resume.button(
        f"⏯ Resume ({in_progress.answered_count}/{in_progress.total_questions})",
        use_container_width=True,
    ):
        resume_quiz(in_progress.id)

    render_history_table(slug)

    if st.button("🏠 Home", use_container_width=True):
        go("home")


def render_history_table(slug: str) -> None:
    history = get_history()
    sessions = history.list_by_quiz(slug)
    st.markdown("### Practice History")
    if not sessions:
        st.info("No practice history yet.")
        return

    rows = [
        {
            "Updated": s.last_updated_at[:19].replace("T", " "),
            "Mode": s.mode,
            "Seed": s.shuffle_seed or NO_SHUFFLE_SEED,
            "Progress": f"{s.answered_count}/{s.total_questions}",
            "Score": "" if s.score is None else f"{s.score}/{s.total_questions}",
            "Status": "Completed" if s.is_completed else "In progress",
        }
        for s in sessions
    ]
    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)

    for s in sessions:
        col_label, col_open, col_delete = st.columns([3, 1, 1])
        col_label.caption(f"{s.last_updated_at[:19]} · {s.answered_count}/{s.total_questions}")
        if s.is_completed:
            if col_open.button("Review", key=f"review_{s.id}"):
                go("analysis", session_id=s.id)
        elif col_open.button("Resume", key=f"resume_{s.id}"):
            resume_quiz(s.id)
        if col_delete.button("Delete", key=f"delete_{s.id}"):
            history.delete(s.id)
            st.rerun()

    if st.button("Clear history"):
        history.clear_quiz(slug)
        st.rerun()


def start_quiz(qs: QuizSet, files: List[str], mode: str, seed: str) -> None:
    try:
        questions = get_bank().load_questions(qs.slug, files, merge_translations=mode != "mixed")
    except (FileNotFoundError, ValueError) as e:
        st.error(str(e))
        return
    if not questions:
        st.warning("No questions in the selected files.")
        return

    quiz = get_quiz()
    quiz.start(
        shuffle_questions(questions, seed),
        qs.title,
        quiz_slug=qs.slug,
        filenames=files,
        shuffle_seed=seed,
        mode=mode,
    )
    go("play")


def resume_quiz(session_id: str) -> None:
    session = get_history().get(session_id)
    if session is None:
        st.error("Session not found.")
        return
    get_quiz().resume_from_session(session)
    go("result" if session.is_completed else "play")


# ----------------------------------------------------------------------
#  ページ: 練習
# ----------------------------------------------------------------------
def render_play_page() -> None:
    quiz = get_quiz()
    saver = get_autosaver()
    if not quiz.questions:
        go("home")
        return
    if quiz.is_finished:
        go("result")
        return

    inject_css()
    st.markdown(f"#### {quiz.title}")

    with st.sidebar:
        st.markdown("### Settings")
        shuffle_on = st.toggle("Shuffle options", value=quiz.shuffle_options)
        if shuffle_on != quiz.shuffle_options:
            quiz.toggle_shuffle_options(shuffle_on)
            saver.schedule()
            st.rerun()
        auto_advance = st.toggle("Auto-advance on correct answer", key="auto_advance")
        render_theme_selector()
        st.markdown("---")
        if st.button("↻ Restart", use_container_width=True):
            quiz.restart()
            saver.schedule()
            st.rerun()
        if st.button("🏠 Home", use_container_width=True):
            go("home")

    language_mode = render_language_switcher()
    render_progress(quiz)

    with st.expander("Question Navigator"):
        jump = render_navigator(quiz)
    if jump is not None:
        quiz.jump_to(jump)
        saver.schedule()
        st.rerun()

    result = render_question_card(quiz, language_mode)
    q = quiz.current_question

    if result["selected_label"] is not None and q is not None:
        correct = quiz.answer(q.id, result["selected_label"])
        if correct and auto_advance:
            st.toast("Correct!")
            if quiz.is_last_question:
                finish_quiz()
                return
            quiz.next_question()
        saver.schedule()
        st.rerun()

    if result["clicked_bookmark"] and q is not None:
        quiz.toggle_bookmark(q.id)
        saver.schedule()
        st.rerun()
    if result["clicked_prev"]:
        quiz.prev_question()
        saver.schedule()
        st.rerun()
    if result["clicked_next"]:
        quiz.next_question()
        saver.schedule()
        st.rerun()
    if result["clicked_finish"]:
        finish_quiz()


def finish_quiz() -> None:
    quiz = get_quiz()
    saver = get_autosaver()
    quiz.finish()
    saver.cancel()
    saver.flush()
    go("result")


# ----------------------------------------------------------------------
#  ページ: 結果 / 解析
# ----------------------------------------------------------------------
def render_result_page() -> None:
    quiz = get_quiz()
    inject_css()
    st.markdown(f"## {quiz.title}")
    actions = render_result(quiz)
    if actions["clicked_restart"]:
        quiz.restart()
        go("play")
    if actions["clicked_analysis"]:
        go("analysis", session_id=quiz.session_id)
    if actions["clicked_home"]:
        go("home")


def render_analysis_page() -> None:
    session_id = st.session_state.get("session_id")
    session = get_history().get(session_id) if session_id else None
    if session is None:
        st.error("Session not found.")
        if st.button("🏠 Home"):
            go("home")
        return

    # 解析用に別インスタンスへ読み込む（練習中の状態は触らない）
    review = QuizSession()
    review.resume_from_session(session)

    inject_css()
    st.markdown(f"## {session.quiz_title}")
    st.caption(
        f"Score {session.score if session.score is not None else '-'} / {session.total_questions}"
        f" · {session.last_updated_at[:19].replace('T', ' ')}"
    )

    language_mode = render_language_switcher(key="analysis_language")
    status = st.radio(
        "Filter",
        ["all", "incorrect", "bookmarked"],
        horizontal=True,
        format_func=str.capitalize,
    )
    for idx in filter_questions(review, status):
        q = review.questions[idx]
        render_analysis_card(idx, q, review.get_answer(q.id), language_mode)

    if st.button("🏠 Home", use_container_width=True):
        go("home")


# ----------------------------------------------------------------------
#  ページ: エディタ
# ----------------------------------------------------------------------
def render_editor_page() -> None:
    slug = st.session_state.get("slug", "")
    bank = get_bank()
    try:
        files = bank.list_files(slug)
    except (FileNotFoundError, ValueError) as e:
        st.error(str(e))
        if st.button("🏠 Home"):
            go("home")
        return

    st.markdown(f"## ✏️ Editor · {slug}")
    filename = st.selectbox("File", files)
    try:
        questions = bank.read_question_file(slug, filename)
    except (FileNotFoundError, ValueError) as e:
        st.error(f"Failed to load {filename}: {e}")
        return

    settings = load_settings(slug)
    tab_edit, tab_batch, tab_engines = st.tabs(["Edit", "Batch translation", "Engines"])
    with tab_edit:
        render_question_editor(slug, filename, questions)
    with tab_batch:
        render_batch_translation(slug, filename, questions, settings)
    with tab_engines:
        render_engine_settings(slug, settings)

    if st.button("🏠 Home", use_container_width=True):
        go("home")


def render_question_editor(slug: str, filename: str, questions: List[dict]) -> None:
    if not questions:
        st.info("This file has no questions.")
        return

    ids = [q.get("id") for q in questions]
    qid = st.selectbox(
        "Question",
        ids,
        format_func=lambda i: f"#{i} {next((q.get('question', '') for q in questions if q.get('id') == i), '')[:60]}",
    )
    q = next(q for q in questions if q.get("id") == qid)

    with st.form(key=f"edit_{filename}_{qid}"):
        text = st.text_area("Question", value=q.get("question", ""))
        options = [Option.from_raw(o, i) for i, o in enumerate(q.get("options") or [])]
        new_options = []
        for opt in options:
            new_text = st.text_input(f"Option {opt.label}", value=opt.text, key=f"opt_{qid}_{opt.label}")
            new_options.append({"label": opt.label, "text": new_text})
        labels = [o["label"] for o in new_options] or [""]
        current = q.get("correct_answer", "")
        correct = st.selectbox(
            "Correct answer", labels, index=labels.index(current) if current in labels else 0
        )
        analysis = st.text_area("Analysis", value=q.get("analysis") or q.get("explanation") or "")
        if st.form_submit_button("Save"):
            try:
                get_bank().save_question(
                    slug,
                    filename,
                    {
                        "id": qid,
                        "question": text,
                        "options": new_options,
                        "correct_answer": correct,
                        "analysis": analysis,
                    },
                )
            except (FileNotFoundError, ValueError, OSError) as e:
                st.error(f"Failed to save: {e}")
            else:
                st.success("Saved.")


def render_batch_translation(
    slug: str,
    filename: str,
    questions: List[dict],
    settings: TranslationSettings,
) -> None:
    bank = get_bank()
    cfg = get_config()

    ids = [q.get("id") for q in questions]
    selected = st.multiselect("Questions to translate", ids, default=ids)

    settings.prompt = st.text_area(
        "System prompt",
        value=settings.prompt,
        help="{{TARGET_LANGUAGE}} / {{STYLE_REF}} / {{context}} and your variables are replaced.",
    )
    col1, col2, col3 = st.columns(3)
    settings.batch_size = col1.number_input("Batch size", 1, 100, value=settings.batch_size)
    settings.style_ref = col2.number_input("Style references", 0, 20, value=settings.style_ref)
    formats = ["json", "markdown", "xml", "custom"]
    settings.input_format = col3.selectbox(
        "Input format", formats, index=formats.index(settings.input_format) if settings.input_format in formats else 0
    )
    if settings.input_format == "custom":
        settings.input_template = st.text_input(
            "Input template", value=settings.input_template or "{{question}}"
        )

    template_name = st.text_input("Template name")
    if st.button("Save template") and template_name and settings.prompt:
        settings.save_template(template_name, str(uuid.uuid4()))
        bank.save_translation_settings(slug, settings.to_dict())
        st.success(f'Template "{template_name}" saved.')
    if settings.saved_templates:
        names = [t.name for t in settings.saved_templates]
        chosen = st.selectbox("Load template", ["-"] + names)
        if chosen != "-" and st.button("Load"):
            settings.prompt = next(t.prompt for t in settings.saved_templates if t.name == chosen)
            bank.save_translation_settings(slug, settings.to_dict())
            st.rerun()

    if st.button("▶ Run job", type="primary", disabled=not selected):
        bank.save_translation_settings(slug, settings.to_dict())
        try:
            engine = create_engine(settings.config, api_keys=cfg.api_keys)
        except ValueError as e:
            st.error(str(e))
            return
        job = BatchTranslationJob(settings, engine, file_loader=bank.read_context_file)
        with st.spinner("Translating..."):
            st.session_state["batch_output"] = job.run(questions, selected)
        st.session_state["batch_job"] = job

    job: Optional[BatchTranslationJob] = st.session_state.get("batch_job")
    if job is None:
        return

    st.progress(job.progress / 100)
    tab_logs, tab_results, tab_raw = st.tabs(["Logs", "Results", "Raw output"])
    with tab_logs:
        st.code("\n".join(job.logs))
    with tab_results:
        if job.results:
            st.dataframe(
                pd.DataFrame([vars(r) for r in job.results]),
                use_container_width=True,
                hide_index=True,
            )
    with tab_raw:
        for num, text in job.batch_outputs.items():
            st.markdown(f"**Batch {num}**")
            st.code(text)

    target = st.text_input("Save as", value=filename)
    if st.button("💾 Save translated questions"):
        try:
            count = bank.save_questions(slug, target, st.session_state["batch_output"])
        except (FileNotFoundError, ValueError, OSError) as e:
            st.error(f"Failed to save: {e}")
        else:
            st.success(f"Saved {count} questions to {target}")


def render_engine_settings(slug: str, settings: TranslationSettings) -> None:
    cfg = get_config()
    config = settings.config

    config.engine = st.selectbox("Active engine", ENGINE_TYPES, index=ENGINE_TYPES.index(config.engine) if config.engine in ENGINE_TYPES else 0)
    config.target_lang = st.text_input("Target language", value=config.target_lang or cfg.default_target_lang)
    config.force_json_mode = st.checkbox("Force JSON mode", value=config.force_json_mode)

    context_files = [""] + get_bank().list_context_files()
    settings.context_file_path = st.selectbox(
        "Context file",
        context_files,
        index=context_files.index(settings.context_file_path) if settings.context_file_path in context_files else 0,
    )

    for name in ENGINE_TYPES:
        engine_cfg = config.engines.setdefault(name, EngineConfig())
        with st.expander(name, expanded=name == config.engine):
            engine_cfg.enabled = st.checkbox("Enabled", value=engine_cfg.enabled, key=f"en_{name}")
            if name != "google":
                key_hint = "(from environment)" if cfg.api_keys.get(name) else ""
                engine_cfg.api_key = st.text_input(
                    f"API key {key_hint}", value=engine_cfg.api_key or "", type="password", key=f"key_{name}"
                ) or None
                engine_cfg.model = st.text_input("Model", value=engine_cfg.model or "", key=f"model_{name}") or None
            if name in ("ollama", "lmstudio"):
                engine_cfg.api_base = st.text_input(
                    "API base", value=engine_cfg.api_base or "", key=f"base_{name}"
                ) or None
            if st.button("Test connection", key=f"test_{name}"):
                try:
                    create_engine(config, engine=name, api_keys=cfg.api_keys).test()
                except (TranslationError, ValueError) as e:
                    engine_cfg.verified = False
                    st.error(str(e))
                else:
                    engine_cfg.verified = True
                    st.success("Connected.")
            if engine_cfg.verified:
                st.caption("✓ verified")

    if st.button("Save engine settings", type="primary"):
        get_bank().save_translation_settings(slug, settings.to_dict())
        st.success("Saved.")


# ----------------------------------------------------------------------
#  メイン
# ----------------------------------------------------------------------
def main() -> None:
    st.set_page_config(
        page_title="Question Bank Quiz",
        page_icon="📚",
        layout="centered",
    )

    get_config()
    page = get_page()

    if page == "detail":
        render_detail_page()
    elif page == "play":
        render_play_page()
    elif page == "result":
        render_result_page()
    elif page == "analysis":
        render_analysis_page()
    elif page == "editor":
        render_editor_page()
    else:
        # デフォルトはホーム
        st.session_state["page"] = "home"
        render_home_page()


if __name__ == "__main__":
    main()
