import pytest

from conftest import always
from qbank_quiz.models import PracticeSession
from qbank_quiz.session import QuizSession
from qbank_quiz.shuffle import mulberry32


def answer_text(quiz, qid):
    q = quiz.find_question(qid)
    return q.find_option(quiz.get_answer(qid)).text


@pytest.fixture
def quiz(questions):
    q = QuizSession(random_fn=mulberry32(99))
    q.start(questions, "Demo", quiz_slug="demo", filenames=["questions.json"], shuffle_seed="-1")
    return q


# ----------------------------------------------------------------------
# start / restart
# ----------------------------------------------------------------------
def test_start_initial_state(quiz, questions):
    assert quiz.status == "active"
    assert quiz.current_index == 0
    assert quiz.answers == {}
    assert [q.id for q in quiz.questions] == [q.id for q in questions]
    assert quiz.current_question.id == 1
    # 選択肢シャッフル OFF なら元のまま
    assert [o.text for o in quiz.questions[0].options] == ["Opt1", "Opt2", "Opt3", "Opt4"]


def test_start_does_not_share_objects_with_input(quiz, questions):
    quiz.questions[0].options[0].text = "changed"
    quiz.canonical[1].options[0].text = "changed"
    assert questions[0].options[0].text == "Opt1"
    assert questions[1].options[0].text == "Opt1"


def test_start_with_shuffle_keeps_correct_text(questions):
    quiz = QuizSession(shuffle_options=True, random_fn=always(0.0))
    quiz.start(questions, "Demo")
    # always(0.0) → 並べ替えは [1, 2, 3, 0]
    first = quiz.questions[0]
    assert [o.text for o in first.options] == ["Opt2", "Opt3", "Opt4", "Opt1"]
    assert first.correct_answer == "A"  # 元は B (Opt2)
    # canonical はシャッフルされない
    assert [o.text for o in quiz.canonical[0].options] == ["Opt1", "Opt2", "Opt3", "Opt4"]


def test_restart_clears_progress(quiz):
    quiz.answer(1, "A")
    quiz.next_question()
    quiz.bookmark(2)
    quiz.finish()

    quiz.restart()

    assert quiz.status == "active"
    assert quiz.answers == {}
    assert quiz.bookmarks == []
    assert quiz.current_index == 0
    assert quiz.score == 0


def test_restart_without_shuffle_restores_canonical(quiz):
    quiz.toggle_shuffle_options(True)
    quiz.toggle_shuffle_options(False)
    quiz.restart()
    for active, canonical in zip(quiz.questions, quiz.canonical):
        assert [o.text for o in active.options] == [o.text for o in canonical.options]
        assert active.correct_answer == canonical.correct_answer


# ----------------------------------------------------------------------
# toggle_shuffle_options
# ----------------------------------------------------------------------
def test_toggle_preserves_answers_by_text(quiz):
    quiz.answer(1, "B")  # Opt2 (correct)
    quiz.answer(2, "A")  # Opt1 (wrong, correct is C)

    quiz.toggle_shuffle_options(True)

    assert quiz.shuffle_options is True
    assert answer_text(quiz, 1) == "Opt2"
    assert answer_text(quiz, 2) == "Opt1"
    q1 = quiz.find_question(1)
    assert quiz.get_answer(1) == q1.correct_answer
    q2 = quiz.find_question(2)
    assert quiz.get_answer(2) != q2.correct_answer


def test_toggle_round_trip_returns_to_original_labels(quiz):
    quiz.answer(1, "B")
    quiz.answer(3, "D")
    quiz.toggle_shuffle_options(True)
    quiz.toggle_shuffle_options(False)

    assert quiz.answers == {"1": "B", "3": "D"}
    assert [o.text for o in quiz.questions[0].options] == ["Opt1", "Opt2", "Opt3", "Opt4"]


def test_toggle_keeps_score(quiz):
    quiz.answer(1, "A")  # 正解は B
    quiz.answer(2, "C")  # 正解
    quiz.answer(3, "D")  # 正解
    before = quiz.finish()

    quiz.toggle_shuffle_options(True)
    assert quiz.finish() == before == 2


def test_toggle_keeps_index_and_bookmarks(quiz):
    quiz.jump_to(3)
    quiz.bookmark(2)
    quiz.toggle_shuffle_options(True)
    assert quiz.current_index == 3
    assert quiz.bookmarks == ["2"]


def test_toggle_same_value_is_noop(quiz):
    quiz.answer(1, "B")
    before = [o.text for o in quiz.questions[0].options]
    quiz.toggle_shuffle_options(False)
    assert [o.text for o in quiz.questions[0].options] == before
    assert quiz.answers == {"1": "B"}


def test_toggle_before_start_only_sets_flag(questions):
    quiz = QuizSession(random_fn=always(0.0))
    quiz.toggle_shuffle_options(True)
    assert quiz.questions == []
    quiz.start(questions, "Demo")
    assert [o.text for o in quiz.questions[0].options] == ["Opt2", "Opt3", "Opt4", "Opt1"]


def test_toggle_drops_answer_with_unknown_label(quiz):
    quiz.answer(1, "Z")
    quiz.answer(2, "C")
    quiz.toggle_shuffle_options(True)
    assert quiz.get_answer(1) is None
    assert answer_text(quiz, 2) == "Opt3"


# ----------------------------------------------------------------------
# answer / navigation / finish
# ----------------------------------------------------------------------
def test_answer_returns_correctness(quiz):
    assert quiz.answer(1, "B") is True
    assert quiz.answer(2, "A") is False
    assert quiz.answer("missing", "A") is False


def test_navigation_bounds(quiz):
    quiz.prev_question()
    assert quiz.current_index == 0
    for _ in range(10):
        quiz.next_question()
    assert quiz.current_index == 4
    assert quiz.is_last_question
    quiz.jump_to(99)
    assert quiz.current_index == 4
    quiz.jump_to(-1)
    assert quiz.current_index == 4
    quiz.jump_to(2)
    assert quiz.current_index == 2


def test_finish_scores_active_list(quiz):
    for q in quiz.questions:
        quiz.answer(q.id, q.correct_answer)
    assert quiz.finish() == 5
    assert quiz.is_finished


def test_has_progress(quiz):
    assert not quiz.has_progress()
    quiz.next_question()
    assert quiz.has_progress()


# ----------------------------------------------------------------------
# bookmarks
# ----------------------------------------------------------------------
def test_bookmarks(quiz):
    quiz.bookmark(1)
    quiz.bookmark(1)
    assert quiz.bookmarks == ["1"]
    assert quiz.toggle_bookmark(2) is True
    assert quiz.toggle_bookmark(1) is False
    assert quiz.is_bookmarked(2)
    assert not quiz.is_bookmarked(1)
    quiz.unbookmark(5)
    assert quiz.bookmarks == ["2"]


# ----------------------------------------------------------------------
# 永続化
# ----------------------------------------------------------------------
def test_to_session_snapshot(quiz):
    quiz.answer(1, "B")
    quiz.next_question()
    s = quiz.to_session()

    assert s.id
    assert s.quiz_slug == "demo"
    assert s.quiz_title == "Demo"
    assert s.filenames == ["questions.json"]
    assert s.current_index == 1
    assert s.answers == {"1": "B"}
    assert s.is_completed is False
    assert s.score is None
    assert s.total_questions == 5
    # ID は 2 回目以降も同じ
    assert quiz.to_session().id == s.id


def test_to_session_completed(quiz):
    quiz.answer(1, "B")
    quiz.finish()
    s = quiz.to_session()
    assert s.is_completed
    assert s.completed_at
    assert s.score == 1


def test_resume_from_session(quiz):
    quiz.toggle_shuffle_options(True)
    quiz.answer(2, quiz.find_question(2).correct_answer)
    quiz.jump_to(2)
    quiz.bookmark(3)
    snapshot = PracticeSession.from_dict(quiz.to_session().to_dict())

    resumed = QuizSession()
    resumed.resume_from_session(snapshot)

    assert resumed.status == "active"
    assert resumed.session_id == snapshot.id
    assert resumed.current_index == 2
    assert resumed.bookmarks == ["3"]
    assert [o.text for o in resumed.questions[1].options] == [o.text for o in quiz.questions[1].options]
    assert resumed.get_answer(2) == resumed.find_question(2).correct_answer
    assert resumed.finish() == 1


def test_resume_clamps_index(make_question):
    session = PracticeSession(
        id="s1",
        quiz_slug="demo",
        quiz_title="Demo",
        filenames=[],
        mode="original",
        questions=[make_question(1), make_question(2)],
        started_at="2024-01-01T00:00:00.000000Z",
        last_updated_at="2024-01-01T00:00:00.000000Z",
        current_index=7,
        is_completed=True,
        score=2,
    )
    quiz = QuizSession()
    quiz.resume_from_session(session)
    assert quiz.current_index == 1
    assert quiz.is_finished
    assert quiz.score == 2


def test_resumed_session_can_toggle(quiz):
    quiz.answer(1, "B")
    resumed = QuizSession(random_fn=mulberry32(5))
    resumed.resume_from_session(quiz.to_session())
    resumed.toggle_shuffle_options(True)
    assert answer_text(resumed, 1) == "Opt2"
    assert resumed.get_answer(1) == resumed.find_question(1).correct_answer
