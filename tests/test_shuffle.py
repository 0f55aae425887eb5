import pytest

from conftest import always, build_question
from qbank_quiz.models import Option
from qbank_quiz.shuffle import (
    make_permutation,
    mulberry32,
    normalize_seed,
    relabel_options,
    shuffle_array,
    shuffle_options_in_place,
    shuffle_question_options,
    shuffle_questions,
)

U32 = 4294967296


# ----------------------------------------------------------------------
# mulberry32 / normalize_seed
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "seed, expected",
    [
        (1, [2693262067, 11749833, 2265367787]),
        (42, [2581720956, 1925393290, 3661312704]),
        (294, [3425377403, 186586444, 3948076212]),
    ],
)
def test_mulberry32_matches_reference_sequence(seed, expected):
    rng = mulberry32(seed)
    assert [int(rng() * U32) for _ in expected] == expected


def test_mulberry32_values_in_unit_interval():
    rng = mulberry32(123456)
    for _ in range(1000):
        v = rng()
        assert 0.0 <= v < 1.0


def test_mulberry32_generators_are_independent():
    a = mulberry32(5)
    b = mulberry32(5)
    a()
    a()
    assert b() == mulberry32(5)()


@pytest.mark.parametrize(
    "seed, expected",
    [
        (None, None),
        ("", None),
        (-1, None),
        ("-1", None),
        (0, 0),
        ("0", 0),
        (42, 42),
        ("42", 42),
        ("12abc", 12),
        ("abc", 294),
        (" 7", 7),
        ("+5", 5),
        ("0x10", 16),
        ("-0x1F", -31),
        ("0x", 168),
        ("-1abc", -1),
        (" -1", -1),
        ("😀x", 112309),
    ],
)
def test_normalize_seed(seed, expected):
    assert normalize_seed(seed) == expected


@pytest.mark.parametrize(
    "seed, first",
    [
        ("😀x", 0.46963614667765796),
        ("-1abc", 0.8964226141106337),
    ],
)
def test_seed_strings_match_javascript_first_value(seed, first):
    assert mulberry32(normalize_seed(seed))() == first


# ----------------------------------------------------------------------
# Fisher-Yates
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "seed, n, expected",
    [
        (42, 5, [0, 4, 2, 1, 3]),
        (294, 5, [1, 4, 2, 0, 3]),
        (12, 4, [2, 3, 0, 1]),
        (1, 6, [4, 1, 5, 2, 0, 3]),
    ],
)
def test_make_permutation_is_reproducible(seed, n, expected):
    assert make_permutation(n, mulberry32(seed)) == expected


def test_shuffle_array_in_place_and_is_permutation():
    items = list(range(20))
    result = shuffle_array(items, mulberry32(9))
    assert result is items
    assert sorted(items) == list(range(20))


def test_shuffle_array_with_zero_random():
    assert shuffle_array([0, 1, 2, 3], always(0.0)) == [1, 2, 3, 0]


def test_shuffle_array_trivial_inputs():
    assert shuffle_array([]) == []
    assert shuffle_array(["x"]) == ["x"]


# ----------------------------------------------------------------------
# relabel
# ----------------------------------------------------------------------
def test_relabel_options_example():
    options = [Option(l, t) for l, t in zip("ABCD", ["Opt1", "Opt2", "Opt3", "Opt4"])]
    new_options, label_map = relabel_options(options, [2, 0, 3, 1])

    assert [(o.label, o.text) for o in new_options] == [
        ("A", "Opt3"),
        ("B", "Opt1"),
        ("C", "Opt4"),
        ("D", "Opt2"),
    ]
    assert label_map == {"A": "B", "B": "D", "C": "A", "D": "C"}
    # 元のリストは変更しない
    assert options[0].text == "Opt1"


def test_relabel_duplicate_labels_first_wins():
    options = [Option("A", "x"), Option("A", "y"), Option("B", "z")]
    _, label_map = relabel_options(options, [1, 2, 0])
    assert label_map == {"A": "C", "B": "B"}


@pytest.mark.parametrize("n", range(2, 11))
def test_labels_are_contiguous_after_shuffle(n):
    texts = [f"t{i}" for i in range(n)]
    q = build_question(1, correct="A", texts=texts)
    shuffle_question_options(q, mulberry32(n))

    assert [o.label for o in q.options] == [chr(65 + i) for i in range(n)]
    assert sorted(o.text for o in q.options) == sorted(texts)
    # 正解の本文は変わらない
    assert q.find_option(q.correct_answer).text == "t0"


# ----------------------------------------------------------------------
# 1 問のシャッフル
# ----------------------------------------------------------------------
def test_shuffle_question_options_example():
    q = build_question(1, correct="B")
    perm = shuffle_question_options(q, permutation=[2, 0, 3, 1])

    assert perm == [2, 0, 3, 1]
    assert [o.text for o in q.options] == ["Opt3", "Opt1", "Opt4", "Opt2"]
    assert q.correct_answer == "D"


def test_translations_follow_same_permutation():
    q = build_question(1, correct="B")
    shuffle_question_options(q, mulberry32(77))

    for i, opt in enumerate(q.options):
        assert q.translations["zh"].options[i].text == f"{opt.text}-zh"
        assert q.translations["zh"].options[i].label == opt.label
        assert q.translations["en"].options[i].text == opt.text


def test_translation_with_mismatched_option_count_is_left_alone():
    q = build_question(1, correct="A")
    q.translations["zh"].options = q.translations["zh"].options[:3]
    before = [(o.label, o.text) for o in q.translations["zh"].options]

    shuffle_question_options(q, permutation=[3, 2, 1, 0])

    assert [(o.label, o.text) for o in q.translations["zh"].options] == before
    assert [o.text for o in q.options] == ["Opt4", "Opt3", "Opt2", "Opt1"]
    assert q.correct_answer == "D"


def test_unknown_correct_answer_is_kept():
    q = build_question(1, correct="Z")
    shuffle_question_options(q, mulberry32(3))
    assert q.correct_answer == "Z"
    assert len(q.options) == 4


def test_fewer_than_two_options_is_noop():
    q = build_question(1, correct="A", texts=("only",))
    assert shuffle_question_options(q, mulberry32(1)) is None
    assert [(o.label, o.text) for o in q.options] == [("A", "only")]

    empty = build_question(2, correct="A", texts=())
    assert shuffle_question_options(empty, mulberry32(1)) is None
    assert empty.options == []


def test_shuffle_options_in_place_uses_separate_permutations():
    qs = [build_question(i, correct="A", texts=[f"{i}-{k}" for k in range(6)]) for i in range(30)]
    shuffle_options_in_place(qs, mulberry32(10))
    orders = {tuple(o.text.split("-")[1] for o in q.options) for q in qs}
    assert len(orders) > 1
    for q in qs:
        assert q.find_option(q.correct_answer).text.endswith("-0")


# ----------------------------------------------------------------------
# 問題順
# ----------------------------------------------------------------------
def test_shuffle_questions_with_seed(questions):
    result = shuffle_questions(questions, "42")
    assert [q.id for q in result] == [1, 5, 3, 2, 4]
    # 入力リストはそのまま
    assert [q.id for q in questions] == [1, 2, 3, 4, 5]


def test_shuffle_questions_text_seed(questions):
    assert [q.id for q in shuffle_questions(questions, "abc")] == [2, 5, 3, 1, 4]


@pytest.mark.parametrize("seed", [None, "", "-1", -1])
def test_shuffle_questions_without_seed_keeps_order(questions, seed):
    result = shuffle_questions(questions, seed)
    assert [q.id for q in result] == [1, 2, 3, 4, 5]
    assert result is not questions


def test_zero_seed_shuffles(questions):
    expected = [questions[i].id for i in make_permutation(5, mulberry32(0))]
    assert [q.id for q in shuffle_questions(questions, 0)] == expected


def test_same_seed_same_order(questions):
    a = shuffle_questions(questions, 2024)
    b = shuffle_questions(questions, "2024")
    assert [q.id for q in a] == [q.id for q in b]
