import json

import pytest

from qbank_quiz.models import LocalizedContent, Option, Question


def build_question(qid, correct="B", texts=("Opt1", "Opt2", "Opt3", "Opt4"), zh=True):
    options = [Option(label=chr(65 + i), text=t) for i, t in enumerate(texts)]
    translations = {
        "en": LocalizedContent(
            question=f"Question {qid}",
            options=[Option(o.label, o.text) for o in options],
            analysis=f"Analysis {qid}",
        )
    }
    if zh:
        translations["zh"] = LocalizedContent(
            question=f"问题 {qid}",
            options=[Option(o.label, f"{o.text}-zh") for o in options],
            analysis=f"解析 {qid}",
        )
    return Question(
        id=qid,
        question=f"Question {qid}",
        options=options,
        correct_answer=correct,
        analysis=f"Analysis {qid}",
        translations=translations,
    )


@pytest.fixture
def make_question():
    return build_question


@pytest.fixture
def questions():
    return [build_question(i, correct="ABCD"[i % 4]) for i in range(1, 6)]


def always(value):
    """常に同じ値を返す random_fn。0.0 なら並べ替えは [1, 2, ..., 0] になる。"""
    return lambda: value


@pytest.fixture
def data_dir(tmp_path):
    """
    outputs/
      demo/
        README.md
        questions.json
        questions_zh.json
        questions_part2.json
        broken.json
    """
    outputs = tmp_path / "outputs"
    demo = outputs / "demo"
    demo.mkdir(parents=True)

    (demo / "README.md").write_text(
        "---\ntitle: Demo Exam\ndescription: Practice set\ntags:\n  - cloud\n  - ai\n---\n# Demo\n\nBody text.\n",
        encoding="utf-8",
    )

    base = [
        {
            "id": 1,
            "type": "选择题",
            "question": "What is 1+1?",
            "options": [{"label": "A", "text": "1"}, {"label": "B", "text": "2"}],
            "correct_answer": "B",
            "analysis": "Basic math",
            "source": "unit",
        },
        {
            "id": 2,
            "question": "Pick C",
            "options": ["x", "y", "z"],
            "correct_answer": "C",
            "explanation": "Old field name",
        },
    ]
    zh = [
        {
            "id": 1,
            "question": "1+1 是多少？",
            "options": [{"label": "A", "text": "一"}, {"label": "B", "text": "二"}],
            "correct_answer": "B",
            "analysis": "基础数学",
        },
        {
            "id": 2,
            "question": "选 C",
            "options": ["甲", "乙", "丙"],
            "correct_answer": "C",
        },
    ]
    part2 = [{"id": 10, "question": "Q10", "options": ["a", "b"], "correct_answer": "A"}]

    (demo / "questions.json").write_text(json.dumps(base), encoding="utf-8")
    (demo / "questions_zh.json").write_text(json.dumps(zh, ensure_ascii=False), encoding="utf-8")
    (demo / "questions_part2.json").write_text(json.dumps(part2), encoding="utf-8")
    (demo / "broken.json").write_text("{not json", encoding="utf-8")
    (demo / "translation-config.json").write_text(json.dumps({"prompt": "p"}), encoding="utf-8")

    (outputs / ".hidden").mkdir()
    (outputs / "empty").mkdir()
    return outputs
