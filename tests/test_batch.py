import json

import pytest

from qbank_quiz.batch import BatchTranslationJob, format_batch, strip_code_fences
from qbank_quiz.translation import (
    EngineConfig,
    TranslationEngine,
    TranslationError,
    TranslationSettings,
    Variable,
)


class ScriptedEngine(TranslationEngine):
    """outputs を順番に返す。Exception が入っていれば送出する。"""

    name = "scripted"

    def __init__(self, outputs):
        super().__init__(EngineConfig())
        self.outputs = list(outputs)
        self.prompts = []

    def translate(self, text, target_lang, context):
        self.prompts.append(context)
        out = self.outputs.pop(0)
        if isinstance(out, Exception):
            raise out
        return out

    def test(self):
        pass


@pytest.fixture
def raw_questions():
    return [
        {"id": i, "question": f"Q{i}", "type": "选择题", "options": [{"label": "A", "text": f"a{i}"}, {"label": "B", "text": f"b{i}"}], "correct_answer": "A"}
        for i in range(1, 6)
    ]


def translated(ids):
    return json.dumps([{"id": i, "question": f"译{i}"} for i in ids], ensure_ascii=False)


# ----------------------------------------------------------------------
# 整形
# ----------------------------------------------------------------------
def test_strip_code_fences():
    assert strip_code_fences('```json\n[{"id": 1}]\n```') == '[{"id": 1}]'
    assert strip_code_fences("plain") == "plain"


def test_format_batch_json(raw_questions):
    data = json.loads(format_batch(raw_questions[:1], "json"))
    assert data == [
        {
            "id": 1,
            "question": "Q1",
            "type": "选择题",
            "options": [{"label": "A", "text": "a1"}, {"label": "B", "text": "b1"}],
            "correct_answer": "A",
            "analysis": None,
        }
    ]


def test_format_batch_markdown(raw_questions):
    text = format_batch(raw_questions[:2], "markdown")
    assert text.startswith("## Question 1\nQ1\n\n**Options:**\nA. a1\nB. b1\n\n**Answer:** A")
    assert "\n\n---\n\n## Question 2" in text


def test_format_batch_xml(raw_questions):
    text = format_batch(raw_questions[:1], "xml")
    assert text == (
        '<item id="1">\n  <question>Q1</question>\n  <options>\n'
        "    <option>a1</option>\n    <option>b1</option>\n  </options>\n</item>"
    )


def test_format_batch_custom(raw_questions):
    text = format_batch(raw_questions[:2], "custom", "{{id}}: {{question}} ({{type}})")
    assert text == "1: Q1 (选择题)\n2: Q2 (选择题)"


# ----------------------------------------------------------------------
# 実行
# ----------------------------------------------------------------------
def test_run_merges_results_by_id(raw_questions):
    settings = TranslationSettings(prompt="To {{TARGET_LANGUAGE}}", batch_size=2)
    engine = ScriptedEngine([translated([1, 2]), "```json\n" + translated([3]) + "\n```"])
    job = BatchTranslationJob(settings, engine)

    updated = job.run(raw_questions, [1, 2, 3])

    assert [q["question"] for q in updated] == ["译1", "译2", "译3", "Q4", "Q5"]
    # 翻訳で返らなかったキーは元のまま
    assert updated[0]["options"] == raw_questions[0]["options"]
    # 入力は変更しない
    assert raw_questions[0]["question"] == "Q1"
    assert job.progress == 100
    assert [r.translated for r in job.results] == ["译1", "译2", "译3"]
    assert sorted(job.batch_outputs) == [1, 2]
    assert engine.prompts[0].system_prompt == "To zh-TW"


def test_run_continues_after_batch_error(raw_questions):
    settings = TranslationSettings(prompt="P", batch_size=2)
    engine = ScriptedEngine([TranslationError("boom"), translated([3, 4])])
    job = BatchTranslationJob(settings, engine)

    updated = job.run(raw_questions, [1, 2, 3, 4])

    assert [q["question"] for q in updated][:4] == ["Q1", "Q2", "译3", "译4"]
    assert any("Batch 1 error: boom" in line for line in job.logs)
    assert job.progress == 100


def test_non_json_single_item_is_stored_raw(raw_questions):
    settings = TranslationSettings(prompt="P", batch_size=1)
    engine = ScriptedEngine(["just text"])
    job = BatchTranslationJob(settings, engine)

    updated = job.run(raw_questions, [2])

    assert updated[1]["question"] == "Q2"
    assert len(job.results) == 1
    assert job.results[0].id == 2
    assert job.results[0].translated == "just text"


def test_object_instead_of_array_is_ignored(raw_questions):
    job = BatchTranslationJob(TranslationSettings(prompt="P"), ScriptedEngine(['{"id": 1}']))
    job.run(raw_questions, [1])
    assert job.results == []
    assert any("Received object instead of array" in line for line in job.logs)


def test_unknown_ids_in_output_are_ignored(raw_questions):
    job = BatchTranslationJob(TranslationSettings(prompt="P"), ScriptedEngine([translated([1, 99])]))
    updated = job.run(raw_questions, [1])
    assert updated[0]["question"] == "译1"
    assert all(q["id"] != 99 for q in updated)


def test_style_reference_injected_from_previous_batches(raw_questions):
    settings = TranslationSettings(prompt="Style: {{STYLE_REF}}", batch_size=1, style_ref=1)
    engine = ScriptedEngine([translated([1]), translated([2])])
    job = BatchTranslationJob(settings, engine)
    job.run(raw_questions, [1, 2])

    assert engine.prompts[0].system_prompt == "Style: "
    second = engine.prompts[1].system_prompt
    assert "Style References" in second
    assert '"original": "Q1"' in second
    assert '"translated": "译1"' in second


def test_file_variables_and_context(raw_questions):
    files = {"glossary.md": "GLOSSARY", "ctx.md": "CONTEXT"}

    def loader(path):
        if path not in files:
            raise FileNotFoundError(path)
        return files[path]

    settings = TranslationSettings(
        prompt="Use {{glossary}} and {{missing}}",
        context_file_path="ctx.md",
        variables=[
            Variable(id="1", key="glossary", value="glossary.md", type="file"),
            Variable(id="2", key="missing", value="nope.md", type="file"),
        ],
    )
    engine = ScriptedEngine([translated([1])])
    job = BatchTranslationJob(settings, engine, file_loader=loader)
    job.run(raw_questions, [1])

    prompt = engine.prompts[0]
    assert prompt.system_prompt == "Use GLOSSARY and "
    assert prompt.user_content.startswith("Context:\nCONTEXT\n\n")
    assert any("Failed to load file: nope.md" in line for line in job.logs)


def test_no_selection(raw_questions):
    engine = ScriptedEngine([])
    job = BatchTranslationJob(TranslationSettings(), engine)
    assert job.run(raw_questions, []) == raw_questions
    assert engine.prompts == []
