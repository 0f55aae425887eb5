"""
batch.py
======================

エディタから選んだ問題をまとめて翻訳するジョブ。

流れ:
1. 変数を解決する（type="file" の変数はファイルの中身を読み込む）
2. batch_size 件ずつに分割
3. 直前までの結果から STYLE_REF（訳文の見本）を作る
4. input_format (json / markdown / xml / custom) で入力を整形
5. システムプロンプトの {{key}} を置換してエンジンを呼ぶ
6. 返ってきた JSON 配列を id で問題リストにマージする

1 バッチが失敗してもログに残して次のバッチへ進む。
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .translation import (
    DEFAULT_TARGET_LANG,
    TranslationEngine,
    TranslationError,
    TranslationSettings,
    interpolate,
    translate_text,
)

logger = logging.getLogger(__name__)

FileLoader = Callable[[str], str]

_FENCE_RE = re.compile(r"```(?:json)?\s*")


@dataclass
class BatchResult:
    id: Any
    original: str
    translated: str


def strip_code_fences(text: str) -> str:
    """```json ... ``` で囲まれた出力から中身だけを取り出す。"""
    return _FENCE_RE.sub("", text or "").strip()


def _option_texts(q: Dict[str, Any]) -> List[str]:
    texts = []
    for o in q.get("options") or []:
        texts.append(o.get("text", "") if isinstance(o, dict) else str(o))
    return texts


def format_batch(chunk: Sequence[Dict[str, Any]], input_format: str, template: Optional[str] = None) -> str:
    """1 バッチ分の問題を LLM への入力テキストにする。"""
    if input_format == "markdown":
        parts = []
        for q in chunk:
            md = f"## Question {q.get('id')}\n{q.get('question', '')}"
            options = _option_texts(q)
            if options:
                md += "\n\n**Options:**\n" + "\n".join(
                    f"{chr(65 + i)}. {text}" for i, text in enumerate(options)
                )
            if q.get("correct_answer"):
                md += f"\n\n**Answer:** {q['correct_answer']}"
            parts.append(md)
        return "\n\n---\n\n".join(parts)

    if input_format == "xml":
        parts = []
        for q in chunk:
            xml = f'<item id="{q.get("id")}">\n  <question>{q.get("question", "")}</question>'
            options = _option_texts(q)
            if options:
                xml += (
                    "\n  <options>\n"
                    + "\n".join(f"    <option>{text}</option>" for text in options)
                    + "\n  </options>"
                )
            parts.append(xml + "\n</item>")
        return "\n".join(parts)

    if input_format == "custom":
        tpl = template or "{{question}}"
        return "\n".join(
            interpolate(
                tpl,
                {
                    "id": str(q.get("id")),
                    "question": str(q.get("question", "")),
                    "type": str(q.get("type") or ""),
                    "options": json.dumps(q.get("options") or [], ensure_ascii=False),
                },
            )
            for q in chunk
        )

    # json
    return json.dumps(
        [
            {
                "id": q.get("id"),
                "question": q.get("question"),
                "type": q.get("type"),
                "options": q.get("options") or [],
                "correct_answer": q.get("correct_answer"),
                "analysis": q.get("analysis"),
            }
            for q in chunk
        ],
        ensure_ascii=False,
        indent=2,
    )


class BatchTranslationJob:
    """
    一括翻訳ジョブ。

    実行後は以下を参照できる:
    - logs: 画面表示用のログ行
    - results: 翻訳結果（元の問題文と訳文）。STYLE_REF にも使う
    - batch_outputs: バッチ番号 → エンジンの生出力
    - progress: 0〜100
    """

    def __init__(
        self,
        settings: TranslationSettings,
        engine: TranslationEngine,
        file_loader: Optional[FileLoader] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.file_loader = file_loader
        self.logs: List[str] = []
        self.results: List[BatchResult] = []
        self.batch_outputs: Dict[int, str] = {}
        self.progress = 0

    def log(self, msg: str) -> None:
        logger.info(msg)
        self.logs.append(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}")

    # ------------------------------------------------------------------
    # 準備
    # ------------------------------------------------------------------
    def resolve_variables(self) -> Dict[str, str]:
        resolved: Dict[str, str] = {}
        for v in self.settings.variables:
            if v.type == "file" and v.value:
                if self.file_loader is None:
                    resolved[v.key] = ""
                    continue
                try:
                    resolved[v.key] = self.file_loader(v.value)
                    self.log(f"  ✓ Loaded file variable: {{{{{v.key}}}}}")
                except (OSError, ValueError) as e:
                    self.log(f"  ✗ Failed to load file: {v.value} ({e})")
                    resolved[v.key] = ""
            else:
                resolved[v.key] = v.value or ""

        if self.settings.context_file_path and self.file_loader is not None and "context" not in resolved:
            try:
                resolved["context"] = self.file_loader(self.settings.context_file_path)
                self.log(f"  ✓ Loaded context file: {self.settings.context_file_path}")
            except (OSError, ValueError) as e:
                self.log(f"  ✗ Failed to load context file: {self.settings.context_file_path} ({e})")

        resolved["TARGET_LANGUAGE"] = self.target_lang
        return resolved

    @property
    def target_lang(self) -> str:
        return self.settings.config.target_lang or DEFAULT_TARGET_LANG

    def style_reference(self) -> str:
        count = self.settings.style_ref or 0
        if count <= 0 or not self.results:
            return ""
        examples = self.results[-count:]
        self.log(f"  Injecting {len(examples)} style references")
        return "Style References (Follow this translation style):\n" + "\n".join(
            json.dumps({"original": ex.original, "translated": ex.translated}, ensure_ascii=False)
            for ex in examples
        )

    # ------------------------------------------------------------------
    # 実行
    # ------------------------------------------------------------------
    def run(self, questions: List[Dict[str, Any]], selected_ids: Sequence[Any]) -> List[Dict[str, Any]]:
        """
        selected_ids の問題を翻訳し、マージ済みの問題リスト（コピー）を返す。
        """
        self.logs = []
        self.results = []
        self.batch_outputs = {}
        self.progress = 0

        wanted = {str(i) for i in selected_ids}
        selected = [q for q in questions if str(q.get("id")) in wanted]
        updated = [dict(q) for q in questions]
        if not selected:
            self.log("No questions selected!")
            return updated

        batch_size = self.settings.batch_size or 10
        total_batches = (len(selected) + batch_size - 1) // batch_size
        self.log(f"Starting batch job for {len(selected)} questions...")
        self.log(f"Engine: {self.engine.name} | Batch Size: {batch_size}")

        self.log("Resolving variables...")
        variables = self.resolve_variables()
        # プロンプトが {{context}} を使わない場合はユーザーメッセージの先頭に付ける
        context = "" if "{{context}}" in (self.settings.prompt or "") else variables.get("context", "")

        completed = 0
        for start in range(0, len(selected), batch_size):
            batch_num = start // batch_size + 1
            chunk = selected[start : start + batch_size]

            batch_variables = dict(variables, STYLE_REF=self.style_reference())
            user_input = format_batch(chunk, self.settings.input_format, self.settings.input_template)
            system_prompt = interpolate(self.settings.prompt or "", batch_variables)

            self.log(f"Processing batch {batch_num}/{total_batches} ({len(chunk)} items)...")
            try:
                output = translate_text(
                    self.engine, user_input, self.target_lang, system_prompt or None, context=context
                )
            except TranslationError as e:
                self.log(f"  ✗ Batch {batch_num} error: {e}")
            else:
                self._merge_output(batch_num, chunk, strip_code_fences(output), updated)

            completed += len(chunk)
            self.progress = round(completed / len(selected) * 100)

        self.log("─" * 40)
        self.log(f"Batch translation complete. {completed}/{len(selected)} items processed.")
        return updated

    def _merge_output(
        self,
        batch_num: int,
        chunk: List[Dict[str, Any]],
        text: str,
        updated: List[Dict[str, Any]],
    ) -> None:
        self.batch_outputs[batch_num] = text
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            self.log(f"  ⚠ Batch {batch_num}: Non-JSON response, storing raw text")
            if len(chunk) == 1:
                q = chunk[0]
                self.results.append(BatchResult(q.get("id"), str(q.get("question", "")), text))
            return

        if not isinstance(parsed, list):
            self.log(f"  ⚠ Batch {batch_num}: Received object instead of array")
            return

        self.log(f"  ✓ Batch {batch_num} success: {len(parsed)} items returned")
        by_id = {str(q.get("id")): q for q in chunk}
        for item in parsed:
            if not isinstance(item, dict):
                continue
            original = by_id.get(str(item.get("id")))
            if original is None:
                continue
            self.results.append(
                BatchResult(
                    id=item.get("id"),
                    original=str(original.get("question", "")),
                    translated=item.get("question") or "(No question text)",
                )
            )
            for i, q in enumerate(updated):
                if str(q.get("id")) == str(item.get("id")):
                    updated[i] = {**q, **item}
                    break
