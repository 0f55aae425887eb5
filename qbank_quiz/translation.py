"""
translation.py
======================

問題文の翻訳エンジンをまとめたモジュール。

要件:
- エンジンごとに 1 クラス（google / openai / gemini / claude / ollama / lmstudio）
- どのエンジンも translate(text, target_lang, context) -> str で呼べる
- 使うエンジンは設定 (TranslationSettings.config.engine) で選ぶ
- プロンプト内の {{key}} を変数で置換する
  - {{TARGET_LANGUAGE}} は翻訳先言語
  - {{INPUT_TEXT}} があれば本文をシステムプロンプトに埋め込む
  - {{context}} を使っていなければ、コンテキストをユーザーメッセージの先頭に付ける
- 失敗はすべて TranslationError として呼び出し側に返す
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import anthropic
import google.generativeai as genai
import openai
import requests
from deep_translator import GoogleTranslator
from google.api_core.exceptions import GoogleAPIError, ResourceExhausted

logger = logging.getLogger(__name__)

ENGINE_TYPES = ("google", "openai", "gemini", "claude", "ollama", "lmstudio")

DEFAULT_TARGET_LANG = "zh-TW"
DEFAULT_SYSTEM_PROMPT = (
    "You are a professional translator. Translate the following text into the "
    "target language. Return ONLY the translated text."
)
MAX_CONTEXT_CHARS = 10000
REQUEST_TIMEOUT = 120


class TranslationError(RuntimeError):
    """翻訳エンジンの呼び出しに失敗した。"""


# ----------------------------------------------------------------------
#  設定
# ----------------------------------------------------------------------
@dataclass
class EngineConfig:
    enabled: bool = False
    verified: bool = False
    api_key: Optional[str] = None
    model: Optional[str] = None
    api_base: Optional[str] = None
    temperature: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        return cls(
            enabled=bool(data.get("enabled", False)),
            verified=bool(data.get("verified", False)),
            api_key=data.get("apiKey"),
            model=data.get("model"),
            api_base=data.get("apiBase"),
            temperature=data.get("temperature"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"enabled": self.enabled, "verified": self.verified}
        for key, value in (
            ("apiKey", self.api_key),
            ("model", self.model),
            ("apiBase", self.api_base),
            ("temperature", self.temperature),
        ):
            if value is not None:
                d[key] = value
        return d


def default_engines() -> Dict[str, EngineConfig]:
    return {
        "google": EngineConfig(enabled=True, verified=True),
        "openai": EngineConfig(),
        "gemini": EngineConfig(),
        "claude": EngineConfig(),
        "ollama": EngineConfig(api_base="http://localhost:11434", model="llama3"),
        "lmstudio": EngineConfig(api_base="http://localhost:1234/v1", model="local-model"),
    }


@dataclass
class TranslationConfig:
    engine: str = "google"
    target_lang: str = DEFAULT_TARGET_LANG
    api_key: Optional[str] = None
    model: Optional[str] = None
    api_base: Optional[str] = None
    temperature: Optional[float] = None
    force_json_mode: bool = False
    engines: Dict[str, EngineConfig] = field(default_factory=default_engines)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranslationConfig":
        engines = default_engines()
        raw_engines = data.get("engines")
        if isinstance(raw_engines, dict):
            for name, cfg in raw_engines.items():
                if isinstance(cfg, dict):
                    engines[name] = EngineConfig.from_dict(cfg)
        return cls(
            engine=data.get("engine") or "google",
            target_lang=data.get("targetLang") or DEFAULT_TARGET_LANG,
            api_key=data.get("apiKey"),
            model=data.get("model"),
            api_base=data.get("apiBase"),
            temperature=data.get("temperature"),
            force_json_mode=bool(data.get("forceJsonMode", False)),
            engines=engines,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "engine": self.engine,
            "targetLang": self.target_lang,
            "forceJsonMode": self.force_json_mode,
            "engines": {k: v.to_dict() for k, v in self.engines.items()},
        }
        for key, value in (
            ("apiKey", self.api_key),
            ("model", self.model),
            ("apiBase", self.api_base),
            ("temperature", self.temperature),
        ):
            if value is not None:
                d[key] = value
        return d

    def resolve(self, engine: Optional[str] = None) -> EngineConfig:
        """
        エンジン個別の設定を優先し、無い項目はトップレベルの値で補う。
        """
        name = engine or self.engine
        own = self.engines.get(name) or EngineConfig()
        return EngineConfig(
            enabled=own.enabled,
            verified=own.verified,
            api_key=own.api_key or self.api_key,
            model=own.model or self.model,
            api_base=own.api_base or self.api_base,
            temperature=own.temperature or self.temperature,
        )


@dataclass
class Variable:
    id: str
    key: str
    value: str
    type: str = "text"  # text / file / template
    file_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Variable":
        return cls(
            id=str(data.get("id", "")),
            key=str(data.get("key", "")),
            value=str(data.get("value") or ""),
            type=data.get("type") or "text",
            file_name=data.get("fileName"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = {"id": self.id, "key": self.key, "value": self.value, "type": self.type}
        if self.file_name:
            d["fileName"] = self.file_name
        return d


@dataclass
class Template:
    id: str
    name: str
    prompt: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "prompt": self.prompt}


@dataclass
class TranslationSettings:
    """クイズごとの translation-config.json に保存される設定一式。"""

    config: TranslationConfig = field(default_factory=TranslationConfig)
    prompt: str = ""
    show_thinking: bool = False
    context_file_path: str = ""
    style_ref: int = 0
    variables: List[Variable] = field(default_factory=list)
    saved_templates: List[Template] = field(default_factory=list)
    batch_size: int = 10
    input_format: str = "json"  # json / markdown / xml / custom
    input_template: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TranslationSettings":
        if not data:
            return cls()
        templates = [
            Template(id=str(t.get("id", "")), name=str(t.get("name", "")), prompt=str(t.get("prompt", "")))
            for t in data.get("savedTemplates") or []
            if isinstance(t, dict)
        ]
        return cls(
            config=TranslationConfig.from_dict(data.get("config") or {}),
            prompt=data.get("prompt") or "",
            show_thinking=bool(data.get("showThinking", False)),
            context_file_path=data.get("contextFilePath") or "",
            style_ref=int(data.get("styleRef") or 0),
            variables=[Variable.from_dict(v) for v in data.get("variables") or [] if isinstance(v, dict)],
            saved_templates=templates,
            batch_size=int(data.get("batchSize") or 10),
            input_format=data.get("inputFormat") or "json",
            input_template=data.get("inputTemplate"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "config": self.config.to_dict(),
            "prompt": self.prompt,
            "showThinking": self.show_thinking,
            "contextFilePath": self.context_file_path,
            "styleRef": self.style_ref,
            "variables": [v.to_dict() for v in self.variables],
            "savedTemplates": [t.to_dict() for t in self.saved_templates],
            "batchSize": self.batch_size,
            "inputFormat": self.input_format,
        }
        if self.input_template is not None:
            d["inputTemplate"] = self.input_template
        return d

    def save_template(self, name: str, template_id: str) -> Template:
        """同名テンプレートがあれば上書き、無ければ追加する。"""
        for i, t in enumerate(self.saved_templates):
            if t.name == name:
                self.saved_templates[i] = Template(id=t.id, name=name, prompt=self.prompt)
                return self.saved_templates[i]
        template = Template(id=template_id, name=name, prompt=self.prompt)
        self.saved_templates.append(template)
        return template


# ----------------------------------------------------------------------
#  プロンプト組み立て
# ----------------------------------------------------------------------
@dataclass
class PromptContext:
    system_prompt: str
    user_content: str


def interpolate(template: str, variables: Dict[str, str]) -> str:
    """{{key}} を値で置き換える。"""
    for key, value in variables.items():
        template = template.replace("{{" + key + "}}", value)
    return template


def build_prompt(
    text: str,
    target_lang: str,
    system_prompt: Optional[str] = None,
    variables: Optional[Dict[str, str]] = None,
    context: str = "",
) -> PromptContext:
    """
    システムプロンプトとユーザーメッセージを組み立てる。

    context: 参照資料（コンテキストファイルの中身など）。
    """
    lang = target_lang or DEFAULT_TARGET_LANG
    values = dict(variables or {})
    if context:
        values["context"] = context

    final_system = interpolate(system_prompt or DEFAULT_SYSTEM_PROMPT, values)
    final_system = final_system.replace("{{TARGET_LANGUAGE}}", lang)

    used_input_text = "{{INPUT_TEXT}}" in final_system
    if used_input_text:
        final_system = final_system.replace("{{INPUT_TEXT}}", text)
        user_content = "Please proceed with the translation."
    else:
        user_content = f"Text to translate:\n{text}\n\nTarget Language: {lang}"

    context_data = values.get("context", "")
    used_context = bool(system_prompt) and "{{context}}" in system_prompt
    if context_data and not used_context:
        user_content = f"Context:\n{context_data[:MAX_CONTEXT_CHARS]}\n\n" + user_content

    return PromptContext(system_prompt=final_system, user_content=user_content)


# ----------------------------------------------------------------------
#  エンジン
# ----------------------------------------------------------------------
class TranslationEngine(ABC):
    """翻訳エンジンの共通インターフェース。"""

    name: str = ""

    def __init__(self, config: EngineConfig, force_json_mode: bool = False):
        self.config = config
        self.force_json_mode = force_json_mode

    @property
    def temperature(self) -> float:
        return self.config.temperature or 0.3

    def _messages(self, context: PromptContext) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": context.system_prompt},
            {"role": "user", "content": context.user_content},
        ]

    def _require_api_key(self) -> str:
        if not self.config.api_key:
            raise TranslationError(f"API Key required for {self.name}")
        return self.config.api_key

    @abstractmethod
    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        pass

    @abstractmethod
    def test(self) -> None:
        """接続確認。失敗したら TranslationError。"""


class GoogleEngine(TranslationEngine):
    """無料の Google 翻訳。プロンプトは使わない。"""

    name = "google"

    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        try:
            return GoogleTranslator(source="auto", target=target_lang or DEFAULT_TARGET_LANG).translate(text)
        except Exception as e:
            raise TranslationError(f"Google Translate failed: {e}") from e

    def test(self) -> None:
        self.translate("test", "en", PromptContext("", ""))


class OpenAIEngine(TranslationEngine):
    name = "openai"

    def _client(self) -> openai.OpenAI:
        return openai.OpenAI(api_key=self._require_api_key())

    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        client = self._client()
        kwargs: Dict[str, Any] = {}
        if self.force_json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            completion = client.chat.completions.create(
                model=self.config.model or "gpt-4o",
                messages=self._messages(context),
                temperature=self.temperature,
                **kwargs,
            )
        except openai.OpenAIError as e:
            raise TranslationError(f"OpenAI error: {e}") from e
        return completion.choices[0].message.content or ""

    def test(self) -> None:
        try:
            self._client().models.list()
        except openai.OpenAIError as e:
            raise TranslationError(f"OpenAI error: {e}") from e


class GeminiEngine(TranslationEngine):
    name = "gemini"

    def _model(self) -> genai.GenerativeModel:
        genai.configure(api_key=self._require_api_key())
        generation_config = None
        if self.force_json_mode:
            generation_config = {"response_mime_type": "application/json"}
        return genai.GenerativeModel(
            self.config.model or "gemini-1.5-flash",
            generation_config=generation_config,
        )

    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        prompt = f"{context.system_prompt}\n\n{context.user_content}"
        try:
            response = self._model().generate_content(prompt)
        except ResourceExhausted as e:
            # クォータ上限（429）
            raise TranslationError(f"Gemini quota exceeded (429): {e}") from e
        except GoogleAPIError as e:
            raise TranslationError(f"Gemini error: {e}") from e
        return response.text

    def test(self) -> None:
        try:
            self._model().generate_content("Test")
        except GoogleAPIError as e:
            raise TranslationError(f"Gemini error: {e}") from e


class ClaudeEngine(TranslationEngine):
    name = "claude"
    default_model = "claude-3-5-sonnet-20240620"

    def _client(self) -> anthropic.Anthropic:
        return anthropic.Anthropic(api_key=self._require_api_key())

    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        try:
            msg = self._client().messages.create(
                model=self.config.model or self.default_model,
                max_tokens=1024,
                system=context.system_prompt,
                messages=[{"role": "user", "content": context.user_content}],
            )
        except anthropic.APIError as e:
            raise TranslationError(f"Claude error: {e}") from e
        return msg.content[0].text

    def test(self) -> None:
        try:
            self._client().messages.create(
                model=self.config.model or self.default_model,
                max_tokens=1,
                messages=[{"role": "user", "content": "Hi"}],
            )
        except anthropic.APIError as e:
            raise TranslationError(f"Claude error: {e}") from e


class OllamaEngine(TranslationEngine):
    name = "ollama"

    @property
    def api_base(self) -> str:
        return (self.config.api_base or "http://localhost:11434").rstrip("/")

    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        body: Dict[str, Any] = {
            "model": self.config.model or "llama3",
            "messages": self._messages(context),
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        if self.force_json_mode:
            body["format"] = "json"
        try:
            res = requests.post(f"{self.api_base}/api/chat", json=body, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise TranslationError(f"Ollama Error: {e}") from e
        if not res.ok:
            raise TranslationError(f"Ollama Error: {res.status_code} {res.reason}")
        return (res.json().get("message") or {}).get("content") or ""

    def test(self) -> None:
        try:
            res = requests.get(f"{self.api_base}/api/tags", timeout=10)
        except requests.RequestException as e:
            raise TranslationError(f"Failed to connect to Ollama: {e}") from e
        if not res.ok:
            raise TranslationError("Failed to connect to Ollama")


class LMStudioEngine(TranslationEngine):
    """LM Studio (OpenAI 互換 API)。"""

    name = "lmstudio"

    @property
    def api_base(self) -> str:
        base = (self.config.api_base or "http://localhost:1234/v1").rstrip("/")
        if not base.endswith("/v1"):
            base += "/v1"
        return base

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def translate(self, text: str, target_lang: str, context: PromptContext) -> str:
        body: Dict[str, Any] = {
            "model": self.config.model or "local-model",
            "messages": self._messages(context),
            "temperature": self.temperature,
        }
        if self.force_json_mode:
            # LM Studio は json_object ではなく json_schema を使う
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "translation_response",
                    "strict": False,
                    "schema": {"type": "array"},
                },
            }
        url = f"{self.api_base}/chat/completions"
        logger.info(f"[LM Studio] Calling {url} with model: {body['model']}")
        try:
            res = requests.post(url, json=body, headers=self._headers(), timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise TranslationError(f"LM Studio Error: {e}") from e
        if not res.ok:
            try:
                err = res.json()
                detail = (err.get("error") or {}).get("message") or err.get("message") or str(err)
            except ValueError:
                detail = res.text
            raise TranslationError(f"LM Studio Error: {res.status_code} {res.reason} - {detail}")
        choices = res.json().get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    def test(self) -> None:
        try:
            res = requests.get(f"{self.api_base}/models", headers=self._headers(), timeout=10)
        except requests.RequestException as e:
            raise TranslationError(f"Failed to connect to LM Studio: {e}") from e
        if not res.ok:
            raise TranslationError("Failed to connect to LM Studio")


ENGINE_CLASSES = {
    "google": GoogleEngine,
    "openai": OpenAIEngine,
    "gemini": GeminiEngine,
    "claude": ClaudeEngine,
    "ollama": OllamaEngine,
    "lmstudio": LMStudioEngine,
}


def create_engine(
    config: TranslationConfig,
    engine: Optional[str] = None,
    api_keys: Optional[Dict[str, str]] = None,
) -> TranslationEngine:
    """
    設定からエンジンを作る。

    api_keys: 環境変数などから読んだキー。設定ファイルにキーが無い場合に使う。
    """
    name = engine or config.engine
    if name == "google_free":
        name = "google"
    cls = ENGINE_CLASSES.get(name)
    if cls is None:
        raise ValueError(f"Invalid engine: {name}")

    resolved = config.resolve(name)
    if not resolved.api_key and api_keys and api_keys.get(name):
        resolved.api_key = api_keys[name]
    logger.info(f"[Translate] Engine: {name}, apiBase: {resolved.api_base}, model: {resolved.model}")
    return cls(resolved, force_json_mode=config.force_json_mode)


def translate_text(
    engine: TranslationEngine,
    text: str,
    target_lang: str,
    system_prompt: Optional[str] = None,
    variables: Optional[Dict[str, str]] = None,
    context: str = "",
) -> str:
    """プロンプトを組み立ててから engine.translate を呼ぶ。"""
    if not text:
        raise ValueError("Text is required")
    prompt = build_prompt(text, target_lang, system_prompt, variables, context)
    return engine.translate(text, target_lang, prompt)
