"""
Model backends.

A backend turns a list of subtitle entries into translated entries (and
repairs stitch windows) by calling a remote language model. It can also
pick key terms out of a video title. Provider dialects and loose JSON
shapes are handled here; callers only ever get validated results back.

Supported providers:
- OpenAI-compatible chat completions (OpenAI, DeepSeek, self-hosted gateways)
- Anthropic Claude messages API
"""
import json
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import httpx
from loguru import logger
from pydantic import ValidationError

from config import settings
from subtitles.models import SubtitleEntry
from .boundary import BoundaryAnalysis, BoundaryIssue
from .errors import BackendError, BackendResponseError
from .models import GenerationParams, TranslationContext
from .schemas import KeywordListPayload, SubtitleListPayload


def get_httpx_client_kwargs() -> dict:
    """Get httpx client kwargs including proxy if configured"""
    kwargs = {"timeout": settings.LLM_TIMEOUT}
    if settings.PROXY_URL:
        kwargs["proxy"] = settings.PROXY_URL
        logger.debug(f"Using proxy: {settings.PROXY_URL}")
    return kwargs


LANGUAGE_NAMES = {
    "en": "English",
    "zh-CN": "Simplified Chinese",
    "zh-TW": "Traditional Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ru": "Russian",
}

ISSUE_DESCRIPTIONS = {
    BoundaryIssue.SENTENCE_INCOMPLETE: "the previous sentence is not finished",
    BoundaryIssue.CONNECTOR_BREAK: "the text breaks right after a connecting word",
    BoundaryIssue.CLAUSE_UNFINISHED: "a clause is left dangling",
    BoundaryIssue.CONTINUATION_START: "the next line opens with a continuation word",
}


def parse_subtitle_payload(raw: str) -> List[SubtitleEntry]:
    """
    Normalize a model reply into validated entries.

    Accepts a bare JSON object, a fenced ```json block, text around a JSON
    object, a bare array, or an object keyed `data` instead of `subtitles`.

    Raises:
        BackendResponseError: if no valid subtitle list can be recovered
    """
    text = (raw or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    data = _load_json(text)
    if isinstance(data, list):
        data = {"subtitles": data}
    elif isinstance(data, dict) and "subtitles" not in data and isinstance(data.get("data"), list):
        data = {"subtitles": data["data"]}

    try:
        payload = SubtitleListPayload.model_validate(data)
    except ValidationError as e:
        raise BackendResponseError(f"Response does not match subtitle schema: {e.error_count()} errors") from e

    return payload.to_entries()


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object or array embedded in prose
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue

    raise BackendResponseError(f"Response is not JSON: {text[:80]!r}")


def parse_keyword_payload(raw: str) -> List[str]:
    """
    Normalize a keyword extraction reply.

    Accepts `{"keywords": [...]}`, a bare array, or either one fenced.

    Raises:
        BackendResponseError: if no keyword list can be recovered
    """
    text = (raw or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    data = _load_json(text)
    if isinstance(data, list):
        data = {"keywords": data}

    try:
        payload = KeywordListPayload.model_validate(data)
    except ValidationError as e:
        raise BackendResponseError(f"Response does not match keyword schema: {e.error_count()} errors") from e

    return payload.to_keywords()


class ModelBackend(ABC):
    """Abstract base class for model backends"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name"""
        pass

    @abstractmethod
    async def translate(
        self,
        entries: Sequence[SubtitleEntry],
        context: TranslationContext,
        params: GenerationParams,
    ) -> List[SubtitleEntry]:
        """Translate entries, returning one entry per input entry"""
        pass

    @abstractmethod
    async def stitch_context(
        self,
        window: Sequence[SubtitleEntry],
        hint: BoundaryAnalysis,
        context: TranslationContext,
        params: GenerationParams,
    ) -> List[SubtitleEntry]:
        """Rewrite a window around a segment join so meaning flows across it"""
        pass

    async def extract_keywords(
        self,
        title: str,
        context: TranslationContext,
        params: GenerationParams,
        max_keywords: int,
    ) -> List[str]:
        """Key terms of a video title; backends without keyword support return none"""
        return []


class ChatModelBackend(ModelBackend):
    """
    Shared prompt building and response handling for chat-style providers.

    Subclasses only implement `_complete`, which sends one system/user
    exchange and returns the reply text.
    """

    default_base_url = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.model = model or settings.LLM_MODEL
        self.base_url = (base_url or settings.LLM_BASE_URL or self.default_base_url).rstrip("/")
        self._client = client
        if not self.api_key:
            logger.warning(f"{self.name} API key not configured")

    async def translate(self, entries, context, params) -> List[SubtitleEntry]:
        prompt = self._build_translate_prompt(entries, context, params)
        reply = await self._complete(
            system=(
                "You are a professional subtitle translator. Translate accurately while "
                "preserving meaning and tone. Always return exactly one subtitle per input subtitle."
            ),
            user=prompt,
            temperature=params.temperature,
            model=context.model or self.model,
        )
        return parse_subtitle_payload(reply)

    async def stitch_context(self, window, hint, context, params) -> List[SubtitleEntry]:
        prompt = self._build_stitch_prompt(window, hint, context)
        reply = await self._complete(
            system=(
                "You are a professional subtitle editor. You repair meaning that was broken "
                "when a translation was split into separately translated parts."
            ),
            user=prompt,
            temperature=params.temperature,
            model=context.model or self.model,
        )
        return parse_subtitle_payload(reply)

    async def extract_keywords(self, title, context, params, max_keywords) -> List[str]:
        reply = await self._complete(
            system=(
                "You identify technical terms, proper nouns and key concepts in video titles "
                "so they can be translated consistently."
            ),
            user=self._build_keyword_prompt(title, context, max_keywords),
            temperature=params.temperature,
            model=context.model or self.model,
        )
        return parse_keyword_payload(reply)

    @abstractmethod
    async def _complete(self, system: str, user: str, temperature: float, model: str) -> str:
        pass

    async def _post(self, url: str, headers: dict, body: dict) -> dict:
        if not self.api_key:
            raise BackendError(f"{self.name} API key not configured")

        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=body)
            else:
                async with httpx.AsyncClient(**get_httpx_client_kwargs()) as client:
                    response = await client.post(url, headers=headers, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise BackendError(f"{self.name} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"{self.name} request failed: {e}") from e
        except ValueError as e:
            raise BackendResponseError(f"{self.name} returned a non-JSON body") from e

    def _lang_name(self, code: str) -> str:
        return LANGUAGE_NAMES.get(code, code)

    def _style_notes(self, context: TranslationContext) -> List[str]:
        notes = []
        if context.taiwan_optimization and context.target_lang.startswith("zh"):
            notes.append("Use Traditional Chinese phrasing as spoken in Taiwan.")
        if context.natural_tone:
            notes.append("Keep the tone natural and conversational.")
        if context.keywords:
            notes.append(f"Translate these key terms consistently: {', '.join(context.keywords)}.")
        return notes

    def _build_translate_prompt(
        self,
        entries: Sequence[SubtitleEntry],
        context: TranslationContext,
        params: GenerationParams,
    ) -> str:
        source = self._lang_name(context.source_lang)
        target = self._lang_name(context.target_lang)
        lines = [f"Translate these {source} subtitles into {target}."]
        if context.video_title:
            lines.append(f"Video: {context.video_title}")
        if context.segment_index is not None and context.segment_count:
            lines.append(
                f"This is part {context.segment_index + 1} of {context.segment_count}; keep style consistent."
            )
        if params.is_retry:
            lines.append("A previous attempt returned an invalid result. Follow the format exactly.")
        lines.extend(self._style_notes(context))
        lines.append(
            f"There are {len(entries)} subtitles. Return exactly {len(entries)}, in the same order, "
            "with start and end copied unchanged."
        )
        lines.append('Reply with JSON only: {"subtitles":[{"start":0.0,"end":0.0,"text":"..."}]}')
        lines.append("")
        lines.append(json.dumps([e.to_dict() for e in entries], ensure_ascii=False))
        return "\n".join(lines)

    def _build_keyword_prompt(self, title: str, context: TranslationContext, max_keywords: int) -> str:
        source = self._lang_name(context.source_lang)
        target = self._lang_name(context.target_lang)
        return "\n".join([
            f"Video title ({source}): {title}",
            f"List up to {max_keywords} key terms from this title that a {target} translation "
            "of the video's subtitles must render consistently: names, products, technical terms.",
            "Keep each term in its original form.",
            'Reply with JSON only: {"keywords":["..."]}',
        ])

    def _build_stitch_prompt(
        self,
        window: Sequence[SubtitleEntry],
        hint: BoundaryAnalysis,
        context: TranslationContext,
    ) -> str:
        problems = "; ".join(ISSUE_DESCRIPTIONS[issue] for issue in hint.issues) or "low continuity"
        lines = [
            "These subtitles were translated in separate parts and the join between the parts "
            "lies near the middle of the list.",
        ]
        if context.video_title:
            lines.append(f"Video: {context.video_title}")
        lines.append(f"Problems at the join: {problems}.")
        lines.append(
            f"Continuity score: {hint.continuity_score}/100, gap between parts: {hint.time_gap_seconds:.2f}s."
        )
        lines.extend(self._style_notes(context))
        lines.append(
            f"Fix the wording so the meaning flows across the join. Keep all {len(window)} subtitles "
            "and every start/end time exactly as given. You may move words between neighbouring "
            "subtitles but do not repeat content."
        )
        lines.append('Reply with JSON only: {"subtitles":[{"start":0.0,"end":0.0,"text":"..."}]}')
        lines.append("")
        lines.append(json.dumps([e.to_dict() for e in window], ensure_ascii=False))
        return "\n".join(lines)


class OpenAIBackend(ChatModelBackend):
    """OpenAI chat completions, and any endpoint speaking the same dialect"""

    default_base_url = "https://api.openai.com/v1"

    @property
    def name(self) -> str:
        return "openai"

    async def _complete(self, system: str, user: str, temperature: float, model: str) -> str:
        result = await self._post(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            body={
                "model": model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                "temperature": temperature,
                "response_format": {"type": "json_object"},
            },
        )
        try:
            return result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendResponseError(f"Unexpected {self.name} response shape") from e


class DeepSeekBackend(OpenAIBackend):
    """DeepSeek translation backend (OpenAI-compatible API)"""

    default_base_url = "https://api.deepseek.com/v1"

    @property
    def name(self) -> str:
        return "deepseek"


class ClaudeBackend(ChatModelBackend):
    """Anthropic Claude messages API"""

    default_base_url = "https://api.anthropic.com/v1"
    max_output_tokens = 16000

    @property
    def name(self) -> str:
        return "claude"

    async def _complete(self, system: str, user: str, temperature: float, model: str) -> str:
        result = await self._post(
            f"{self.base_url}/messages",
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            body={
                "model": model,
                "max_tokens": self.max_output_tokens,
                "system": system,
                "messages": [{"role": "user", "content": user}],
                "temperature": temperature,
            },
        )
        try:
            return "".join(block.get("text", "") for block in result["content"])
        except (KeyError, TypeError, AttributeError) as e:
            raise BackendResponseError(f"Unexpected {self.name} response shape") from e


BACKENDS = {
    "openai": OpenAIBackend,
    "deepseek": DeepSeekBackend,
    "claude": ClaudeBackend,
}


def create_backend(
    provider: Optional[str] = None,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ModelBackend:
    """Create the backend for a provider name (defaults to settings.LLM_PROVIDER)"""
    provider = (provider or settings.LLM_PROVIDER).lower()
    backend_cls = BACKENDS.get(provider)
    if backend_cls is None:
        raise ValueError(f"Unknown LLM provider: {provider}. Available: {', '.join(BACKENDS)}")
    logger.info(f"Using {provider} model backend")
    return backend_cls(api_key=api_key, model=model, base_url=base_url, client=client)
