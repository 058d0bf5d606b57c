"""Gemini-backed title/description/hashtag rewriting for uploads."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx

from shorts_relay.core.config import get_settings
from shorts_relay.core.logger import get_logger
from shorts_relay.pipeline.collaborators import Enhancement, EnhancementError


FALLBACK_MODELS = ("gemini-2.5-flash", "gemini-2.5-flash-lite")
BASE_HASHTAGS = ("#shorts", "#ytshorts", "#viral", "#trending")
MAX_HASHTAGS = 12
MAX_TITLE_LENGTH = 60
MAX_DESCRIPTION_LENGTH = 220
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

logger = get_logger("shorts_relay.integrations.gemini")

_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "description": {"type": "STRING"},
        "hashtags": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["title", "description", "hashtags"],
}


def _compact(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def normalize_hashtag(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_]", "", str(value).lstrip("#")).strip()
    return f"#{cleaned.lower()}" if cleaned else ""


def sanitize_hashtags(values: Sequence[str], fallback_tags: Sequence[str] = ()) -> List[str]:
    merged = [*values, *(f"#{tag}" for tag in fallback_tags), *BASE_HASHTAGS]
    unique: List[str] = []
    for raw in merged:
        tag = normalize_hashtag(raw)
        if tag and tag not in unique:
            unique.append(tag)
    return unique[:MAX_HASHTAGS]


def parse_model_json(raw: str) -> Dict[str, Any]:
    fenced = _FENCED_JSON.search(raw)
    cleaned = fenced.group(1).strip() if fenced else raw.strip()
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start < 0 or end <= start:
            raise EnhancementError("gemini_response_not_json")
        try:
            parsed = json.loads(cleaned[start : end + 1])
        except ValueError as exc:
            raise EnhancementError("gemini_response_not_json") from exc
    if not isinstance(parsed, dict):
        raise EnhancementError("gemini_response_unexpected_shape")
    return parsed


def build_prompt(title: str, description: str, tags: Sequence[str], blocked_terms: Sequence[str]) -> str:
    lines = [
        "You are a YouTube Shorts growth expert.",
        "",
        "Goal: maximize click-through and retention while staying truthful.",
        "",
        "Input:",
        f"- Original title: {title}",
        f"- Original description: {description}",
        f"- Keywords: {', '.join(tags)}",
        "",
        'Return strict JSON only: {"title": "string", "description": "string", "hashtags": ["#tag1"]}',
        "",
        "Rules:",
        f"- title must be high-energy, under {MAX_TITLE_LENGTH} chars, and curiosity-driven.",
        f"- description must be concise, under {MAX_DESCRIPTION_LENGTH} chars, with a clear viewer hook.",
        "- hashtags must be 8 to 12, relevant + discoverable.",
        "- always include #shorts and #ytshorts.",
        "- avoid fake claims, hate, sexual content, and policy-violating text.",
    ]
    if blocked_terms:
        lines.append(f"- never mention these channel names: {', '.join(blocked_terms)}.")
    return "\n".join(lines)


class GeminiEnhancer:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._model = model.strip() or FALLBACK_MODELS[0]
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def candidate_models(self) -> List[str]:
        models: List[str] = []
        for model in (self._model, *FALLBACK_MODELS):
            if model not in models:
                models.append(model)
        return models

    def _post(self, url: str, body: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=body)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.post(url, json=body)

    @staticmethod
    def _extract_text(payload: Dict[str, Any]) -> str:
        candidates = payload.get("candidates") or []
        if not candidates:
            return ""
        parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
        for part in parts:
            text = part.get("text") if isinstance(part, dict) else None
            if isinstance(text, str) and text.strip():
                return text.strip()
        return ""

    def generate(self, prompt: str) -> str:
        if not self._api_key:
            raise EnhancementError("gemini_api_key_missing")

        request_body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.95,
                "maxOutputTokens": 450,
                "responseMimeType": "application/json",
                "responseSchema": _RESPONSE_SCHEMA,
                "thinkingConfig": {"thinkingBudget": 0},
            },
        }
        last_error = "gemini_request_failed"
        for model in self.candidate_models():
            url = f"{self._base_url}/models/{model}:generateContent?key={self._api_key}"
            try:
                response = self._post(url, request_body)
            except httpx.HTTPError as exc:
                last_error = f"gemini_transport_error model={model} detail={exc}"
                continue
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            text = self._extract_text(payload)
            if 200 <= response.status_code < 300 and text:
                return text
            error = payload.get("error")
            detail = str(error.get("message") or "") if isinstance(error, dict) else ""
            last_error = f"gemini_request_failed model={model} status={response.status_code} detail={detail}"
            logger.warning("gemini_model_failed", model=model, status=response.status_code)
        raise EnhancementError(last_error)

    def enhance(
        self,
        *,
        title: str,
        description: str,
        tags: Sequence[str],
        blocked_terms: Sequence[str] = (),
    ) -> Enhancement:
        parsed = parse_model_json(self.generate(build_prompt(title, description, tags, blocked_terms)))
        new_title = _compact(str(parsed.get("title") or title))[:MAX_TITLE_LENGTH]
        new_description = _compact(str(parsed.get("description") or description))[:MAX_DESCRIPTION_LENGTH]
        raw_hashtags = parsed.get("hashtags")
        hashtags = sanitize_hashtags(raw_hashtags if isinstance(raw_hashtags, list) else [], tags)
        return Enhancement(
            title=new_title or title,
            description=new_description or description,
            hashtags=hashtags,
        )


def build_enhancer() -> Optional[GeminiEnhancer]:
    settings = get_settings()
    if not settings.gemini_api_key.strip():
        return None
    return GeminiEnhancer(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_api_base_url,
        timeout_seconds=settings.gemini_timeout_seconds,
    )
