from __future__ import annotations

import json

import httpx
import pytest

from shorts_relay.integrations.gemini.enhancer import (
    GeminiEnhancer,
    build_prompt,
    parse_model_json,
    sanitize_hashtags,
)
from shorts_relay.pipeline.collaborators import EnhancementError


def _model_reply(payload: dict) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]}


def test_falls_back_to_next_model_and_sanitizes_output() -> None:
    requested_models = []

    def handler(request: httpx.Request) -> httpx.Response:
        model = request.url.path.rsplit("/", 1)[-1].split(":", 1)[0]
        requested_models.append(model)
        if model == "gemini-2.5-pro":
            return httpx.Response(503, json={"error": {"message": "model overloaded"}})
        return httpx.Response(
            200,
            json=_model_reply(
                {
                    "title": "  This   sunset run will   blow your mind " + "!" * 80,
                    "description": "Wait for the final wave",
                    "hashtags": ["#Travel", "beach day", "#travel"],
                }
            ),
        )

    enhancer = GeminiEnhancer(
        api_key="gemini-key",
        model="gemini-2.5-pro",
        base_url="https://gemini.example.test/v1beta",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    result = enhancer.enhance(title="Sunset run", description="Beach", tags=["sunset"])

    assert requested_models == ["gemini-2.5-pro", "gemini-2.5-flash"]
    assert result.title.startswith("This sunset run will blow your mind")
    assert len(result.title) == 60
    assert result.description == "Wait for the final wave"
    assert result.hashtags[:3] == ["#travel", "#beachday", "#sunset"]
    assert "#shorts" in result.hashtags


def test_all_models_failing_raises_enhancement_error() -> None:
    enhancer = GeminiEnhancer(
        api_key="gemini-key",
        client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500, json={}))),
    )

    with pytest.raises(EnhancementError, match="status=500"):
        enhancer.enhance(title="t", description="d", tags=[])


def test_missing_api_key_raises() -> None:
    with pytest.raises(EnhancementError, match="gemini_api_key_missing"):
        GeminiEnhancer(api_key="").generate("prompt")


def test_parse_model_json_accepts_fenced_output() -> None:
    raw = 'Sure!\n```json\n{"title": "A", "description": "B", "hashtags": []}\n```'

    assert parse_model_json(raw)["title"] == "A"
    with pytest.raises(EnhancementError):
        parse_model_json("no json here")


def test_prompt_lists_blocked_channel_names() -> None:
    prompt = build_prompt("Sunset run", "Beach", ["sunset"], ["Clip Factory"])

    assert "never mention these channel names: Clip Factory" in prompt


def test_hashtags_are_capped() -> None:
    tags = sanitize_hashtags([f"#tag{index}" for index in range(20)])

    assert len(tags) == 12
