from __future__ import annotations

from shorts_relay.pipeline.upload_settings import (
    append_hashtags,
    build_upload_tags,
    resolve_upload_behavior,
    source_block_terms,
    strip_blocked_hashtags,
)
from shorts_relay.settings_store import GlobalConfig
from shorts_relay.storage.models import ChannelMapping


def test_global_behavior_applies_without_mapping() -> None:
    behavior = resolve_upload_behavior(
        None,
        GlobalConfig(default_visibility="unlisted", unlisted_publish_delay_hours=3, ai_enhancement_enabled=True),
    )

    assert behavior.visibility == "unlisted"
    assert behavior.delay_hours == 3
    assert behavior.ai_enabled is True
    assert behavior.schedules_publish is True


def test_mapping_overrides_global_behavior() -> None:
    mapping = ChannelMapping(default_visibility="private", publish_delay_hours=0, ai_enhancement_enabled=False)

    behavior = resolve_upload_behavior(mapping, GlobalConfig(unlisted_publish_delay_hours=6))

    assert behavior.visibility == "private"
    assert behavior.delay_hours == 0
    assert behavior.schedules_publish is False


def test_mapping_without_delay_inherits_global_delay() -> None:
    mapping = ChannelMapping(default_visibility="unlisted", publish_delay_hours=None, ai_enhancement_enabled=False)

    assert resolve_upload_behavior(mapping, GlobalConfig(unlisted_publish_delay_hours=4)).delay_hours == 4


def test_block_terms_include_handles() -> None:
    mapping = ChannelMapping(
        source_channel_id="UC123",
        source_channel_url="https://www.youtube.com/@clipfactory",
        source_channel_name="Clip Factory",
    )

    terms = source_block_terms("UC123", mapping)

    assert terms == ["UC123", "https://www.youtube.com/@clipfactory", "Clip Factory", "clipfactory"]


def test_tags_are_cleaned_deduplicated_and_capped() -> None:
    hashtags = [f"#topic{index}" for index in range(30)]

    tags = build_upload_tags(["#ClipFactory", "travel", "travel", "beach day"], hashtags, ["Clip Factory"])

    assert tags[:2] == ["travel", "beachday"]
    assert "ClipFactory" not in tags
    assert len(tags) == 20


def test_description_hashtag_handling() -> None:
    assert strip_blocked_hashtags("Sunset run #clipfactory #travel", ["clipfactory"]) == "Sunset run #travel"
    assert append_hashtags("Sunset run", ["#shorts", "#travel"]) == "Sunset run\n\n#shorts #travel"
    assert append_hashtags("Sunset run", []) == "Sunset run"
