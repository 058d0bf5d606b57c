"""Per-item upload behavior and metadata shaping."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List, Optional, Sequence, Set

from shorts_relay.settings_store import GlobalConfig, normalize_visibility
from shorts_relay.storage.models import ChannelMapping


MAX_UPLOAD_TAGS = 20
MIN_BLOCKED_TERM_LENGTH = 3
_HANDLE_PATTERN = re.compile(r"@([a-zA-Z0-9._-]+)")
_HASHTAG_PATTERN = re.compile(r"#[a-zA-Z0-9_]+")


@dataclass(frozen=True)
class UploadBehavior:
    visibility: str
    ai_enabled: bool
    delay_hours: int

    @property
    def schedules_publish(self) -> bool:
        return self.delay_hours > 0 and self.visibility in {"unlisted", "private"}


def resolve_upload_behavior(mapping: Optional[ChannelMapping], config: GlobalConfig) -> UploadBehavior:
    """Mapping overrides win; anything unset falls back to the global config."""

    global_visibility = normalize_visibility(config.default_visibility)
    if mapping is None:
        return UploadBehavior(
            visibility=global_visibility,
            ai_enabled=config.ai_enhancement_enabled,
            delay_hours=max(config.unlisted_publish_delay_hours, 0),
        )

    visibility = normalize_visibility(mapping.default_visibility or global_visibility, fallback=global_visibility)
    delay_hours = config.unlisted_publish_delay_hours
    if mapping.publish_delay_hours is not None:
        delay_hours = mapping.publish_delay_hours
    return UploadBehavior(
        visibility=visibility,
        ai_enabled=bool(mapping.ai_enhancement_enabled),
        delay_hours=max(int(delay_hours), 0),
    )


def _comparable(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lstrip("#").lower()).strip()


def _handle(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = _HANDLE_PATTERN.search(value)
    return match.group(1) if match else None


def source_block_terms(source_channel: Optional[str], mapping: Optional[ChannelMapping]) -> List[str]:
    """Names of the source channel that must not leak into destination tags."""

    candidates = [
        (source_channel or "").strip(),
        (mapping.source_channel_id or "").strip() if mapping else "",
        (mapping.source_channel_url or "").strip() if mapping else "",
        (mapping.source_channel_name or "").strip() if mapping else "",
        _handle(source_channel),
        _handle(mapping.source_channel_url if mapping else None),
    ]
    terms: List[str] = []
    for value in candidates:
        if value and value not in terms:
            terms.append(value)
    return terms


def _blocked_comparables(blocked_terms: Iterable[str]) -> Set[str]:
    return {
        comparable
        for comparable in (_comparable(term) for term in blocked_terms)
        if len(comparable) >= MIN_BLOCKED_TERM_LENGTH
    }


def _is_blocked(value: str, blocked: Set[str]) -> bool:
    comparable = _comparable(value)
    if not comparable:
        return False
    return any(comparable == term or term in comparable or comparable in term for term in blocked)


def filter_blocked(values: Sequence[str], blocked_terms: Sequence[str]) -> List[str]:
    blocked = _blocked_comparables(blocked_terms)
    if not blocked:
        return list(values)
    return [value for value in values if not _is_blocked(value, blocked)]


def strip_blocked_hashtags(description: str, blocked_terms: Sequence[str]) -> str:
    blocked = _blocked_comparables(blocked_terms)
    if not description or not blocked:
        return description
    stripped = _HASHTAG_PATTERN.sub(lambda match: "" if _is_blocked(match.group(0), blocked) else match.group(0), description)
    return re.sub(r"\s{2,}", " ", stripped).strip()


def build_upload_tags(
    existing_tags: Optional[Sequence[str]],
    hashtags: Sequence[str],
    blocked_terms: Sequence[str],
) -> List[str]:
    cleaned: List[str] = []
    for value in [*(existing_tags or []), *hashtags]:
        tag = re.sub(r"[^a-zA-Z0-9_]", "", str(value).lstrip("#")).strip()
        if tag:
            cleaned.append(tag)

    unique: List[str] = []
    for tag in filter_blocked(cleaned, blocked_terms):
        if tag not in unique:
            unique.append(tag)
    return unique[:MAX_UPLOAD_TAGS]


def append_hashtags(description: str, hashtags: Sequence[str]) -> str:
    if not hashtags:
        return description
    return f"{description}\n\n{' '.join(hashtags)}"
