"""Content item lifecycle transitions."""

from __future__ import annotations

from typing import Dict, FrozenSet

from shorts_relay.storage.models import (
    STATUS_DOWNLOADED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_UPLOADED,
    STATUS_UPLOADING,
)


FORWARD_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    STATUS_PENDING: frozenset({STATUS_DOWNLOADED, STATUS_FAILED}),
    STATUS_DOWNLOADED: frozenset({STATUS_UPLOADING, STATUS_FAILED}),
    STATUS_UPLOADING: frozenset({STATUS_UPLOADED, STATUS_FAILED}),
    STATUS_UPLOADED: frozenset(),
    STATUS_FAILED: frozenset(),
}
# Only the retry policy may walk this edge.
RETRY_TRANSITION = (STATUS_FAILED, STATUS_PENDING)

TERMINAL_STATUSES = frozenset({STATUS_UPLOADED, STATUS_FAILED})


class InvalidTransitionError(RuntimeError):
    """Raised when a status change would skip or reverse the pipeline order."""


def assert_transition(current: str, target: str, *, retry: bool = False) -> None:
    if retry and (current, target) == RETRY_TRANSITION:
        return
    if target not in FORWARD_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(f"invalid_status_transition from={current} to={target}")
