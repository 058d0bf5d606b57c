"""Destination channel credential lookup."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shorts_relay.core.logger import get_logger
from shorts_relay.pipeline.collaborators import DestinationCredential
from shorts_relay.storage.db import session_scope
from shorts_relay.storage.models import DestinationChannel
from shorts_relay.storage.security import decrypt_token, encrypt_token


logger = get_logger("shorts_relay.integrations.youtube.credentials")


class StoredCredentialResolver:
    """Resolve refresh tokens stored encrypted in ``destination_channels``.

    Items with no target channel fall back to the deployment-wide refresh token
    when one is configured.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        default_refresh_token: str = "",
        decrypt: Callable[[str], str] = decrypt_token,
    ) -> None:
        self._session_factory = session_factory
        self._default_refresh_token = default_refresh_token.strip()
        self._decrypt = decrypt

    def resolve(self, target_channel_id: Optional[str]) -> Optional[DestinationCredential]:
        channel_id = (target_channel_id or "").strip()
        if not channel_id:
            if self._default_refresh_token:
                return DestinationCredential(channel_id="default", refresh_token=self._default_refresh_token)
            return None

        with session_scope(self._session_factory) as session:
            channel = session.scalar(select(DestinationChannel).where(DestinationChannel.channel_id == channel_id))
            if channel is None or not channel.is_connected or not channel.refresh_token_encrypted:
                logger.warning("destination_channel_not_connected", channel_id=channel_id)
                return None
            try:
                refresh_token = self._decrypt(channel.refresh_token_encrypted)
            except ValueError:
                logger.error("destination_token_decrypt_failed", channel_id=channel_id)
                return None
            return DestinationCredential(
                channel_id=channel.channel_id,
                refresh_token=refresh_token,
                channel_title=channel.channel_title,
            )


def store_destination_channel(
    session: Session,
    *,
    channel_id: str,
    refresh_token: str,
    channel_title: Optional[str] = None,
) -> DestinationChannel:
    """Upsert a connected destination with its refresh token encrypted at rest."""

    channel = session.scalar(select(DestinationChannel).where(DestinationChannel.channel_id == channel_id))
    if channel is None:
        channel = DestinationChannel(channel_id=channel_id)
        session.add(channel)
    channel.channel_title = channel_title
    channel.refresh_token_encrypted = encrypt_token(refresh_token)
    channel.is_connected = True
    if channel.connected_at is None:
        channel.connected_at = datetime.now(timezone.utc)
    session.commit()
    return channel
