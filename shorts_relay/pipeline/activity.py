"""Append-only activity log for item transitions."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shorts_relay.core.logger import get_logger
from shorts_relay.storage.models import UploadLog


logger = get_logger("shorts_relay.pipeline.activity")


def _json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def log_activity(
    session: Session,
    *,
    item_id: str,
    action: str,
    status: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Persist one log row; failures here never affect the caller's control flow."""

    log_method = logger.info if status == "success" else logger.warning
    log_method("item_activity", item_id=item_id, action=action, status=status, message=message)
    try:
        session.add(
            UploadLog(
                short_id=item_id,
                action=action,
                status=status,
                message=message,
                details=_json(details) if details else None,
            )
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("item_activity_write_failed", item_id=item_id, action=action, error=str(exc))


def list_activity(session: Session, item_id: str) -> List[UploadLog]:
    statement = select(UploadLog).where(UploadLog.short_id == item_id).order_by(UploadLog.created_at.asc())
    return list(session.scalars(statement).all())
