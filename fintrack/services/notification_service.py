"""
Notification delivery used by the scheduled jobs.

Responsibilities:
- Record every notification attempt in the `notifications` table (sent / failed).
- Deliver it to an outbound webhook via httpx when NOTIFY_WEBHOOK_URL is set;
  without a webhook the notification is in-app only and counts as sent.
- Answer "was this already sent recently?" for de-duplicated alerts.

Delivery errors never raise: they are logged, recorded as failed, and
reported to the caller as False.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .. import db
from ..core import config

logger = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_FAILED = "failed"


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class NotificationService:
    def __init__(
        self,
        db_path: Optional[db.PathLike] = None,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.db_path = db.get_db_path(db_path)
        self.webhook_url = webhook_url if webhook_url is not None else config.NOTIFY_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else config.NOTIFY_TIMEOUT_SECONDS
        self._transport = transport

    def _connect(self) -> sqlite3.Connection:
        return db.get_connection(self.db_path)

    async def send(self, user_id: int, payload: Dict[str, Any], dedupe_key: Optional[str] = None) -> bool:
        """Deliver `payload` (must carry a `type`) to `user_id`. Returns True if sent."""
        notification_type = payload.get("type", "generic")
        status = STATUS_SENT
        error: Optional[str] = None

        if self.webhook_url:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(self.webhook_url, json={"user_id": user_id, **payload})
                    resp.raise_for_status()
            except httpx.HTTPError as exc:
                status = STATUS_FAILED
                error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Notification delivery failed: user=%s type=%s error=%s", user_id, notification_type, error
                )
        else:
            logger.debug("No webhook configured; %s for user %s stored in-app only", notification_type, user_id)

        await asyncio.to_thread(self._record, user_id, notification_type, status, dedupe_key, payload, error)
        return status == STATUS_SENT

    def _record(
        self,
        user_id: int,
        notification_type: str,
        status: str,
        dedupe_key: Optional[str],
        payload: Dict[str, Any],
        error: Optional[str],
    ) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO notifications (user_id, type, status, dedupe_key, payload, error, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    user_id,
                    notification_type,
                    status,
                    dedupe_key,
                    json.dumps(payload, default=str, ensure_ascii=False),
                    error,
                    _ts(datetime.now(timezone.utc)),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def has_recent(self, user_id: int, notification_type: str, dedupe_key: str, since: datetime) -> bool:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT 1 FROM notifications WHERE user_id = ? AND type = ? AND status = ? "
                "AND dedupe_key = ? AND created_at >= ? LIMIT 1",
                (user_id, notification_type, STATUS_SENT, dedupe_key, _ts(since)),
            ).fetchone()
        finally:
            conn.close()
        return row is not None
