"""
Featur: Product telemetry

``Telemetry.track`` records a product event (swipe, match, message_sent,
featured_granted ...).  Events are always written to the structured log; when
``TELEMETRY_ENDPOINT`` is configured they are also POSTed to it with httpx
from a background task.  Tracking never raises and never blocks the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx
import structlog

from featur.utils.timeutil import utcnow

logger = structlog.get_logger("featur.telemetry")


class Telemetry:
    def __init__(
        self,
        endpoint: str = "",
        timeout_seconds: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout_seconds
        self._client = client
        self._pending: set[asyncio.Task] = set()

    def track(self, event: str, properties: Optional[dict[str, Any]] = None) -> None:
        props = dict(properties or {})
        logger.info("telemetry_event", telemetry_event=event, properties=props)
        if not self._endpoint:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._send(event, props))
        except RuntimeError:
            logger.debug("telemetry_no_loop", telemetry_event=event)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: str, properties: dict[str, Any]) -> None:
        payload = {
            "event": event,
            "properties": properties,
            "timestamp": utcnow().isoformat(),
        }
        try:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self._timeout)
            response = await self._client.post(self._endpoint, json=payload)
            response.raise_for_status()
        except Exception as exc:
            logger.warning("telemetry_send_failed", telemetry_event=event, error=str(exc))

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.flush()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
