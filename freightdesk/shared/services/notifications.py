# freightdesk/shared/services/notifications.py
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

import httpx
from fastapi import Request

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Best-effort event fan-out to the delivery service.

    Called after a transition commits. Delivery happens in a background task
    and any failure is logged, never raised to the caller.
    """

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def build_payload(transport_request, event: str, **extra: Any) -> Dict[str, Any]:
        return {
            "event": event,
            "request_id": transport_request.id,
            "reference_code": transport_request.reference_code,
            "status": transport_request.status,
            "coordination_status": transport_request.coordination_status,
            "payment_status": transport_request.payment_status,
            "client_id": transport_request.client_id,
            "assigned_transporter_id": transport_request.assigned_transporter_id,
            "sent_at": datetime.now().isoformat(),
            **extra,
        }

    def notify(self, transport_request, event: str, **extra: Any) -> None:
        try:
            payload = self.build_payload(transport_request, event, **extra)
        except Exception:
            logger.exception(f"❌ Could not build notification '{event}'")
            return

        logger.info(f"📣 {event} - {payload['reference_code']}")
        if not self.webhook_url:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"⚠️ No running loop, notification '{event}' not delivered")
            return

        task = loop.create_task(self._deliver(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=payload)
            if response.status_code >= 400:
                logger.warning(
                    f"⚠️ Notification '{payload['event']}' rejected: {response.status_code} - {response.text[:200]}"
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Notification '{payload['event']}' failed: {e}")
        except Exception:
            logger.exception(f"❌ Unexpected error delivering '{payload['event']}'")

    async def drain(self) -> None:
        """Wait for in-flight deliveries, used at shutdown"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier
