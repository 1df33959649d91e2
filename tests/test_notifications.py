# tests/test_notifications.py
import json
from types import SimpleNamespace

import httpx

from freightdesk.shared.services.notifications import NotificationDispatcher

from tests.conftest import run


def fake_request(**overrides):
    data = dict(
        id=7, reference_code="CMD-2026-00007", status="accepted", coordination_status="matching",
        payment_status="pending", client_id=3, assigned_transporter_id=5,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def test_webhook_receives_event_payload():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    dispatcher = NotificationDispatcher(
        webhook_url="https://notify.test/hooks", transport=httpx.MockTransport(handler)
    )

    async def scenario():
        dispatcher.notify(fake_request(), "request_assigned", transporter_id=5)
        await dispatcher.drain()

    run(scenario())

    assert len(received) == 1
    assert received[0]["event"] == "request_assigned"
    assert received[0]["reference_code"] == "CMD-2026-00007"
    assert received[0]["transporter_id"] == 5


def test_delivery_failure_never_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    dispatcher = NotificationDispatcher(
        webhook_url="https://notify.test/hooks", transport=httpx.MockTransport(handler)
    )

    async def scenario():
        dispatcher.notify(fake_request(), "request_cancelled", reason="client")
        await dispatcher.drain()

    run(scenario())


def test_without_webhook_only_logs():
    dispatcher = NotificationDispatcher()
    dispatcher.notify(fake_request(), "request_created")
    assert not dispatcher._pending
