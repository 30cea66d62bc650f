from __future__ import annotations

import json

import httpx

from smart_gazette.notify.webhook import WebhookNotifier


def _client(status_code: int, seen: list[httpx.Request]) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code)

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_posts_value1_payload() -> None:
    seen: list[httpx.Request] = []
    notifier = WebhookNotifier("https://hooks.example/trigger", client=_client(200, seen))

    assert notifier.notify("Big news") is True
    assert json.loads(seen[0].content) == {"value1": "Big news"}
    assert seen[0].method == "POST"


def test_http_errors_are_reported_not_raised() -> None:
    seen: list[httpx.Request] = []
    notifier = WebhookNotifier("https://hooks.example/trigger", client=_client(500, seen))

    assert notifier.notify("Big news") is False
    assert len(seen) == 1


def test_transport_errors_are_reported_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    notifier = WebhookNotifier(
        "https://hooks.example/trigger",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    assert notifier.notify("Big news") is False


def test_missing_url_disables_notifier() -> None:
    notifier = WebhookNotifier(None)

    assert notifier.notify("ignored") is False
