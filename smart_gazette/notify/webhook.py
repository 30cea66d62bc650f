from __future__ import annotations

import logging

import httpx

from smart_gazette.config.settings import Settings

logger = logging.getLogger("smart_gazette.notify")


class WebhookNotifier:
    """Posts `{"value1": text}` to an IFTTT-style webhook.

    A notifier without a URL is disabled. Delivery errors are logged and
    reported through the return value, never raised.
    """

    def __init__(
        self,
        url: str | None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url.strip() if url else None
        self.timeout_seconds = timeout_seconds
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookNotifier":
        return cls(settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds)

    def notify(self, text: str) -> bool:
        if not self.url:
            logger.debug("Webhook URL not configured; skipping notification")
            return False

        try:
            if self._client is not None:
                response = self._client.post(self.url, json={"value1": text})
            else:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    response = client.post(self.url, json={"value1": text})
            response.raise_for_status()
        except httpx.HTTPError as error:
            logger.warning("Webhook notification failed: %s", error, extra={"stage": "notify"})
            return False

        logger.info(
            "Webhook notification sent",
            extra={"stage": "notify", "metrics": {"status_code": response.status_code}},
        )
        return True
