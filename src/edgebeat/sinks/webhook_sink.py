"""
HTTP webhook push sink. POSTs each snapshot as JSON to a fixed URL.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from edgebeat.sinks.base import PublishError, PublishSink

log = logging.getLogger(__name__)


class WebhookSink(PublishSink):

    def __init__(self, url: str, timeout_seconds: float = 5.0, client: Optional[httpx.Client] = None):
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"webhook url must be http(s): {url}")
        self._url = url
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def publish(self, payload: bytes, timeout: float) -> None:
        try:
            response = self._client.post(
                self._url,
                content=payload,
                headers={"Content-Type": "application/json"},
                timeout=timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise PublishError(f"webhook post: {e}") from e

        log.debug("Webhook accepted %d bytes (status %d)", len(payload), response.status_code)

    def name(self) -> str:
        return f"webhook ({self._url})"

    def close(self):
        self._client.close()
