"""
Slack notifier — posts plain-text alerts to the SRE channel's incoming webhook.

Unlike a best-effort notifier, a missing webhook or a failed post is an
error here: ``notify`` is a remediation action in its own right and the
caller must learn that nobody was told.

Environment variables:
    SLACK_WEBHOOK_URL — Incoming webhook URL for the SRE channel
"""

from __future__ import annotations

from typing import Optional

import httpx

from threatpilot.exceptions import CollaboratorError
from threatpilot.utils.circuit_breaker import CircuitBreaker
from threatpilot.utils.config import Settings, load_settings
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)


class SlackNotifier:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._http = http or httpx.AsyncClient(timeout=self._settings.request_timeout)
        self._circuit_breaker = CircuitBreaker(
            name="slack",
            failure_threshold=self._settings.circuit_breaker_threshold,
            recovery_timeout=self._settings.circuit_breaker_timeout,
        )

    async def send(self, text: str) -> None:
        webhook_url = self._settings.slack_webhook_url
        if not webhook_url:
            raise CollaboratorError("slack", "Slack webhook not configured")

        async def _do_post() -> None:
            resp = await self._http.post(webhook_url, json={"text": text})
            resp.raise_for_status()

        try:
            await self._circuit_breaker.call(_do_post)
        except httpx.HTTPStatusError as exc:
            logger.error("slack_http_error", status_code=exc.response.status_code)
            raise CollaboratorError("slack", exc.response.text or str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.error("slack_transport_error", error=str(exc))
            raise CollaboratorError("slack", str(exc)) from exc
        logger.info("slack_notification_sent", length=len(text))

    async def close(self) -> None:
        await self._http.aclose()

    @property
    def circuit_breaker_state(self) -> str:
        return self._circuit_breaker.state.value
