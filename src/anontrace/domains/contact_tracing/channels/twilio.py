"""Twilio SMS gateway (Messages API via a messaging service)."""

from __future__ import annotations

import logging
import time

import httpx

from anontrace.domains.contact_tracing.channels import ChannelResult

logger = logging.getLogger(__name__)

_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioSmsGateway:
    """Sends SMS through Twilio's REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        messaging_service_sid: str,
        *,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not (account_sid and auth_token and messaging_service_sid):
            raise ValueError("Twilio credentials are not configured")
        self._url = f"{_API_BASE}/Accounts/{account_sid}/Messages.json"
        self._auth = (account_sid, auth_token)
        self._service_sid = messaging_service_sid
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def send_sms(self, phone_number: str, text: str) -> ChannelResult:
        start = time.monotonic()
        try:
            response = await self._client.post(
                self._url,
                auth=self._auth,
                data={
                    "To": phone_number,
                    "MessagingServiceSid": self._service_sid,
                    "Body": text,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Twilio request failed: %s", type(exc).__name__)
            return ChannelResult(
                ok=False,
                error=f"transport error: {type(exc).__name__}",
                latency_ms=(time.monotonic() - start) * 1000,
            )

        elapsed_ms = (time.monotonic() - start) * 1000
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success:
            return ChannelResult(ok=True, message_id=body.get("sid"), latency_ms=elapsed_ms)

        message = body.get("message") or f"HTTP {response.status_code}"
        logger.warning("Twilio rejected SMS: status=%d", response.status_code)
        return ChannelResult(ok=False, error=message, latency_ms=elapsed_ms)

    async def aclose(self) -> None:
        await self._client.aclose()
