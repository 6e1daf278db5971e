"""Delivery channels: abstract interfaces for app and SMS sends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class ChannelResult:
    """Outcome of a single send."""

    ok: bool
    message_id: str | None = None
    error: str | None = None
    latency_ms: float = 0.0


@runtime_checkable
class AppNotifier(Protocol):
    """In-app notification capability.

    The payload is already anonymised; implementations must treat it as
    opaque and must not enrich it.
    """

    async def send(self, recipient_user_id: str, payload: dict[str, Any]) -> ChannelResult: ...


@runtime_checkable
class SmsGateway(Protocol):
    """SMS capability: deliver ``text`` to ``phone_number``."""

    async def send_sms(self, phone_number: str, text: str) -> ChannelResult: ...


def create_sms_gateway(
    provider_name: str,
    *,
    account_sid: str = "",
    auth_token: str = "",
    messaging_service_sid: str = "",
    timeout_s: float = 10.0,
) -> SmsGateway:
    """Factory function to create an SMS gateway by name.

    Args:
        provider_name: "twilio" or "mock".
        account_sid: Twilio account SID.
        auth_token: Twilio auth token.
        messaging_service_sid: Twilio messaging service SID.
        timeout_s: HTTP timeout for the gateway call.
    """
    if provider_name == "twilio":
        from anontrace.domains.contact_tracing.channels.twilio import TwilioSmsGateway

        return TwilioSmsGateway(
            account_sid=account_sid,
            auth_token=auth_token,
            messaging_service_sid=messaging_service_sid,
            timeout_s=timeout_s,
        )
    elif provider_name == "mock":
        from anontrace.domains.contact_tracing.channels.mock import MockSmsGateway

        return MockSmsGateway()
    else:
        raise ValueError(f"Unknown SMS provider: {provider_name}")
