"""Mock channels for testing and local development."""

from __future__ import annotations

import asyncio
from typing import Any

from anontrace.domains.contact_tracing.channels import ChannelResult


class MockSmsGateway:
    """Records sent messages; can fail or stall specific numbers."""

    def __init__(
        self,
        *,
        fail_numbers: set[str] | None = None,
        raise_numbers: set[str] | None = None,
        delay_s: float = 0.0,
        slow_numbers: set[str] | None = None,
    ) -> None:
        self.fail_numbers = fail_numbers or set()
        self.raise_numbers = raise_numbers or set()
        self.slow_numbers = slow_numbers or set()
        self.delay_s = delay_s
        self.sent: list[tuple[str, str]] = []
        self.call_count = 0

    async def send_sms(self, phone_number: str, text: str) -> ChannelResult:
        self.call_count += 1
        if self.delay_s and (not self.slow_numbers or phone_number in self.slow_numbers):
            await asyncio.sleep(self.delay_s)
        if phone_number in self.raise_numbers:
            raise ConnectionError("gateway unreachable")
        if phone_number in self.fail_numbers:
            return ChannelResult(ok=False, error="rejected by carrier")
        self.sent.append((phone_number, text))
        return ChannelResult(ok=True, message_id=f"mock-{self.call_count}")


class MockAppNotifier:
    """Records app payloads; can fail specific recipients."""

    def __init__(
        self,
        *,
        fail_users: set[str] | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.fail_users = fail_users or set()
        self.delay_s = delay_s
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, recipient_user_id: str, payload: dict[str, Any]) -> ChannelResult:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if recipient_user_id in self.fail_users:
            return ChannelResult(ok=False, error="push rejected")
        self.sent.append((recipient_user_id, payload))
        return ChannelResult(ok=True)
