"""Default app channel: the inbox row itself is the delivery."""

from __future__ import annotations

import logging
from typing import Any

from anontrace.domains.contact_tracing.channels import ChannelResult

logger = logging.getLogger(__name__)


class InboxNotifier:
    """App notifier for deployments without a push service.

    The dispatcher has already written the notification row before calling
    ``send``; recipients pick it up from their inbox on next load, so the
    send is acknowledged immediately.
    """

    async def send(self, recipient_user_id: str, payload: dict[str, Any]) -> ChannelResult:
        logger.debug("Exposure alert queued in inbox (kind=%s)", payload.get("kind"))
        return ChannelResult(ok=True)
