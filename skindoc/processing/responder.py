"""
SkinDoc — Outbound Responder

Serializes replies and hands them to the call's broadcast primitive.
No retries at this layer.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from ..core.errors import ReactionTransmissionError
from ..core.models import OutboundReply

logger = logging.getLogger("skindoc.responder")

BROADCAST = "*"


class OutboundResponder:
    """Sends OutboundReply envelopes to every peer on the call."""

    def __init__(
        self,
        call: Any,
        on_sent: Optional[Callable[[OutboundReply], Any]] = None,
    ) -> None:
        self._call = call
        self._on_sent = on_sent
        self.sent = 0
        self.failed = 0

    def send(self, reply: OutboundReply) -> None:
        """Raises ReactionTransmissionError when the transport rejects it."""
        payload = reply.to_wire()
        try:
            self._call.send_app_message(payload, BROADCAST)
        except Exception as e:
            self.failed += 1
            logger.error(
                f"Reply to conversation {reply.conversation_id} dropped: {e}"
            )
            raise ReactionTransmissionError(str(e), details=payload) from e

        self.sent += 1
        logger.info(f"Reply sent to conversation {reply.conversation_id}")
        if self._on_sent:
            self._on_sent(reply)
