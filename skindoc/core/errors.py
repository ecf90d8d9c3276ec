"""
SkinDoc — Error Taxonomy

Every failure the session core can surface.  Only provisioning and
connection failures move the session to ERRORED; the rest are reported
and recovered locally.
"""

from __future__ import annotations

from typing import Any, Optional


class SkinDocError(Exception):
    """Base class for all session-core errors."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ProvisioningError(SkinDocError):
    """Persona or conversation creation failed (HTTP or payload)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class CallConnectionError(SkinDocError):
    """The call object failed to join or leave."""


class MediaError(SkinDocError):
    """Screen-share start/stop failed. Never changes lifecycle state."""


class MalformedEventError(SkinDocError):
    """An inbound envelope or tool-call arguments could not be parsed."""


class ReactionTransmissionError(SkinDocError):
    """A reply could not be handed to the side channel."""


class SessionCommandError(SkinDocError):
    """A user command was issued in a state that does not accept it."""
