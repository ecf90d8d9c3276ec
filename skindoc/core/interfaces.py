"""
SkinDoc — Collaborator Interfaces

Protocol definitions for the two external collaborators:
  1. Call object   — media transport (join, roster, side channel)
  2. Provisioner   — persona + conversation creation over HTTP

The session core only ever talks to these protocols — never to a
concrete SDK.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Protocol, runtime_checkable

from .models import ProvisionedConversation


# Transport events the session subscribes to
CALL_EVENTS = (
    "participant-joined",
    "participant-updated",
    "participant-left",
    "app-message",
    "started-screen-share",
    "stopped-screen-share",
    "joined-meeting",
    "left-meeting",
    "error",
)


# ═══════════════════════════════════════════════════════════════════════════
# Call object — media transport
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class CallObject(Protocol):
    """Minimal surface of the media transport."""

    async def join(self, url: str, display_name: str) -> Any:
        """Join the call. Raises CallConnectionError on failure."""
        ...

    async def leave(self) -> None:
        """Leave the call. No error when not joined."""
        ...

    async def start_screen_share(self) -> None:
        """Raises MediaError on failure."""
        ...

    async def stop_screen_share(self) -> None:
        """Raises MediaError on failure."""
        ...

    def participants(self) -> Mapping[str, Mapping[str, Any]]:
        """Synchronous read of the current roster snapshot."""
        ...

    def send_app_message(self, payload: Dict[str, Any], recipient: str = "*") -> None:
        """Best-effort broadcast over the side channel."""
        ...

    def on(self, event: str, handler: Callable[[Dict[str, Any]], Any]) -> None:
        ...

    def off(self, event: str, handler: Callable[[Dict[str, Any]], Any]) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Provisioner — conversation creation
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class Provisioner(Protocol):
    """Creates a persona, then a conversation for it."""

    async def provision(self) -> ProvisionedConversation:
        """Raises ProvisioningError on any failure."""
        ...
