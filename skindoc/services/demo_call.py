"""
SkinDoc — Demo Call

Simulated call object and provisioner for when no media transport or
API key is available.  The simulated replica joins, speaks, asks for a
skin cure and fires acne detections so the whole reaction path can be
exercised end to end without a network.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..core.errors import CallConnectionError, MediaError, ProvisioningError
from ..core.models import ProvisionedConversation

logger = logging.getLogger("skindoc.demo")

Handler = Callable[[Dict[str, Any]], Any]


def _track(playable: bool, handle: Any = None) -> Dict[str, Any]:
    return {
        "state": "playable" if playable else "off",
        "persistentTrack": handle if playable else None,
    }


class DemoProvisioner:
    """Hands out a fake conversation URL after a short delay."""

    def __init__(self, delay: float = 0.2, fail: bool = False) -> None:
        self._delay = delay
        self._fail = fail

    async def provision(self) -> ProvisionedConversation:
        await asyncio.sleep(self._delay)
        if self._fail:
            raise ProvisioningError("Demo provisioning failure", status_code=500)
        conversation_id = uuid.uuid4().hex[:10]
        return ProvisionedConversation(
            persona_id="demo-persona",
            conversation_url=f"demo://conversations/{conversation_id}",
            conversation_id=conversation_id,
        )


class DemoCall:
    """
    In-process stand-in for the media transport.

    Implements the CallObject protocol. After join it plays a short
    scripted conversation over the side channel; replies sent with
    send_app_message() are kept in `sent_messages`.
    """

    def __init__(
        self,
        join_delay: float = 0.1,
        script_interval: float = 1.5,
        fail_join: bool = False,
        fail_screen_share: bool = False,
    ) -> None:
        self._handlers: Dict[str, List[Handler]] = {}
        self._participants: Dict[str, Dict[str, Any]] = {}
        self._join_delay = join_delay
        self._script_interval = script_interval
        self._fail_join = fail_join
        self._fail_screen_share = fail_screen_share
        self._script_task: Optional[asyncio.Task] = None
        self._joined = False
        self._generation = 0
        self.conversation_id: Optional[str] = None
        self.sent_messages: List[Dict[str, Any]] = []

    # ── Subscriptions ───────────────────────────────────────────────────

    def on(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, []))
        return sum(len(h) for h in self._handlers.values())

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload or {})
                if asyncio.iscoroutine(result):
                    asyncio.get_running_loop().create_task(result)
            except Exception as e:
                logger.error(f"Demo handler for {event} failed: {e}")

    # ── CallObject surface ──────────────────────────────────────────────

    async def join(self, url: str, display_name: str) -> Dict[str, Any]:
        generation = self._generation
        await asyncio.sleep(self._join_delay)
        if generation != self._generation:
            raise CallConnectionError("Demo call left before join completed")
        if self._fail_join or not url:
            raise CallConnectionError(f"Demo call could not join {url!r}")

        self.conversation_id = url.rsplit("/", 1)[-1]
        self._participants = {
            "local": {
                "local": True,
                "user_name": display_name,
                "tracks": {
                    "video": _track(True, f"camera-{uuid.uuid4().hex[:6]}"),
                    "screenVideo": _track(False),
                    "audio": _track(True, f"mic-{uuid.uuid4().hex[:6]}"),
                },
            },
            "replica-7f3a": {
                "local": False,
                "user_name": "",
                "tracks": {
                    "video": _track(True, "replica-video"),
                    "screenVideo": _track(False),
                    "audio": _track(True, "replica-audio"),
                },
            },
        }
        self._joined = True
        logger.info(f"Demo call joined {url} as {display_name}")
        self.emit("joined-meeting", {"participants": self.participants()})
        self.emit("participant-joined", {"participant": self._participants["replica-7f3a"]})

        if self._script_task and not self._script_task.done():
            self._script_task.cancel()
        if self._script_interval > 0:
            self._script_task = asyncio.create_task(self._play_script(), name="demo-script")
        return {"participants": self.participants()}

    async def leave(self) -> None:
        self._generation += 1
        await self._cancel_script()
        was_joined = self._joined
        self._joined = False
        self._participants = {}
        if was_joined:
            self.emit("left-meeting", {})

    async def _cancel_script(self) -> None:
        task, self._script_task = self._script_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def start_screen_share(self) -> None:
        self._set_screen_share(True)

    async def stop_screen_share(self) -> None:
        self._set_screen_share(False)

    def _set_screen_share(self, on: bool) -> None:
        if self._fail_screen_share:
            raise MediaError("Screen capture permission denied")
        if not self._joined:
            raise MediaError("Not in a call")
        local = self._participants["local"]
        local["tracks"]["screenVideo"] = _track(on, "screen-capture" if on else None)
        self.emit("started-screen-share" if on else "stopped-screen-share", {})
        self.emit("participant-updated", {"participant": local})

    def participants(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._participants)

    def send_app_message(self, payload: Dict[str, Any], recipient: str = "*") -> None:
        if not self._joined:
            raise CallConnectionError("Not in a call")
        self.sent_messages.append(payload)
        logger.info(f"Demo call received reply: {payload.get('properties', {}).get('text', '')}")

    # ── Scripted replica ────────────────────────────────────────────────

    def _envelope(self, event_type: str, properties: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {
            "message_type": "conversation",
            "event_type": event_type,
            "conversation_id": self.conversation_id,
        }
        if properties is not None:
            envelope["properties"] = properties
        return envelope

    def script(self) -> List[Dict[str, Any]]:
        return [
            self._envelope("conversation.replica.started_speaking"),
            self._envelope("conversation.utterance", {
                "role": "replica",
                "speech": "Hi! I'm your personal skin doctor. What's bothering your skin today?",
            }),
            self._envelope("conversation.replica.stopped_speaking"),
            self._envelope("conversation.user.started_speaking"),
            self._envelope("conversation.utterance", {
                "role": "user",
                "speech": "What is the cure to pimples?",
            }),
            self._envelope("conversation.user.stopped_speaking"),
            self._envelope("conversation.tool_call", {
                "name": "get_skin_cures",
                "arguments": '{"disease": "Pimples"}',
            }),
            self._envelope("conversation.perception_tool_call", {
                "name": "acne_detected",
                "arguments": {"have_acne": True},
            }),
            # Second detection lands inside the cooldown window
            self._envelope("conversation.perception_tool_call", {
                "name": "acne_detected",
                "arguments": {"have_acne": True},
            }),
        ]

    async def _play_script(self) -> None:
        for envelope in self.script():
            await asyncio.sleep(self._script_interval)
            if not self._joined:
                break
            self.emit("app-message", {"data": envelope, "fromId": "replica-7f3a"})
