"""Shared test fixtures: fake call object, fake provisioner, fake clock."""

import asyncio
import json
from collections import defaultdict
from typing import Any, Callable

import pytest

from skindoc.core.errors import ProvisioningError
from skindoc.core.models import ProvisionedConversation
from skindoc.processing.gate import CooldownGate
from skindoc.services.session import SessionManager


CONVERSATION_URL = "https://tavus.daily.co/c0ffee1234"
CONVERSATION_ID = "c0ffee1234"


def track(playable: bool = True, handle: Any = "handle") -> dict[str, Any]:
    return {"state": "playable" if playable else "off", "persistentTrack": handle if playable else None}


def default_participants() -> dict[str, Any]:
    return {
        "local": {
            "local": True,
            "user_name": "You",
            "tracks": {"video": track(handle="cam"), "screenVideo": track(False), "audio": track(handle="mic")},
        },
        "remote-abcd1234": {
            "local": False,
            "user_name": "",
            "tracks": {"video": track(handle="rvid"), "screenVideo": track(False), "audio": track(handle="raud")},
        },
    }


def envelope(event_type: str, properties: Any = None, conversation_id: str = CONVERSATION_ID) -> dict[str, Any]:
    env: dict[str, Any] = {
        "message_type": "conversation",
        "event_type": event_type,
        "conversation_id": conversation_id,
    }
    if properties is not None:
        env["properties"] = properties
    return env


def tool_call(disease: str, conversation_id: str = CONVERSATION_ID) -> dict[str, Any]:
    return envelope(
        "conversation.tool_call",
        {"name": "get_skin_cures", "arguments": json.dumps({"disease": disease})},
        conversation_id,
    )


def acne_detected(conversation_id: str = CONVERSATION_ID) -> dict[str, Any]:
    return envelope(
        "conversation.perception_tool_call",
        {"name": "acne_detected", "arguments": {"have_acne": True}},
        conversation_id,
    )


class FakeCall:
    """Records everything the session does to the transport."""

    def __init__(self) -> None:
        self.handlers: dict[str, list[Callable]] = defaultdict(list)
        self.snapshot: dict[str, Any] = default_participants()
        self.joins: list[tuple[str, str]] = []
        self.leaves = 0
        self.sent: list[tuple[dict[str, Any], str]] = []
        self.screen_calls: list[str] = []
        self.join_error: Exception | None = None
        self.leave_error: Exception | None = None
        self.send_error: Exception | None = None
        self.screen_share_error: Exception | None = None
        self.join_gate: asyncio.Event | None = None

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    def handler_count(self, event: str) -> int:
        return len(self.handlers[event])

    def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        for handler in list(self.handlers[event]):
            handler(payload or {})

    def deliver(self, env: Any) -> None:
        self.emit("app-message", {"data": env, "fromId": "remote-abcd1234"})

    async def join(self, url: str, display_name: str) -> dict[str, Any]:
        self.joins.append((url, display_name))
        if self.join_gate is not None:
            await self.join_gate.wait()
        if self.join_error is not None:
            raise self.join_error
        return {}

    async def leave(self) -> None:
        self.leaves += 1
        if self.leave_error is not None:
            raise self.leave_error

    async def start_screen_share(self) -> None:
        self.screen_calls.append("start")
        if self.screen_share_error is not None:
            raise self.screen_share_error

    async def stop_screen_share(self) -> None:
        self.screen_calls.append("stop")
        if self.screen_share_error is not None:
            raise self.screen_share_error

    def participants(self) -> dict[str, Any]:
        return self.snapshot

    def send_app_message(self, payload: dict[str, Any], recipient: str = "*") -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((payload, recipient))


class FakeProvisioner:
    def __init__(self) -> None:
        self.calls = 0
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.url = CONVERSATION_URL

    async def provision(self) -> ProvisionedConversation:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ProvisionedConversation(
            persona_id="p5f6d7e8",
            conversation_url=self.url,
            conversation_id=CONVERSATION_ID,
        )


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """Collects observer callbacks."""

    def __init__(self) -> None:
        self.states: list[dict[str, Any]] = []
        self.rosters: list[dict[str, Any]] = []
        self.events: list[Any] = []
        self.notices: list[tuple[str, str]] = []
        self.replies: list[Any] = []

    def on_state(self, status: dict[str, Any]) -> None:
        self.states.append(status)

    def on_roster(self, roster: dict[str, Any]) -> None:
        self.rosters.append(roster)

    def on_event(self, event: Any) -> None:
        self.events.append(event)

    def on_notice(self, level: str, message: str) -> None:
        self.notices.append((level, message))

    def on_reply(self, reply: Any) -> None:
        self.replies.append(reply)

    @property
    def path(self) -> list[str]:
        return [s["state"] for s in self.states]


@pytest.fixture
def call() -> FakeCall:
    return FakeCall()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_manager(call: FakeCall, provisioner: FakeProvisioner, clock: FakeClock, recorder: Recorder):
    """Factory for a SessionManager wired to the fakes."""

    def _make(window: float = 30.0, settle: float = 2.0) -> SessionManager:
        return SessionManager(
            session_id="test-session",
            call_factory=lambda: call,
            provisioner=provisioner,
            gate_factory=lambda name: CooldownGate(name, window=window, settle=settle, clock=clock),
            on_state=recorder.on_state,
            on_roster=recorder.on_roster,
            on_event=recorder.on_event,
            on_notice=recorder.on_notice,
            on_reply=recorder.on_reply,
        )

    return _make


@pytest.fixture
def manager(make_manager) -> SessionManager:
    return make_manager()


@pytest.fixture
def failing_provisioner(provisioner: FakeProvisioner) -> FakeProvisioner:
    provisioner.error = ProvisioningError("HTTP error! status: 500, body: boom", status_code=500)
    return provisioner
