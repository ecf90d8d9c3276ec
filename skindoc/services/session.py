"""
SkinDoc — Session Manager

================================================================================
ONE CALL WITH THE SKIN-DOCTOR AGENT, FROM JOIN TO LEAVE
================================================================================

`SessionManager` owns the lifecycle state machine and the call object.
Each successful provisioning builds a fresh `CallSession`, which owns
everything scoped to that one call:

  • conversation URL, roster and screen-share flag
  • transport event subscriptions (detached on leave / error)
  • the outbound responder and the per-tool cooldown gates

Side-channel messages are handled synchronously in arrival order:

    app-message → classify() → ToolDispatcher.dispatch()        → responder
                             → CooldownGate.fire(perceive → responder)

Observers (UI) get lifecycle, roster, event and notice callbacks and never
feed back into the core except through join() / leave() /
toggle_screen_share().
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from ..core.config import call_cfg
from ..core.errors import ReactionTransmissionError, SessionCommandError
from ..core.interfaces import CallObject, Provisioner
from ..core.latency import LatencyTracer
from ..core.models import (
    InboundEvent,
    OutboundReply,
    Participant,
    PerceptionToolCallEvent,
    ProvisionedConversation,
    SessionTelemetry,
    ToolCallEvent,
    Unrecognized,
    build_roster,
)
from ..core.state_machine import (
    ACTIVE_STATES,
    JOINABLE_STATES,
    LifecycleState,
    SessionStateMachine,
)
from ..processing.classifier import classify
from ..processing.gate import CooldownGate
from ..processing.responder import OutboundResponder
from ..processing.tools import ToolDispatcher

logger = logging.getLogger("skindoc.session")

Handler = Callable[[Dict[str, Any]], Any]


# ═══════════════════════════════════════════════════════════════════════════
# CallSession — state scoped to one joined call
# ═══════════════════════════════════════════════════════════════════════════

class CallSession:
    """Everything that lives exactly as long as one call."""

    def __init__(
        self,
        call: CallObject,
        conversation: ProvisionedConversation,
        gate_factory: Callable[[str], CooldownGate],
        on_sent: Optional[Callable[[OutboundReply], Any]] = None,
    ) -> None:
        self.call = call
        self.conversation_url = conversation.conversation_url
        self.conversation_id = conversation.conversation_id
        self.persona_id = conversation.persona_id
        self.roster: Dict[str, Participant] = {}
        self.is_screen_sharing = False
        self.responder = OutboundResponder(call, on_sent=on_sent)
        self._gate_factory = gate_factory
        self._gates: Dict[str, CooldownGate] = {}
        self._subscriptions: List[Tuple[str, Handler]] = []

    def gate(self, name: str) -> CooldownGate:
        gate = self._gates.get(name)
        if gate is None:
            gate = self._gates[name] = self._gate_factory(name)
        return gate

    @property
    def gates(self) -> Dict[str, CooldownGate]:
        return dict(self._gates)

    @property
    def attached(self) -> bool:
        return bool(self._subscriptions)

    def attach(self, handlers: Mapping[str, Handler]) -> None:
        """Subscribe once; a second call is a no-op."""
        if self._subscriptions:
            return
        for event, handler in handlers.items():
            self.call.on(event, handler)
            self._subscriptions.append((event, handler))

    def detach(self) -> None:
        for event, handler in self._subscriptions:
            try:
                self.call.off(event, handler)
            except Exception as e:
                logger.debug(f"Unsubscribe {event} failed: {e}")
        self._subscriptions.clear()

    def refresh_roster(self) -> Dict[str, Participant]:
        self.roster = build_roster(self.call.participants() or {})
        return self.roster

    @property
    def local(self) -> Optional[Participant]:
        for p in self.roster.values():
            if p.is_local:
                return p
        return None


# ═══════════════════════════════════════════════════════════════════════════
# SessionManager — lifecycle owner
# ═══════════════════════════════════════════════════════════════════════════

class SessionManager:
    """
    Drives one user's call with the agent.

    Lifecycle:
        manager = SessionManager("abc", call_factory=make_call, provisioner=client,
                                 on_state=..., on_roster=..., on_notice=...)
        await manager.join()
        await manager.toggle_screen_share()
        await manager.leave()
    """

    def __init__(
        self,
        session_id: str,
        call_factory: Callable[[], CallObject],
        provisioner: Provisioner,
        dispatcher: Optional[ToolDispatcher] = None,
        gate_factory: Optional[Callable[[str], CooldownGate]] = None,
        display_name: str = call_cfg.display_name,
        on_state: Optional[Callable[[Dict[str, Any]], Any]] = None,
        on_roster: Optional[Callable[[Dict[str, Participant]], Any]] = None,
        on_event: Optional[Callable[[InboundEvent], Any]] = None,
        on_notice: Optional[Callable[[str, str], Any]] = None,
        on_reply: Optional[Callable[[OutboundReply], Any]] = None,
    ) -> None:
        self.session_id = session_id
        self.telemetry = SessionTelemetry(session_id=session_id)

        self._call_factory = call_factory
        self._provisioner = provisioner
        self._dispatcher = dispatcher or ToolDispatcher()
        self._gate_factory = gate_factory or CooldownGate
        self._display_name = display_name

        # Observer callbacks
        self._on_state = on_state
        self._on_roster = on_roster
        self._on_event = on_event
        self._on_notice = on_notice
        self._on_reply = on_reply

        self._state_machine = SessionStateMachine(on_transition=self._on_transition)
        self._call: Optional[CallObject] = None
        self._session: Optional[CallSession] = None
        self._latency = LatencyTracer(session_id)
        self._attempt = 0
        self._provisioning = False
        self._observer_tasks: Set[asyncio.Task] = set()

    # ── Read-only views ─────────────────────────────────────────────────

    @property
    def state(self) -> LifecycleState:
        return self._state_machine.state

    @property
    def history(self) -> List[Dict]:
        return self._state_machine.history

    @property
    def is_provisioning(self) -> bool:
        return self._provisioning

    @property
    def session(self) -> Optional[CallSession]:
        return self._session

    @property
    def call(self) -> Optional[CallObject]:
        return self._call

    @property
    def conversation_url(self) -> Optional[str]:
        if self._session is None or self.state not in ACTIVE_STATES:
            return None
        return self._session.conversation_url

    @property
    def is_screen_sharing(self) -> bool:
        return bool(self._session and self._session.is_screen_sharing)

    @property
    def roster(self) -> Dict[str, Participant]:
        return dict(self._session.roster) if self._session else {}

    def snapshot(self) -> Dict[str, Any]:
        session = self._session
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "provisioning": self._provisioning,
            "conversation_url": self.conversation_url,
            "conversation_id": session.conversation_id if session else None,
            "is_screen_sharing": self.is_screen_sharing,
            "subscribed": bool(session and session.attached),
            "participants": [p.to_dict() for p in self.roster.values()],
            "gates": {n: g.to_dict() for n, g in session.gates.items()} if session else {},
            "latency": self._latency.summary(),
            "history": self.history,
            "telemetry": self.telemetry.to_dict(),
        }

    # ── User commands ───────────────────────────────────────────────────

    async def join(self) -> LifecycleState:
        """
        Provision a conversation and join it.
        Failures land in ERRORED and are reported through on_notice.
        """
        if self._provisioning or self.state not in JOINABLE_STATES:
            raise SessionCommandError(
                f"Cannot join while {'provisioning' if self._provisioning else self.state.value}"
            )

        self._attempt += 1
        attempt = self._attempt
        self.telemetry.join_attempts += 1
        self._latency = LatencyTracer(self.session_id)
        self._latency.mark("join_started")
        self._provisioning = True
        self._notify("info", "Creating conversation...")

        try:
            conversation = await self._provisioner.provision()
        except Exception as e:
            if attempt != self._attempt:
                return self.state
            self._provisioning = False
            message = getattr(e, "message", None) or str(e)
            logger.error(f"[{self.session_id}] Provisioning failed: {message}")
            self._state_machine.transition(LifecycleState.ERRORED, reason="provisioning_failed")
            self._notify("error", f"Failed to create conversation: {message[:200]}")
            return self.state

        if attempt != self._attempt:
            logger.info(f"[{self.session_id}] Join attempt {attempt} superseded after provisioning")
            return self.state

        self._provisioning = False
        self._latency.mark("provisioned")

        if self._call is None:
            self._call = self._call_factory()
        call = self._call

        if self._session is not None:
            self._session.detach()
        session = CallSession(
            call, conversation, self._gate_factory, on_sent=self._reply_sent,
        )
        self._session = session
        session.attach(self._handlers_for(session))
        self._state_machine.transition(LifecycleState.CONNECTING, reason="conversation_provisioned")

        logger.info(f"[{self.session_id}] Joining conversation {session.conversation_url}")
        try:
            await call.join(session.conversation_url, self._display_name)
        except Exception as e:
            if session is not self._session:
                return self.state
            logger.error(f"[{self.session_id}] Failed to join conversation: {e}")
            self._teardown()
            self._state_machine.transition(LifecycleState.ERRORED, reason="join_failed")
            self._notify("error", "Failed to connect")
            return self.state

        if session is self._session:
            self._mark_joined(session, reason="join_acknowledged")
        return self.state

    async def leave(self) -> LifecycleState:
        """Leave the call. A no-op when idle or already left."""
        self._attempt += 1  # supersedes any join still in flight
        self._provisioning = False

        if self.state in (LifecycleState.IDLE, LifecycleState.LEFT):
            return self.state

        self._teardown()
        self._state_machine.transition(LifecycleState.LEFT, reason="leave_requested")

        if self._call is not None:
            try:
                await self._call.leave()
            except Exception as e:
                logger.error(f"[{self.session_id}] Transport leave failed: {e}")
                if self.state == LifecycleState.LEFT:
                    self._state_machine.transition(LifecycleState.ERRORED, reason="leave_failed")
                self._notify("error", f"Failed to leave call: {e}")
        return self.state

    async def toggle_screen_share(self) -> bool:
        """Start or stop sharing. Returns the resulting flag."""
        session = self._session
        if self.state != LifecycleState.JOINED or session is None:
            raise SessionCommandError(f"Screen share needs a joined call (state: {self.state.value})")

        start = not session.is_screen_sharing
        try:
            if start:
                await session.call.start_screen_share()
            else:
                await session.call.stop_screen_share()
        except Exception as e:
            verb = "start" if start else "stop"
            logger.error(f"[{self.session_id}] Error {verb}ing screen share: {e}")
            self._notify("error", f"Failed to {verb} screen sharing: {e}")
            return session.is_screen_sharing

        if session is self._session:
            session.is_screen_sharing = start
            self._notify("success", f"Screen sharing {'started' if start else 'stopped'}")
            self._refresh_roster(session)
        return start

    async def stop(self) -> Dict[str, Any]:
        """Leave and release collaborators. Returns a telemetry summary."""
        await self.leave()
        close = getattr(self._provisioner, "close", None)
        if close is not None:
            try:
                result = close()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.debug(f"[{self.session_id}] Provisioner close failed: {e}")
        return {**self.telemetry.to_dict(), "latency": self._latency.summary()}

    # ── Side channel ────────────────────────────────────────────────────

    def handle_app_message(self, envelope: Any) -> Optional[OutboundReply]:
        """
        Classify and react to one side-channel envelope on the current
        session. Returns the reply that was sent, if any.
        """
        session = self._session
        if session is None or self.state not in ACTIVE_STATES:
            logger.debug(f"[{self.session_id}] App message ignored (state: {self.state.value})")
            return None
        return self._process_envelope(session, envelope)

    def _process_envelope(self, session: CallSession, envelope: Any) -> Optional[OutboundReply]:
        self.telemetry.messages_received += 1
        self._latency.mark("first_app_message")

        event = classify(envelope)
        if isinstance(event, Unrecognized):
            self.telemetry.unrecognized_messages += 1
            logger.warning(f"[{self.session_id}] Invalid message structure: {event.reason}")
            return None

        self._emit(self._on_event, event)

        if isinstance(event, ToolCallEvent):
            self.telemetry.tool_calls += 1
            reply = self._dispatcher.dispatch(event)
            if reply is None:
                return None
            return reply if self._transmit(session, reply) else None

        if isinstance(event, PerceptionToolCallEvent):
            self.telemetry.perception_tool_calls += 1
            return self._react_to_perception(session, event)

        return None

    def _react_to_perception(
        self, session: CallSession, event: PerceptionToolCallEvent,
    ) -> Optional[OutboundReply]:
        if not self._dispatcher.handles_perception(event.name):
            logger.debug(f"[{self.session_id}] Perception tool {event.name!r} not handled")
            return None

        sent: List[OutboundReply] = []

        def react() -> None:
            reply = self._dispatcher.perceive(event)
            if reply is not None:
                session.responder.send(reply)
                sent.append(reply)

        try:
            fired = session.gate(event.name).fire(react)
        except ReactionTransmissionError as e:
            self.telemetry.replies_failed += 1
            logger.debug(f"[{self.session_id}] {event.name} reaction dropped: {e.message}")
            return None

        if not fired:
            self.telemetry.reactions_discarded += 1
            return None
        return sent[0] if sent else None

    def _transmit(self, session: CallSession, reply: OutboundReply) -> bool:
        try:
            session.responder.send(reply)
        except ReactionTransmissionError as e:
            self.telemetry.replies_failed += 1
            logger.debug(f"[{self.session_id}] Reply dropped: {e.message}")
            return False
        return True

    def _reply_sent(self, reply: OutboundReply) -> None:
        self.telemetry.replies_sent += 1
        self._latency.mark("first_reply")
        self._emit(self._on_reply, reply)

    # ── Transport signals ───────────────────────────────────────────────

    def _handlers_for(self, session: CallSession) -> Dict[str, Handler]:
        """Handlers bound to one session; signals for a stale session are dropped."""

        def current(fn: Callable[[CallSession, Dict[str, Any]], None]) -> Handler:
            def handler(payload: Optional[Dict[str, Any]] = None) -> None:
                if session is not self._session:
                    logger.debug(f"[{self.session_id}] Signal for a closed session ignored")
                    return
                fn(session, payload or {})
            return handler

        return {
            "participant-joined": current(self._on_participants_changed),
            "participant-updated": current(self._on_participants_changed),
            "participant-left": current(self._on_participants_changed),
            "app-message": current(self._on_app_message),
            "started-screen-share": current(self._on_screen_share_started),
            "stopped-screen-share": current(self._on_screen_share_stopped),
            "joined-meeting": current(self._on_joined_meeting),
            "left-meeting": current(self._on_left_meeting),
            "error": current(self._on_transport_error),
        }

    def _on_participants_changed(self, session: CallSession, payload: Dict[str, Any]) -> None:
        self._refresh_roster(session)

    def _on_app_message(self, session: CallSession, payload: Dict[str, Any]) -> None:
        if self.state not in ACTIVE_STATES:
            return
        self._process_envelope(session, payload.get("data"))

    def _on_screen_share_started(self, session: CallSession, payload: Dict[str, Any]) -> None:
        logger.info(f"[{self.session_id}] Screen share started")
        session.is_screen_sharing = True
        self._refresh_roster(session)

    def _on_screen_share_stopped(self, session: CallSession, payload: Dict[str, Any]) -> None:
        logger.info(f"[{self.session_id}] Screen share stopped")
        session.is_screen_sharing = False
        self._refresh_roster(session)

    def _on_joined_meeting(self, session: CallSession, payload: Dict[str, Any]) -> None:
        self._mark_joined(session, reason="joined_meeting")

    def _on_left_meeting(self, session: CallSession, payload: Dict[str, Any]) -> None:
        if self.state not in ACTIVE_STATES:
            return
        self._attempt += 1
        self._teardown()
        self._state_machine.transition(LifecycleState.LEFT, reason="left_meeting")
        self._notify("info", "Left the conversation")

    def _on_transport_error(self, session: CallSession, payload: Dict[str, Any]) -> None:
        if self.state not in ACTIVE_STATES:
            return
        message = payload.get("errorMsg") or payload.get("error") or "transport error"
        logger.error(f"[{self.session_id}] Transport error: {message}")
        self._attempt += 1
        self._teardown()
        self._state_machine.transition(LifecycleState.ERRORED, reason="transport_error")
        self._notify("error", f"Call error: {message}")

    def _mark_joined(self, session: CallSession, reason: str) -> None:
        if self.state != LifecycleState.CONNECTING:
            return
        self._state_machine.transition(LifecycleState.JOINED, reason=reason)
        self._latency.mark("joined")
        self._refresh_roster(session)
        local = session.local
        session.is_screen_sharing = bool(local and local.is_screen_sharing)
        self._notify("success", "Connected successfully!")

    # ── Internals ───────────────────────────────────────────────────────

    def _refresh_roster(self, session: CallSession) -> None:
        try:
            roster = session.refresh_roster()
        except Exception as e:
            logger.error(f"[{self.session_id}] Roster read failed: {e}")
            return
        self._emit(self._on_roster, dict(roster))

    def _teardown(self) -> None:
        """Detach subscriptions and drop the per-call session."""
        session = self._session
        if session is None:
            return
        session.detach()
        session.roster = {}
        session.is_screen_sharing = False
        self._session = None
        self._emit(self._on_roster, {})

    def _on_transition(self, prev: LifecycleState, new: LifecycleState, reason: str) -> None:
        self.telemetry.lifecycle_state = new.value
        self._emit(self._on_state, {
            "type": "lifecycle",
            "state": new.value,
            "previous_state": prev.value,
            "reason": reason,
            "conversation_url": self.conversation_url,
            "is_screen_sharing": self.is_screen_sharing,
        })

    def _notify(self, level: str, message: str) -> None:
        self._emit(self._on_notice, level, message)

    def _emit(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        """Call an observer; coroutines are scheduled, failures only logged."""
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"[{self.session_id}] Observer callback error: {e}")
            return
        if not asyncio.iscoroutine(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            result.close()
            return
        task = loop.create_task(result)
        self._observer_tasks.add(task)
        task.add_done_callback(self._observer_done)

    def _observer_done(self, task: asyncio.Task) -> None:
        self._observer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{self.session_id}] Observer task error: {task.exception()}")
