"""
SkinDoc — Data Models

Dataclasses for everything that flows through the session core:
roster entries, classified side-channel events and outbound replies.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

# Transport track keys → our track kinds
TRACK_KINDS: Dict[str, str] = {
    "video": "camera",
    "screenVideo": "screen",
    "audio": "audio",
}


class ParticipantRole(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class TrackState:
    """One media track as reported by the transport."""
    playable: bool = False
    handle: Any = None          # opaque media handle, never inspected

    @classmethod
    def from_snapshot(cls, raw: Optional[Mapping[str, Any]]) -> "TrackState":
        if not raw:
            return cls()
        return cls(
            playable=raw.get("state") == "playable",
            handle=raw.get("persistentTrack"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": "playable" if self.playable else "unplayable",
            "has_handle": self.handle is not None,
        }


@dataclass
class Participant:
    """A connected endpoint. Built only from transport roster snapshots."""
    id: str
    role: ParticipantRole = ParticipantRole.REMOTE
    user_name: str = ""
    tracks: Dict[str, TrackState] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, participant_id: str, raw: Mapping[str, Any]) -> "Participant":
        is_local = participant_id == "local" or bool(raw.get("local"))
        raw_tracks = raw.get("tracks") or {}
        tracks = {
            kind: TrackState.from_snapshot(raw_tracks.get(key))
            for key, kind in TRACK_KINDS.items()
        }
        return cls(
            id=participant_id,
            role=ParticipantRole.LOCAL if is_local else ParticipantRole.REMOTE,
            user_name=raw.get("user_name") or "",
            tracks=tracks,
        )

    @property
    def is_local(self) -> bool:
        return self.role == ParticipantRole.LOCAL

    @property
    def display_name(self) -> str:
        if self.user_name:
            return self.user_name
        if self.is_local:
            return "You"
        return f"Doctor {self.id[-4:]}"

    def _playable(self, kind: str) -> Optional[TrackState]:
        track = self.tracks.get(kind)
        if track and track.playable and track.handle is not None:
            return track
        return None

    def video_track(self) -> Optional[TrackState]:
        """Screen share wins over camera when both are playable."""
        return self._playable("screen") or self._playable("camera")

    def audio_track(self) -> Optional[TrackState]:
        return self._playable("audio")

    @property
    def is_screen_sharing(self) -> bool:
        track = self.tracks.get("screen")
        return bool(track and track.playable)

    def to_dict(self) -> Dict[str, Any]:
        video = self.video_track()
        return {
            "id": self.id,
            "role": self.role.value,
            "display_name": self.display_name,
            "tracks": {k: t.to_dict() for k, t in self.tracks.items()},
            "video_source": (
                None if video is None
                else ("screen" if video is self.tracks.get("screen") else "camera")
            ),
            "audio_bound": self.audio_track() is not None,
        }


def build_roster(snapshots: Mapping[str, Mapping[str, Any]]) -> Dict[str, Participant]:
    """
    Build the roster from a transport `participants()` snapshot.
    Only the first local entry is kept as LOCAL; any extra ones are demoted.
    """
    roster: Dict[str, Participant] = {}
    seen_local = False
    for pid, raw in snapshots.items():
        p = Participant.from_snapshot(pid, raw or {})
        if p.is_local:
            if seen_local:
                p.role = ParticipantRole.REMOTE
            seen_local = True
        roster[pid] = p
    return roster


# ---------------------------------------------------------------------------
# Inbound side-channel events
# ---------------------------------------------------------------------------

class SignalKind(str, Enum):
    STARTED_SPEAKING = "started_speaking"
    STOPPED_SPEAKING = "stopped_speaking"
    UTTERANCE = "utterance"
    INTERRUPTION = "interruption"
    PERCEPTION_ANALYSIS = "perception_analysis"
    OTHER = "other"


@dataclass
class LifecycleSignal:
    """Pass-through conversation signal. Reported to observers only."""
    kind: SignalKind
    event_type: str
    conversation_id: Optional[str] = None
    speaker: Optional[str] = None        # "replica" | "user" | None
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d


@dataclass
class ToolCallEvent:
    name: str
    raw_arguments: Any
    conversation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": "tool_call", **asdict(self)}


@dataclass
class PerceptionToolCallEvent:
    name: str
    conversation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": "perception_tool_call", **asdict(self)}


@dataclass
class Unrecognized:
    reason: str
    raw: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": "unrecognized", "reason": self.reason}


InboundEvent = Union[LifecycleSignal, ToolCallEvent, PerceptionToolCallEvent, Unrecognized]


# ---------------------------------------------------------------------------
# Outbound replies
# ---------------------------------------------------------------------------

@dataclass
class OutboundReply:
    """An echo sent back to the agent, correlated to its conversation."""
    conversation_id: Optional[str]
    text: str
    category: str = "conversation"
    kind: str = "echo"
    created_at: float = field(default_factory=time.time)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "message_type": self.category,
            "event_type": f"{self.category}.{self.kind}",
            "conversation_id": self.conversation_id,
            "properties": {"text": self.text},
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Session telemetry
# ---------------------------------------------------------------------------

@dataclass
class SessionTelemetry:
    """Per-session counters."""
    session_id: str = ""
    join_attempts: int = 0
    messages_received: int = 0
    unrecognized_messages: int = 0
    tool_calls: int = 0
    perception_tool_calls: int = 0
    replies_sent: int = 0
    replies_failed: int = 0
    reactions_discarded: int = 0
    lifecycle_state: str = "idle"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Provisioning result
# ---------------------------------------------------------------------------

@dataclass
class ProvisionedConversation:
    persona_id: str
    conversation_url: str
    conversation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
