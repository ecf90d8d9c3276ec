"""
SkinDoc — Message Classifier

Pure mapping from a raw side-channel envelope to a typed InboundEvent.
No mutation, no I/O — the session decides what to do with the result.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

from ..core.models import (
    InboundEvent,
    LifecycleSignal,
    PerceptionToolCallEvent,
    SignalKind,
    ToolCallEvent,
    Unrecognized,
)

CONVERSATION = "conversation"
TOOL_CALL = "conversation.tool_call"
PERCEPTION_TOOL_CALL = "conversation.perception_tool_call"

# event_type → (signal kind, speaker)
_SIGNALS: Dict[str, Tuple[SignalKind, Optional[str]]] = {
    "conversation.replica.started_speaking": (SignalKind.STARTED_SPEAKING, "replica"),
    "conversation.replica.stopped_speaking": (SignalKind.STOPPED_SPEAKING, "replica"),
    "conversation.user.started_speaking": (SignalKind.STARTED_SPEAKING, "user"),
    "conversation.user.stopped_speaking": (SignalKind.STOPPED_SPEAKING, "user"),
    "conversation.utterance": (SignalKind.UTTERANCE, None),
    "conversation.replica_interrupted": (SignalKind.INTERRUPTION, "replica"),
    "conversation.perception_analysis": (SignalKind.PERCEPTION_ANALYSIS, None),
}


def classify(envelope: Any) -> InboundEvent:
    """Classify one envelope. Malformed input yields Unrecognized."""
    if not isinstance(envelope, Mapping):
        return Unrecognized(reason="envelope is not an object", raw=envelope)

    message_type = envelope.get("message_type")
    event_type = envelope.get("event_type")
    if not message_type or not event_type:
        return Unrecognized(reason="missing message_type or event_type", raw=envelope)

    conversation_id = envelope.get("conversation_id")
    properties = envelope.get("properties")

    if message_type == CONVERSATION and event_type == TOOL_CALL:
        if not isinstance(properties, Mapping) or not properties.get("name"):
            return Unrecognized(reason="tool call without properties.name", raw=envelope)
        return ToolCallEvent(
            name=properties["name"],
            raw_arguments=properties.get("arguments"),
            conversation_id=conversation_id,
        )

    if message_type == CONVERSATION and event_type == PERCEPTION_TOOL_CALL:
        if not isinstance(properties, Mapping) or not properties.get("name"):
            return Unrecognized(
                reason="perception tool call without properties.name", raw=envelope,
            )
        return PerceptionToolCallEvent(
            name=properties["name"],
            conversation_id=conversation_id,
        )

    kind, speaker = SignalKind.OTHER, None
    if message_type == CONVERSATION and event_type in _SIGNALS:
        kind, speaker = _SIGNALS[event_type]

    return LifecycleSignal(
        kind=kind,
        event_type=str(event_type),
        conversation_id=conversation_id,
        speaker=speaker,
        properties=dict(properties) if isinstance(properties, Mapping) else {},
    )
