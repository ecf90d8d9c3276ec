"""
SkinDoc — Tool Dispatcher

Resolves tool calls emitted by the remote agent into echo replies.
Lookups are deterministic: no model call, no network.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.errors import MalformedEventError
from ..core.models import OutboundReply, PerceptionToolCallEvent, ToolCallEvent

logger = logging.getLogger("skindoc.tools")


SKIN_CURES_TOOL = "get_skin_cures"
ACNE_DETECTED_TOOL = "acne_detected"

REMEDIES: Dict[str, str] = {
    "pimples": "Use a mild cleanser, avoid touching your face, and apply a benzoyl peroxide cream",
    "sunburn": "Apply aloe vera or a cooling moisturizer, and stay out of the sun",
    "wrinkles": "Use sunscreen daily, moisturize, and avoid smoking or tanning",
    "oilyskin": "Use oil-free products, gentle cleansers, and don't overwash your face",
    "darkspot": "Try topical treatments like vitamin C, retinoids, or consult for chemical peels",
    "dryskin": "Moisturize regularly, use gentle cleansers, and avoid hot showers",
}

FALLBACK_REMEDY = "see a dermatologist, since I don't have a specific remedy for that"

PERCEPTION_REPLIES: Dict[str, str] = {
    ACNE_DETECTED_TOOL: (
        "I notice that you have acne on your face. I suggest using topical "
        "antibiotics like clindamycin and erythromycin."
    ),
}


def normalize_condition(disease: str) -> str:
    return disease.strip().casefold()


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Tool arguments arrive as a JSON string; accept a decoded mapping too."""
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, (str, bytes, bytearray)):
        raise MalformedEventError(f"Tool arguments must be JSON, got {type(raw).__name__}")
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise MalformedEventError(f"Tool arguments are not valid JSON: {e}", details=raw) from e
    if not isinstance(parsed, dict):
        raise MalformedEventError("Tool arguments must be a JSON object", details=parsed)
    return parsed


def skin_cure_text(disease: str) -> str:
    remedy = REMEDIES.get(normalize_condition(disease))
    if remedy is None:
        logger.info(f"No remedy on file for {disease!r}, using fallback")
        remedy = FALLBACK_REMEDY
    return f"If you're getting {disease} I suggest to {remedy}."


def _get_skin_cures(arguments: Dict[str, Any]) -> str:
    disease = arguments.get("disease")
    if not isinstance(disease, str) or not disease.strip():
        raise MalformedEventError("get_skin_cures requires a non-empty 'disease'", details=arguments)
    return skin_cure_text(disease)


class ToolDispatcher:
    """
    Maps tool names to text generators.

    Handlers take the parsed argument record and return the reply text;
    they raise MalformedEventError on bad input.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, Callable[[Dict[str, Any]], str]] = {
            SKIN_CURES_TOOL: _get_skin_cures,
        }
        self._perception: Dict[str, str] = dict(PERCEPTION_REPLIES)

    def register(self, name: str, handler: Callable[[Dict[str, Any]], str]) -> None:
        self._tools[name] = handler

    def handles(self, name: str) -> bool:
        return name in self._tools

    def handles_perception(self, name: str) -> bool:
        return name in self._perception

    def dispatch(self, event: ToolCallEvent) -> Optional[OutboundReply]:
        """Resolve a tool call. Returns None when nothing should be sent."""
        handler = self._tools.get(event.name)
        if handler is None:
            logger.debug(f"No handler for tool {event.name!r}")
            return None

        try:
            text = handler(parse_arguments(event.raw_arguments))
        except MalformedEventError as e:
            logger.warning(f"Malformed {event.name} call: {e.message}")
            return None

        return OutboundReply(conversation_id=event.conversation_id, text=text)

    def perceive(self, event: PerceptionToolCallEvent) -> Optional[OutboundReply]:
        """Fixed reply for a known perception tool, else None."""
        text = self._perception.get(event.name)
        if text is None:
            logger.debug(f"No reply for perception tool {event.name!r}")
            return None
        return OutboundReply(conversation_id=event.conversation_id, text=text)
