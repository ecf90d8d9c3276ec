"""
SkinDoc — Join Latency Tracer

Records wall-clock timestamps for the milestones of one join attempt:
  join_started → provisioned → joined → first_app_message → first_reply

Computes and logs latency deltas.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("skindoc.latency")

_MILESTONES = ("join_started", "provisioned", "joined", "first_app_message", "first_reply")


@dataclass
class LatencyTrace:
    """Record of join milestones (wall-clock seconds, 0 = not reached)."""

    session_id: str = ""

    join_started: float = 0.0
    provisioned: float = 0.0
    joined: float = 0.0
    first_app_message: float = 0.0
    first_reply: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"session_id": self.session_id}
        for name in _MILESTONES:
            ts = getattr(self, name)
            if ts > 0:
                d[name] = ts
        d["deltas"] = self.deltas()
        return d

    def deltas(self) -> Dict[str, Optional[float]]:
        """Latency deltas between milestones (milliseconds)."""
        def _delta(a: float, b: float) -> Optional[float]:
            if a > 0 and b > 0:
                return round((b - a) * 1000, 1)
            return None

        return {
            "provisioning_ms": _delta(self.join_started, self.provisioned),
            "transport_join_ms": _delta(self.provisioned, self.joined),
            "join_total_ms": _delta(self.join_started, self.joined),
            "joined_to_first_message_ms": _delta(self.joined, self.first_app_message),
            "joined_to_first_reply_ms": _delta(self.joined, self.first_reply),
        }


class LatencyTracer:
    """
    Mutable tracer for one join attempt. Each milestone is recorded once.

    Usage:
        tracer = LatencyTracer("session-abc")
        tracer.mark("join_started")
        tracer.mark("provisioned")
    """

    def __init__(self, session_id: str) -> None:
        self._trace = LatencyTrace(session_id=session_id)

    def mark(self, milestone: str) -> None:
        if milestone not in _MILESTONES:
            raise ValueError(f"Unknown latency milestone: {milestone}")
        if getattr(self._trace, milestone) > 0:
            return  # Already marked
        setattr(self._trace, milestone, time.time())
        logger.info(f"[{self._trace.session_id}] LATENCY {milestone}")

    def summary(self) -> Dict[str, Any]:
        return self._trace.to_dict()
