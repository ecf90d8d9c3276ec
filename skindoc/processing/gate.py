"""
SkinDoc — Cooldown Gate

At-most-one-firing-per-window plus reentrancy exclusion for a named
reaction.  The check-and-set is fully synchronous, so on a single event
loop no other callback can run between the check and the set.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..core.config import reaction_cfg

logger = logging.getLogger("skindoc.gate")


class CooldownGate:
    """
    Guards one reaction.

    Usage:
        gate = CooldownGate("acne_detected")
        fired = gate.fire(lambda: responder.send(reply))
    """

    def __init__(
        self,
        name: str,
        window: float = reaction_cfg.detection_cooldown,
        settle: float = reaction_cfg.settle_delay,
        clock: Callable[[], float] = time.monotonic,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.name = name
        self.window = window
        self.settle = settle
        self._clock = clock
        self._loop = loop

        self.last_fired_at: Optional[float] = None
        self.in_flight = False
        self._release_handle: Optional[asyncio.TimerHandle] = None

        self.fired = 0
        self.discarded = 0

    def ready(self) -> bool:
        if self.in_flight:
            return False
        if self.last_fired_at is None:
            return True
        return self._clock() - self.last_fired_at >= self.window

    def fire(self, action: Callable[[], Any]) -> bool:
        """
        Run `action` if the gate is open. Returns True when it ran.
        `in_flight` is released after the settle delay on success and
        immediately if `action` raises (the exception propagates).
        """
        if self.in_flight:
            self.discarded += 1
            logger.debug(f"[{self.name}] discarded: reaction in flight")
            return False

        now = self._clock()
        if self.last_fired_at is not None and now - self.last_fired_at < self.window:
            self.discarded += 1
            logger.debug(
                f"[{self.name}] discarded: cooldown "
                f"({now - self.last_fired_at:.1f}s < {self.window:.0f}s)"
            )
            return False

        self.in_flight = True
        self.last_fired_at = now
        try:
            action()
        except BaseException:
            self.release()
            raise

        self.fired += 1
        self._schedule_release()
        return True

    def release(self) -> None:
        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
        self.in_flight = False

    def _schedule_release(self) -> None:
        if self.settle <= 0:
            self.release()
            return
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug(f"[{self.name}] no event loop for settle timer, releasing now")
                self.release()
                return
        self._release_handle = loop.call_later(self.settle, self._on_settled)

    def _on_settled(self) -> None:
        self._release_handle = None
        self.in_flight = False
        logger.debug(f"[{self.name}] settled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "in_flight": self.in_flight,
            "last_fired_at": self.last_fired_at,
            "fired": self.fired,
            "discarded": self.discarded,
        }
