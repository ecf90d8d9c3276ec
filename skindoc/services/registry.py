"""
SkinDoc — Session Registry

Maps session_id → SessionManager, one per connected UI client.
Chooses the provisioner (Tavus when an API key is configured, the demo
provisioner otherwise) and the call-object factory for each manager.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from ..core.config import provisioning_cfg
from ..core.interfaces import CallObject, Provisioner
from .demo_call import DemoCall, DemoProvisioner
from .provisioning import TavusClient
from .session import SessionManager

logger = logging.getLogger("skindoc.registry")


def default_provisioner() -> Provisioner:
    if provisioning_cfg.has_api_key:
        return TavusClient()
    logger.warning("TAVUS_API_KEY not set, using demo provisioner")
    return DemoProvisioner()


class SessionRegistry:
    """Maps session_id → SessionManager."""

    def __init__(
        self,
        call_factory: Callable[[], CallObject] = DemoCall,
        provisioner_factory: Callable[[], Provisioner] = default_provisioner,
    ) -> None:
        self._call_factory = call_factory
        self._provisioner_factory = provisioner_factory
        self._managers: Dict[str, SessionManager] = {}

    def create(
        self,
        session_id: str,
        on_state: Optional[Callable] = None,
        on_roster: Optional[Callable] = None,
        on_event: Optional[Callable] = None,
        on_notice: Optional[Callable] = None,
        on_reply: Optional[Callable] = None,
    ) -> SessionManager:
        if session_id in self._managers:
            raise ValueError(f"Session {session_id} already registered")

        manager = SessionManager(
            session_id=session_id,
            call_factory=self._call_factory,
            provisioner=self._provisioner_factory(),
            on_state=on_state,
            on_roster=on_roster,
            on_event=on_event,
            on_notice=on_notice,
            on_reply=on_reply,
        )
        self._managers[session_id] = manager
        logger.info(f"SessionRegistry: created {session_id} (total: {len(self._managers)})")
        return manager

    async def stop_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        manager = self._managers.pop(session_id, None)
        if manager:
            summary = await manager.stop()
            logger.info(f"SessionRegistry: removed {session_id} (total: {len(self._managers)})")
            return summary
        return None

    async def stop_all(self) -> None:
        for sid in list(self._managers.keys()):
            await self.stop_session(sid)

    def get(self, session_id: str) -> Optional[SessionManager]:
        return self._managers.get(session_id)

    @property
    def active_count(self) -> int:
        return len(self._managers)

    @property
    def all_sessions(self) -> Dict[str, SessionManager]:
        return dict(self._managers)
