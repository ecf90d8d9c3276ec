"""
SkinDoc — Configuration

Centralised settings from environment variables.
All tuneable constants live here — zero magic numbers in other files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())

load_dotenv()


def _optional_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    if raw.lower() == "none":
        return None
    return float(raw)


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    )


# ---------------------------------------------------------------------------
# Provisioning (persona + conversation API)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProvisioningConfig:
    """The single API credential plus endpoint knobs."""
    api_key: str = os.getenv("TAVUS_API_KEY", "")
    base_url: str = os.getenv("TAVUS_BASE_URL", "https://tavusapi.com/v2")
    replica_id: str = os.getenv("TAVUS_REPLICA_ID", "r6583a465c")
    # None disables the client-side timeout entirely
    timeout: Optional[float] = _optional_float("TAVUS_TIMEOUT", 30.0)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


# ---------------------------------------------------------------------------
# Reaction tunables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReactionConfig:
    # Minimum seconds between two acne-detection replies
    detection_cooldown: float = 30.0
    # Seconds after a transmission before the gate accepts a new detection
    settle_delay: float = 2.0


# ---------------------------------------------------------------------------
# Call / persona
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CallConfig:
    display_name: str = "You"
    persona_name: str = "Personal Skin Doctor"
    system_prompt: str = (
        "You are a friendly Personal Skin Doctor who know cures to all the "
        "disease in the world. In this call, users want to know what are the "
        "cures to the user's disease"
    )
    context: str = (
        "User want to know what is the cure to his/her skin problem. When a "
        "user says \"What is the cure to X\" or \"What is the solution to X\", "
        "you should acknowledge their disease and use the get_skin_cures tool "
        "to return the cures of the disease's cures based on user request"
    )
    ambient_awareness_queries: tuple[str, ...] = (
        "Is the user have an acne in his or her face?",
        "Does the user appear distressed or uncomfortable?",
    )
    perception_analysis_queries: tuple[str, ...] = (
        "Is the user wearing an outfit with dark colors?",
        "Is the user male?",
    )
    perception_tool_prompt: str = (
        "You have a tool to notify the system when an acne is detected on user "
        "face, named `acne_detected`. You MUST use this tool when an acne is "
        "detected on user face."
    )


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
provisioning_cfg = ProvisioningConfig()
reaction_cfg = ReactionConfig()
call_cfg = CallConfig()
