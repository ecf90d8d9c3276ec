"""
SkinDoc — Provisioning Client

Creates the "Personal Skin Doctor" persona and a conversation for it
over the Tavus HTTP API.  Two sequential calls per join:

    POST /personas       → {persona_id}
    POST /conversations  → {conversation_url}

Any non-2xx status, non-JSON body or missing field is a ProvisioningError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.config import CallConfig, ProvisioningConfig, call_cfg, provisioning_cfg
from ..core.errors import ProvisioningError
from ..core.models import ProvisionedConversation
from ..processing.tools import ACNE_DETECTED_TOOL, SKIN_CURES_TOOL

logger = logging.getLogger("skindoc.provisioning")


def persona_document(cfg: CallConfig = call_cfg) -> Dict[str, Any]:
    """The fixed persona configuration sent to POST /personas."""
    return {
        "persona_name": cfg.persona_name,
        "pipeline_mode": "full",
        "system_prompt": cfg.system_prompt,
        "context": cfg.context,
        "layers": {
            "tts": {
                "tts_engine": "cartesia",
                "tts_emotion_control": True,
            },
            "llm": {
                "tools": [
                    {
                        "type": "function",
                        "function": {
                            "name": SKIN_CURES_TOOL,
                            "parameters": {
                                "type": "object",
                                "required": ["disease"],
                                "properties": {
                                    "disease": {
                                        "type": "string",
                                        "description": "The disease which the user wanted to know how to cure",
                                    },
                                },
                            },
                            "description": "Record the user's disease",
                        },
                    },
                ],
                "model": "tavus-llama",
                "speculative_inference": True,
            },
            "perception": {
                "perception_model": "raven-0",
                "ambient_awareness_queries": list(cfg.ambient_awareness_queries),
                "perception_analysis_queries": list(cfg.perception_analysis_queries),
                "perception_tool_prompt": cfg.perception_tool_prompt,
                "perception_tools": [
                    {
                        "type": "function",
                        "function": {
                            "name": ACNE_DETECTED_TOOL,
                            "description": "Use this function when acne is detected in the image with high confidence",
                            "parameters": {
                                "type": "object",
                                "properties": {
                                    "have_acne": {
                                        "type": "boolean",
                                        "description": "is acne detected on user's face?",
                                    },
                                },
                                "required": ["have_acne"],
                            },
                        },
                    },
                ],
            },
            "stt": {
                "stt_engine": "tavus-advanced",
                "participant_pause_sensitivity": "high",
                "participant_interrupt_sensitivity": "high",
                "smart_turn_detection": True,
            },
        },
    }


class TavusClient:
    """
    Async client for persona + conversation creation.

    Usage:
        async with TavusClient() as client:
            provisioned = await client.provision()
    """

    def __init__(
        self,
        config: ProvisioningConfig = provisioning_cfg,
        persona: Optional[Dict[str, Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._persona = persona or persona_document()
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
        )

    async def __aenter__(self) -> "TavusClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._config.api_key,
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self._config.has_api_key:
            raise ProvisioningError("TAVUS_API_KEY is not configured")

        try:
            response = await self._client.post(path, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProvisioningError(f"POST {path} failed: {e}") from e

        if not response.is_success:
            raise ProvisioningError(
                f"HTTP error! status: {response.status_code}, body: {response.text[:200]}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise ProvisioningError(
                f"Expected JSON response but got: {content_type or 'none'}. "
                f"Response: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProvisioningError(f"Malformed JSON from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ProvisioningError(f"Expected a JSON object from {path}", details=data)
        return data

    async def create_persona(self) -> str:
        data = await self._post("/personas", self._persona)
        persona_id = data.get("persona_id")
        if not persona_id:
            raise ProvisioningError("Persona response has no persona_id", details=data)
        logger.info(f"Persona created: {persona_id}")
        return persona_id

    async def create_conversation(self, persona_id: str) -> ProvisionedConversation:
        data = await self._post("/conversations", {
            "replica_id": self._config.replica_id,
            "persona_id": persona_id,
        })
        url = data.get("conversation_url")
        if not url:
            raise ProvisioningError("Conversation response has no conversation_url", details=data)
        logger.info(f"Conversation created: {data.get('conversation_id', '?')}")
        return ProvisionedConversation(
            persona_id=persona_id,
            conversation_url=url,
            conversation_id=data.get("conversation_id"),
        )

    async def provision(self) -> ProvisionedConversation:
        persona_id = await self.create_persona()
        return await self.create_conversation(persona_id)
