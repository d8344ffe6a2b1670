"""
HTTP client for the ElevenLabs API.

Each call authenticates with the caller's own API key via the `xi-api-key`
header. Non-success statuses become ProviderError (or ConversationNotFound
for a missing conversation); nothing is retried here.
"""
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
import structlog

from dashboard.config import get_config
from shared.errors import ConversationNotFound, ProviderError

logger = structlog.get_logger()

API_KEY_HEADER = "xi-api-key"

# Status reported when the provider could not be reached at all
UNREACHABLE_STATUS = 503


class ElevenLabsClient:
    """Thin async client over the ElevenLabs endpoints the dashboard reads."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()
        self.base_url = (base_url or config.elevenlabs_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.elevenlabs_timeout
        self.transport = transport

    def _create_client(self, api_key: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={API_KEY_HEADER: api_key, "Accept": "application/json"},
            transport=self.transport,
        )

    async def _get(self, api_key: str, path: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            async with self._create_client(api_key) as client:
                response = await client.get(path, params=params)
        except httpx.RequestError as e:
            logger.error("provider_request_failed", path=path, error=str(e))
            raise ProviderError(UNREACHABLE_STATUS, "ElevenLabs is unreachable", detail=type(e).__name__)

        logger.debug("provider_response", path=path, status=response.status_code)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        logger.warning("provider_request_rejected", path=path, status=response.status_code)
        raise ProviderError(
            response.status_code,
            f"ElevenLabs request failed with status {response.status_code}",
            detail=response.reason_phrase or None,
        )

    async def get_user_info(self, api_key: str) -> Dict[str, Any]:
        """GET /v1/user - subscription character count and limit."""
        path = "/v1/user"
        response = await self._get(api_key, path)
        self._raise_for_status(response, path)
        return response.json()

    async def list_conversations(self, api_key: str, agent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """GET /v1/convai/conversations, optionally filtered by agent."""
        path = "/v1/convai/conversations"
        params = {"agent_id": agent_id} if agent_id else None
        response = await self._get(api_key, path, params=params)
        self._raise_for_status(response, path)
        data = response.json()
        conversations = data.get("conversations") if isinstance(data, dict) else None
        return conversations if isinstance(conversations, list) else []

    async def get_conversation(self, api_key: str, conversation_id: str) -> Dict[str, Any]:
        """GET /v1/convai/conversations/{id} - metadata and transcript."""
        path = self.conversation_path(conversation_id)
        response = await self._get(api_key, path)
        if response.status_code == 404:
            raise ConversationNotFound(conversation_id)
        self._raise_for_status(response, path)
        return response.json()

    async def get_audio(self, api_key: str, conversation_id: str) -> Tuple[bytes, str]:
        """GET /v1/convai/conversations/{id}/audio - raw audio and its media type."""
        path = self.audio_path(conversation_id)
        response = await self._get(api_key, path)
        if response.status_code == 404:
            raise ConversationNotFound(conversation_id)
        self._raise_for_status(response, path)
        return response.content, response.headers.get("content-type", "audio/mpeg")

    @staticmethod
    def conversation_path(conversation_id: str) -> str:
        # Ids are a single path segment; "/" or "?" must not reshape the request
        return f"/v1/convai/conversations/{quote(conversation_id, safe='')}"

    @classmethod
    def audio_path(cls, conversation_id: str) -> str:
        return f"{cls.conversation_path(conversation_id)}/audio"

    def audio_url(self, conversation_id: str) -> str:
        return f"{self.base_url}{self.audio_path(conversation_id)}"


def get_elevenlabs_client() -> ElevenLabsClient:
    """FastAPI dependency returning the provider client."""
    return ElevenLabsClient()
