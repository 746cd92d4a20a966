"""HTTP client for the chat API."""

from typing import Any

import httpx

from chatstream.schemas import TurnRequest
from chatstream.wire import MEDIA_TYPE


class ChatAPIClient:
    """Thin async wrapper over the REST and streaming endpoints."""

    def __init__(self, base_url: str = "http://localhost:8000", client: httpx.AsyncClient | None = None):
        # no read timeout: a provider may go quiet for a while between chunks
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(10.0, read=None)
        )

    async def __aenter__(self) -> "ChatAPIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def stream_turn(self, request: TurnRequest):
        """Open the event stream for one turn. Use as `async with api.stream_turn(req) as response`."""
        return self._client.stream(
            "POST",
            "/api/stream-turn",
            json=request.model_dump(mode="json"),
            headers={"Accept": MEDIA_TYPE},
        )

    async def list_conversations(self) -> list[dict[str, Any]]:
        resp = await self._client.get("/api/conversations/")
        resp.raise_for_status()
        return resp.json()

    async def list_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        resp = await self._client.get(f"/api/conversations/{conversation_id}/messages")
        resp.raise_for_status()
        return resp.json()

    async def list_models(self) -> dict[str, list[dict[str, Any]]]:
        resp = await self._client.get("/api/models")
        resp.raise_for_status()
        return resp.json()
