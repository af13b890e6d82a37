"""Turn-start requests and the byte streams that answer them."""

import base64
import mimetypes
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from .config import ClientConfig
from .errors import TurnSetupError
from .models import AgentConfig, AiModelConfig, ChatConfig

MAX_EMBED_BYTES = 5 * 1024 * 1024
PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class TurnRequest(BaseModel):
    """Everything the backend needs to start one turn."""

    session_id: str
    turn_id: str
    content: str
    attachments: list[dict[str, Any]] = []
    reasoning_enabled: bool = False
    ai_model_config: dict[str, Any] | None = None
    agent_id: str | None = None
    user_id: str | None = None
    system_context: str = ""
    use_responses: bool = False  # endpoint selection, not sent

    def body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "session_id": self.session_id,
            "turn_id": self.turn_id,
            "content": self.content,
            "user_id": self.user_id,
            "attachments": self.attachments,
            "reasoning_enabled": self.reasoning_enabled,
        }
        if self.agent_id:
            body["agent_id"] = self.agent_id
        else:
            body["ai_model_config"] = self.ai_model_config
        if self.system_context:
            body["system_context"] = self.system_context
        return body


def data_url(mime_type: str, data: bytes) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{b64}"


def reduce_attachment(name: str, mime_type: str, data: bytes) -> dict[str, Any]:
    """Reduce a file to what the backend accepts inline.

    Images become data URLs, text and JSON are sent as text, small PDF/DOCX
    documents as data URLs. Everything else is metadata only.
    """
    descriptor: dict[str, Any] = {"name": name, "mimeType": mime_type, "size": len(data), "type": "file"}
    lower = name.lower()

    if mime_type.startswith("image/"):
        descriptor["type"] = "image"
        descriptor["dataUrl"] = data_url(mime_type, data)
    elif mime_type.startswith("text/") or mime_type == "application/json":
        descriptor["text"] = data.decode("utf-8", errors="replace")
    elif (mime_type == PDF_MIME or lower.endswith(".pdf")) and len(data) <= MAX_EMBED_BYTES:
        descriptor["mimeType"] = PDF_MIME
        descriptor["dataUrl"] = data_url(PDF_MIME, data)
    elif (mime_type == DOCX_MIME or lower.endswith(".docx")) and len(data) <= MAX_EMBED_BYTES:
        descriptor["mimeType"] = DOCX_MIME
        descriptor["dataUrl"] = data_url(DOCX_MIME, data)
    return descriptor


def attachment_from_path(path: Path) -> dict[str, Any]:
    """Read a file and reduce it to an attachment descriptor."""
    mime_type, _ = mimetypes.guess_type(str(path))
    return reduce_attachment(path.name, mime_type or "application/octet-stream", path.read_bytes())


def attachment_preview(descriptor: dict[str, Any]) -> dict[str, Any]:
    """Strip inline payloads, keeping what a message list shows."""
    return {k: v for k, v in descriptor.items() if k not in ("dataUrl", "text")}


def reasoning_enabled(model: AiModelConfig | None, chat_config: ChatConfig) -> bool:
    if model is None:
        return False
    supports = model.supports_reasoning or bool(model.thinking_level)
    return supports and (chat_config.reasoning_enabled or bool(model.thinking_level))


def build_turn_request(
    session_id: str,
    turn_id: str,
    content: str,
    attachments: list[dict[str, Any]],
    chat_config: ChatConfig,
    model: AiModelConfig | None = None,
    agent: AgentConfig | None = None,
    agent_model: AiModelConfig | None = None,
    user_id: str | None = None,
) -> TurnRequest:
    """Assemble a turn-start request for exactly one of model or agent."""
    if (model is None) == (agent is None):
        raise TurnSetupError("Exactly one of a model or an agent must be selected")

    active = agent_model if agent is not None else model
    supports_images = active is not None and active.supports_images
    safe_attachments = [a for a in attachments if supports_images or a.get("type") != "image"]

    request = TurnRequest(
        session_id=session_id,
        turn_id=turn_id,
        content=content,
        attachments=safe_attachments,
        reasoning_enabled=reasoning_enabled(active, chat_config),
        user_id=user_id,
        system_context=chat_config.system_prompt,
        use_responses=active is not None and active.supports_responses,
    )
    if agent is not None:
        request.agent_id = agent.id
    else:
        request.ai_model_config = {
            "provider": model.provider,
            "model_name": model.model_name,
            "temperature": model.temperature if model.temperature is not None else chat_config.temperature,
            "thinking_level": model.thinking_level,
            "api_key": model.api_key or "",
            "base_url": model.base_url,
            "supports_images": model.supports_images,
            "supports_reasoning": model.supports_reasoning,
            "supports_responses": model.supports_responses,
        }
    return request


class ChunkStream:
    """Byte chunks of one turn. aclose() releases the underlying reader."""

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        release: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._chunks = chunks
        self._release = release
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._release is not None:
            await self._release()
        elif hasattr(self._chunks, "aclose"):
            await self._chunks.aclose()


class Transport(Protocol):
    async def open_stream(self, request: TurnRequest) -> ChunkStream | None: ...

    async def stop_chat(self, session_id: str, use_responses: bool = False) -> None: ...


def stream_path(request: TurnRequest) -> str:
    if request.agent_id:
        return "/agent_v3/agents/chat/stream" if request.use_responses else "/agents/chat/stream"
    return "/agent_v3/chat/stream" if request.use_responses else "/agent_v2/chat/stream"


class HttpTransport:
    """Streams turns from the chat backend over HTTP."""

    def __init__(self, config: ClientConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def open_stream(self, request: TurnRequest) -> ChunkStream:
        http_request = self._client.build_request(
            "POST",
            f"{self._config.base_url}{stream_path(request)}",
            json=request.body(),
            headers={"Accept": "text/event-stream"},
        )
        response = await self._client.send(http_request, stream=True)
        if not response.is_success:
            await response.aclose()
            raise TurnSetupError(f"HTTP error! status: {response.status_code}")
        return ChunkStream(response.aiter_bytes(), response.aclose)

    async def stop_chat(self, session_id: str, use_responses: bool = False) -> None:
        path = "/agent_v3/chat/stop" if use_responses else "/chat/stop"
        response = await self._client.post(
            f"{self._config.base_url}{path}", json={"session_id": session_id}
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


class FileTransport:
    """Replays a captured event stream from disk."""

    def __init__(self, path: Path, chunk_size: int = 1024) -> None:
        self.path = path
        self.chunk_size = chunk_size

    async def _chunks(self) -> AsyncIterator[bytes]:
        data = self.path.read_bytes()
        for start in range(0, len(data), self.chunk_size):
            yield data[start : start + self.chunk_size]

    async def open_stream(self, request: TurnRequest) -> ChunkStream:
        if not self.path.exists():
            raise TurnSetupError(f"Capture not found: {self.path}")
        return ChunkStream(self._chunks())

    async def stop_chat(self, session_id: str, use_responses: bool = False) -> None:
        return None
