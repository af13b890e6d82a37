"""Tests for requests, transports and configuration."""

import base64
import json
from pathlib import Path

import httpx
import pytest

from turn_stream.config import DEFAULT_BASE_URL, ClientConfig, load_config
from turn_stream.errors import TurnSetupError
from turn_stream.models import AgentConfig, AiModelConfig, ChatConfig
from turn_stream.transport import (
    MAX_EMBED_BYTES,
    PDF_MIME,
    FileTransport,
    HttpTransport,
    attachment_from_path,
    attachment_preview,
    build_turn_request,
    reduce_attachment,
    stream_path,
)

IMAGE = {"name": "a.png", "mimeType": "image/png", "size": 3, "type": "image", "dataUrl": "data:image/png;base64,AAA"}
NOTE = {"name": "n.txt", "mimeType": "text/plain", "size": 2, "type": "file", "text": "hi"}


def model(**overrides) -> AiModelConfig:
    return AiModelConfig(id="m1", name="Model", model_name="gpt-test", **overrides)


async def collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


class TestReduceAttachment:
    """Tests for attachment reduction."""

    def test_image(self) -> None:
        """Images become data URLs."""
        descriptor = reduce_attachment("a.png", "image/png", b"\x89PNG")
        assert descriptor["type"] == "image"
        assert descriptor["dataUrl"] == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
        assert descriptor["size"] == 4

    def test_text(self) -> None:
        """Text and JSON are inlined as text."""
        assert reduce_attachment("n.txt", "text/plain", b"hello")["text"] == "hello"
        assert reduce_attachment("d.json", "application/json", b"{}")["text"] == "{}"

    def test_pdf_by_extension(self) -> None:
        """Small PDFs are embedded even with a generic mime type."""
        descriptor = reduce_attachment("doc.PDF", "application/octet-stream", b"%PDF")
        assert descriptor["mimeType"] == PDF_MIME
        assert descriptor["dataUrl"].startswith(f"data:{PDF_MIME};base64,")

    def test_large_pdf_metadata_only(self) -> None:
        """Oversized documents carry only metadata."""
        descriptor = reduce_attachment("big.pdf", PDF_MIME, b"0" * (MAX_EMBED_BYTES + 1))
        assert "dataUrl" not in descriptor
        assert descriptor["size"] == MAX_EMBED_BYTES + 1

    def test_unknown_binary(self) -> None:
        """Other files are metadata only."""
        descriptor = reduce_attachment("x.bin", "application/octet-stream", b"\x00")
        assert descriptor == {"name": "x.bin", "mimeType": "application/octet-stream", "size": 1, "type": "file"}

    def test_from_path(self, tmp_path: Path) -> None:
        """The mime type is guessed from the file name."""
        path = tmp_path / "notes.txt"
        path.write_text("abc")
        assert attachment_from_path(path)["text"] == "abc"

    def test_preview_strips_payload(self) -> None:
        """Previews keep metadata only."""
        assert "dataUrl" not in attachment_preview(IMAGE)
        assert "text" not in attachment_preview(NOTE)
        assert attachment_preview(NOTE)["name"] == "n.txt"


class TestBuildTurnRequest:
    """Tests for build_turn_request function."""

    def test_exactly_one_target(self) -> None:
        """Neither or both targets are rejected."""
        with pytest.raises(TurnSetupError):
            build_turn_request("s", "t", "hi", [], ChatConfig())
        with pytest.raises(TurnSetupError):
            build_turn_request("s", "t", "hi", [], ChatConfig(), model=model(), agent=AgentConfig(id="a", name="A"))

    def test_images_filtered_without_support(self) -> None:
        """Image attachments are dropped for text-only models."""
        request = build_turn_request("s", "t", "hi", [IMAGE, NOTE], ChatConfig(), model=model())
        assert request.attachments == [NOTE]

    def test_images_kept_with_support(self) -> None:
        """Image-capable models receive images."""
        request = build_turn_request("s", "t", "hi", [IMAGE], ChatConfig(), model=model(supports_images=True))
        assert request.attachments == [IMAGE]

    def test_agent_model_decides_images(self) -> None:
        """For agents the backing model's capabilities apply."""
        agent = AgentConfig(id="a", name="A", ai_model_config_id="m1")
        request = build_turn_request(
            "s", "t", "hi", [IMAGE], ChatConfig(), agent=agent, agent_model=model(supports_images=True)
        )
        assert request.attachments == [IMAGE]
        assert request.body()["agent_id"] == "a"

    def test_reasoning(self) -> None:
        """Reasoning needs both model support and a request for it."""
        on = ChatConfig(reasoning_enabled=True)
        assert build_turn_request("s", "t", "", [], on, model=model()).reasoning_enabled is False
        assert build_turn_request("s", "t", "", [], on, model=model(supports_reasoning=True)).reasoning_enabled
        assert build_turn_request("s", "t", "", [], ChatConfig(), model=model(thinking_level="high")).reasoning_enabled

    def test_model_temperature_wins(self) -> None:
        """A model temperature overrides the chat default."""
        request = build_turn_request("s", "t", "", [], ChatConfig(), model=model(temperature=0.1))
        assert request.body()["ai_model_config"]["temperature"] == 0.1

    def test_system_context(self) -> None:
        """The system prompt is only sent when set."""
        request = build_turn_request("s", "t", "", [], ChatConfig(system_prompt="Be brief"), model=model())
        assert request.body()["system_context"] == "Be brief"
        assert "system_context" not in build_turn_request("s", "t", "", [], ChatConfig(), model=model()).body()

    def test_stream_path(self) -> None:
        """Endpoint depends on target kind and responses support."""
        plain = build_turn_request("s", "t", "", [], ChatConfig(), model=model())
        responses = build_turn_request("s", "t", "", [], ChatConfig(), model=model(supports_responses=True))
        agent = build_turn_request("s", "t", "", [], ChatConfig(), agent=AgentConfig(id="a", name="A"))
        assert stream_path(plain) == "/agent_v2/chat/stream"
        assert stream_path(responses) == "/agent_v3/chat/stream"
        assert stream_path(agent) == "/agents/chat/stream"
        assert "use_responses" not in responses.body()


class TestHttpTransport:
    """Tests for HttpTransport using a mock HTTP transport."""

    @pytest.mark.asyncio
    async def test_open_stream(self) -> None:
        """The turn is POSTed and the body streamed back."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["accept"] = request.headers["accept"]
            return httpx.Response(200, content=b'data: {"type": "done"}\n\n')

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpTransport(ClientConfig(base_url="http://backend/api"), client=client)
        request = build_turn_request("s1", "t1", "hi", [], ChatConfig(), model=model())

        stream = await transport.open_stream(request)
        assert await collect(stream) == b'data: {"type": "done"}\n\n'
        await stream.aclose()
        await transport.aclose()

        assert seen["url"] == "http://backend/api/agent_v2/chat/stream"
        assert seen["body"]["session_id"] == "s1"
        assert seen["accept"] == "text/event-stream"
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        """Non-success statuses fail the turn setup."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502)))
        transport = HttpTransport(ClientConfig(), client=client)
        request = build_turn_request("s1", "t1", "hi", [], ChatConfig(), model=model())

        with pytest.raises(TurnSetupError, match="HTTP error! status: 502"):
            await transport.open_stream(request)
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_stop_chat(self) -> None:
        """Stop requests go to the endpoint matching the turn's API."""
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpTransport(ClientConfig(base_url="http://backend/api"), client=client)
        await transport.stop_chat("s1")
        await transport.stop_chat("s1", use_responses=True)
        await transport.aclose()

        assert paths == [
            ("/api/chat/stop", {"session_id": "s1"}),
            ("/api/agent_v3/chat/stop", {"session_id": "s1"}),
        ]

    @pytest.mark.asyncio
    async def test_stop_chat_failure(self) -> None:
        """A failed stop raises an HTTP error."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        transport = HttpTransport(ClientConfig(), client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await transport.stop_chat("s1")
        await transport.aclose()


class TestFileTransport:
    """Tests for FileTransport."""

    @pytest.mark.asyncio
    async def test_chunks(self, simple_capture: Path) -> None:
        """The capture is served in fixed-size chunks."""
        request = build_turn_request("s", "t", "", [], ChatConfig(), model=model())
        stream = await FileTransport(simple_capture, chunk_size=4).open_stream(request)
        chunks = [chunk async for chunk in stream]
        assert all(len(c) <= 4 for c in chunks)
        assert b"".join(chunks) == simple_capture.read_bytes()

    @pytest.mark.asyncio
    async def test_missing_capture(self, tmp_path: Path) -> None:
        """A missing capture is a setup failure."""
        request = build_turn_request("s", "t", "", [], ChatConfig(), model=model())
        with pytest.raises(TurnSetupError):
            await FileTransport(tmp_path / "nope.sse").open_stream(request)


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset variables fall back to defaults."""
        for name in ("TURN_STREAM_BASE_URL", "TURN_STREAM_USER_ID", "TURN_STREAM_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        config = load_config()
        assert config.base_url == DEFAULT_BASE_URL
        assert config.user_id is None
        assert config.timeout == 300.0

    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Variables override defaults; trailing slashes are dropped."""
        monkeypatch.setenv("TURN_STREAM_BASE_URL", "http://example/api/")
        monkeypatch.setenv("TURN_STREAM_USER_ID", "u1")
        monkeypatch.setenv("TURN_STREAM_TIMEOUT", "12.5")
        config = load_config()
        assert config.base_url == "http://example/api"
        assert config.user_id == "u1"
        assert config.timeout == 12.5

    def test_bad_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A non-numeric timeout is rejected."""
        monkeypatch.setenv("TURN_STREAM_TIMEOUT", "soon")
        with pytest.raises(RuntimeError, match="TURN_STREAM_TIMEOUT"):
            load_config()
