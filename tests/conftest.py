"""Pytest configuration and fixtures."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from turn_stream.models import AiModelConfig, ChatState, Message, MessageMetadata, MessageStatus, Role
from turn_stream.transport import ChunkStream, TurnRequest


def encode_events(*events: dict | str) -> bytes:
    """Frame events the way the backend sends them."""
    parts = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        parts.append(f"data: {payload}\n\n")
    return "".join(parts).encode()


class FakeTransport:
    """Serves scripted chunks. Callables in the script run between reads."""

    def __init__(self, script: list[bytes | Callable[[], None]] | None = None, error: Exception | None = None):
        self.script = script or []
        self.error = error
        self.requests: list[TurnRequest] = []
        self.stopped: list[str] = []
        self.stop_responses: list[bool] = []
        self.stream: ChunkStream | None = None
        self.no_stream = False

    async def _chunks(self):
        for step in self.script:
            if callable(step):
                step()
            else:
                yield step

    async def open_stream(self, request: TurnRequest) -> ChunkStream | None:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.no_stream:
            return None
        self.stream = ChunkStream(self._chunks())
        return self.stream

    async def stop_chat(self, session_id: str, use_responses: bool = False) -> None:
        self.stopped.append(session_id)
        self.stop_responses.append(use_responses)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the fixtures directory path."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def simple_capture(fixtures_dir: Path) -> Path:
    """Return path to simple.sse fixture."""
    return fixtures_dir / "simple.sse"


@pytest.fixture
def tool_capture(fixtures_dir: Path) -> Path:
    """Return path to tool_round_trip.sse fixture."""
    return fixtures_dir / "tool_round_trip.sse"


@pytest.fixture
def review_capture(fixtures_dir: Path) -> Path:
    """Return path to with_review.sse fixture."""
    return fixtures_dir / "with_review.sse"


@pytest.fixture
def malformed_capture(fixtures_dir: Path) -> Path:
    """Return path to malformed_crlf.sse fixture."""
    return fixtures_dir / "malformed_crlf.sse"


@pytest.fixture
def sse() -> Callable[..., bytes]:
    """Return the event framing helper."""
    return encode_events


@pytest.fixture
def make_transport() -> type[FakeTransport]:
    """Return the scripted transport class."""
    return FakeTransport


@pytest.fixture
def state() -> ChatState:
    """Chat state with an active session and one selected model."""
    return ChatState(
        current_session_id="s1",
        ai_model_configs=[AiModelConfig(id="m1", name="Test model", model_name="gpt-test")],
        selected_model_id="m1",
    )


@pytest.fixture
def assistant_message() -> Message:
    """Fresh streaming assistant message with one empty text segment."""
    return Message(
        id="a1",
        session_id="s1",
        role=Role.ASSISTANT,
        status=MessageStatus.STREAMING,
        metadata=MessageMetadata(content_segments=[{"type": "text"}], current_segment_index=0),
    )
