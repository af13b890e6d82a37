"""Frame extraction and event decoding for chat event streams."""

import codecs
import json
import re
import sys
from typing import Any

DATA_PREFIX = "data:"
END_SENTINEL = "[DONE]"
PREVIEW_LIMIT = 400

# Correlation id aliases, in lookup order. Real payloads use all of them.
TOOL_START_ID_KEYS = ("id", "tool_call_id")
TOOL_STREAM_ID_KEYS = ("toolCallId", "tool_call_id", "id")
TOOL_RESULT_ID_KEYS = ("tool_call_id", "id", "toolCallId")


class _EndOfStream:
    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


def warn(message: str) -> None:
    """Report recoverable protocol noise on stderr."""
    print(f"Warning: {message}", file=sys.stderr)


def preview(text: str, max_len: int = PREVIEW_LIMIT) -> str:
    """Bound text for log output."""
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


def frame_body(raw: str) -> str | None:
    """Collect the data lines of one raw frame.

    Returns None when the frame carries no data lines.
    """
    data_lines = []
    for line in re.split(r"\r?\n", raw):
        line = line.lstrip()
        if line.startswith(DATA_PREFIX):
            data_lines.append(line[len(DATA_PREFIX) :].lstrip())
    if not data_lines:
        return None
    return "\n".join(data_lines).strip()


def extract_frames(buffer: str) -> tuple[list[str], str]:
    """Split complete frames off the front of buffer.

    Frames end at a blank line (``\\n\\n`` or ``\\r\\n\\r\\n``, whichever comes
    first). Returns the non-empty frame bodies and the unconsumed remainder.
    """
    frames: list[str] = []
    cursor = 0

    while cursor < len(buffer):
        crlf = buffer.find("\r\n\r\n", cursor)
        lf = buffer.find("\n\n", cursor)
        if crlf == -1 and lf == -1:
            break

        if crlf != -1 and (lf == -1 or crlf < lf):
            boundary, separator_len = crlf, 4
        else:
            boundary, separator_len = lf, 2

        body = frame_body(buffer[cursor:boundary])
        cursor = boundary + separator_len
        if body:
            frames.append(body)

    return frames, buffer[cursor:]


def close_buffer(buffer: str) -> str:
    """Terminate a trailing frame that arrived without its blank line."""
    if buffer.strip():
        return buffer + "\n\n"
    return buffer


class FrameDecoder:
    """Turns successive byte chunks into complete frame bodies."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.buffer = ""

    def feed(self, chunk: bytes, final: bool = False) -> list[str]:
        """Add a chunk and return every frame it completes.

        On the final chunk a residual frame is flushed as well.
        """
        self.buffer += self._decoder.decode(chunk, final=final)
        if final:
            self.buffer = close_buffer(self.buffer)
        frames, self.buffer = extract_frames(self.buffer)
        return frames


def decode_frame(body: str) -> Any:
    """Parse one frame body.

    Returns END_OF_STREAM for the end sentinel, the event dict for a JSON
    object, or None for anything that cannot be applied.
    """
    if body == END_SENTINEL:
        return END_OF_STREAM
    try:
        parsed = json.loads(body)
    except (ValueError, RecursionError) as e:
        warn(f"Skipping malformed stream frame: {e}; preview: {preview(body)}")
        return None
    if parsed == END_SENTINEL:
        return END_OF_STREAM
    if not isinstance(parsed, dict):
        warn(f"Skipping non-object stream frame: {preview(body)}")
        return None
    return parsed


def decode_events(frames: list[str]) -> tuple[list[dict], bool]:
    """Decode a batch of frames, stopping at the end sentinel.

    Returns the decoded events and whether the sentinel was seen.
    """
    events = []
    for body in frames:
        decoded = decode_frame(body)
        if decoded is END_OF_STREAM:
            return events, True
        if decoded is not None:
            events.append(decoded)
    return events, False


def resolve_id(payload: dict, keys: tuple[str, ...]) -> str | None:
    """Return the first truthy correlation id among keys."""
    for key in keys:
        value = payload.get(key)
        if value:
            return str(value)
    return None


def as_text(value: Any) -> str:
    """Coerce a payload field to display text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
