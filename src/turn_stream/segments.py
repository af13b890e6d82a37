"""Ordered content segments of an in-flight assistant message."""

from datetime import datetime

from .models import ContentSegment, Message, SegmentType

SUMMARY_HEADER = "[Context summary]\n"


def flatten_text(segments: list[ContentSegment]) -> str:
    """Join text segments in order; thinking and tool markers are excluded."""
    return "".join(s.content for s in segments if s.type == SegmentType.TEXT)


def touch(message: Message) -> None:
    """Recompute display text after a segment mutation."""
    message.content = flatten_text(message.metadata.content_segments)
    message.updated_at = datetime.now()


def current_segment(message: Message) -> ContentSegment | None:
    segments = message.metadata.content_segments
    index = message.metadata.current_segment_index
    if 0 <= index < len(segments):
        return segments[index]
    return None


def _append_typed(message: Message, segment_type: SegmentType, text: str) -> bool:
    """Merge text into the current segment or open a new one.

    Returns True when a new segment was opened.
    """
    segment = current_segment(message)
    if segment is not None and segment.type == segment_type:
        segment.content += text
        touch(message)
        return False

    segments = message.metadata.content_segments
    segments.append(ContentSegment(type=segment_type, content=text))
    message.metadata.current_segment_index = len(segments) - 1
    touch(message)
    return True


def append_text(message: Message, text: str) -> None:
    if not text:
        return
    _append_typed(message, SegmentType.TEXT, text)


def append_thinking(message: Message, text: str) -> bool:
    """Append model reasoning; True when this opened a new thinking segment."""
    if not text:
        return False
    return _append_typed(message, SegmentType.THINKING, text)


def open_tool_call_segment(message: Message, tool_call_id: str) -> None:
    """Append a tool-call marker. Never merges."""
    segments = message.metadata.content_segments
    segments.append(ContentSegment(type=SegmentType.TOOL_CALL, tool_call_id=tool_call_id))
    message.metadata.current_segment_index = len(segments) - 1
    touch(message)


def open_trailing_text_segment(message: Message) -> None:
    """Open an empty text segment so later text lands after tool markers."""
    segments = message.metadata.content_segments
    segments.append(ContentSegment(type=SegmentType.TEXT))
    message.metadata.current_segment_index = len(segments) - 1
    touch(message)


def apply_complete_content(message: Message, full: str) -> None:
    """Make full the entire display text.

    The last text segment receives full, earlier text segments are blanked
    but kept in place. Thinking and tool-call segments are untouched.
    """
    if not full:
        return
    segments = message.metadata.content_segments

    text_index = -1
    for i in range(len(segments) - 1, -1, -1):
        if segments[i].type == SegmentType.TEXT:
            text_index = i
            break

    if text_index == -1:
        segments.append(ContentSegment(type=SegmentType.TEXT, content=full))
        text_index = len(segments) - 1
    else:
        for i, segment in enumerate(segments):
            if segment.type == SegmentType.TEXT:
                segment.content = full if i == text_index else ""

    message.metadata.current_segment_index = text_index
    touch(message)


def ensure_summary_segment(message: Message) -> tuple[ContentSegment, bool]:
    """Return the open context-summary segment, opening one if needed.

    The summary is a thinking segment starting with SUMMARY_HEADER. The bool
    is True when a new segment was opened.
    """
    segments = message.metadata.content_segments
    if segments:
        last = segments[-1]
        if last.type == SegmentType.THINKING and last.content.startswith(SUMMARY_HEADER):
            message.metadata.current_segment_index = len(segments) - 1
            return last, False

    segment = ContentSegment(type=SegmentType.THINKING, content=SUMMARY_HEADER)
    segments.append(segment)
    message.metadata.current_segment_index = len(segments) - 1
    return segment, True


def start_summary(message: Message) -> bool:
    _, opened = ensure_summary_segment(message)
    touch(message)
    return opened


def append_summary(message: Message, text: str) -> bool:
    segment, opened = ensure_summary_segment(message)
    segment.content += text
    touch(message)
    return opened


def finish_summary(message: Message, summary: str) -> bool:
    """Replace the summary body with the final summary text."""
    segment, opened = ensure_summary_segment(message)
    segment.content = SUMMARY_HEADER + summary
    touch(message)
    return opened
