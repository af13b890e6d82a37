"""Recoverable snapshots of the in-flight assistant message."""

from .models import ChatState, ContentSegment, Message, SegmentType


def snapshot(message: Message) -> Message:
    """Deep copy through JSON so no live reference survives."""
    return Message.model_validate_json(message.model_dump_json())


def persist_draft(state: ChatState, session_id: str, message: Message) -> None:
    state.streaming_drafts[session_id] = snapshot(message)


def clear_draft(state: ChatState, session_id: str) -> None:
    state.streaming_drafts[session_id] = None


def restore_message(state: ChatState, session_id: str, placeholder: Message, streamed_text: str) -> Message:
    """Rebuild a working copy of the assistant message.

    Uses the last draft when there is one, otherwise the placeholder plus the
    text streamed so far.
    """
    draft = state.streaming_drafts.get(session_id)
    if draft is not None and draft.id == placeholder.id:
        return snapshot(draft)

    message = snapshot(placeholder)
    message.content = streamed_text
    message.metadata.tool_calls = []
    message.metadata.content_segments = [ContentSegment(type=SegmentType.TEXT, content=streamed_text)]
    message.metadata.current_segment_index = 0
    return message


def ensure_streaming_message(
    state: ChatState, session_id: str, placeholder: Message, streamed_text: str
) -> Message:
    """Return the live assistant message, restoring it if it was evicted.

    A restored copy is put back into the message list only while its
    session is the active one.
    """
    live = state.find_message(placeholder.id)
    if live is not None:
        return live

    message = restore_message(state, session_id, placeholder, streamed_text)
    if state.current_session_id == session_id:
        state.messages.append(message)
    return message
