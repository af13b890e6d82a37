"""JSON export of reconstructed turns."""

import json
from typing import Any

from .models import ChatState, Message, Role, SegmentType


def message_to_dict(message: Message) -> dict:
    """Convert Message model to dict for JSON serialization."""
    return message.model_dump(mode="json")


def compute_metadata(state: ChatState, session_id: str) -> dict:
    """Compute summary metadata for one session's turns."""
    messages = [m for m in state.messages if m.session_id == session_id]
    assistants = [m for m in messages if m.role == Role.ASSISTANT]

    tool_calls = sum(len(m.metadata.tool_calls) for m in assistants)
    thinking_segments = sum(
        1 for m in assistants for s in m.metadata.content_segments if s.type == SegmentType.THINKING
    )
    failed_tools = sum(1 for m in assistants for tc in m.metadata.tool_calls if tc.error)

    return {
        "session_id": session_id,
        "total_messages": len(messages),
        "tool_calls": tool_calls,
        "failed_tool_calls": failed_tools,
        "thinking_segments": thinking_segments,
        "pending_reviews": len(state.task_review_panels_by_session.get(session_id, [])),
        "error": state.chat_state_for(session_id).error,
    }


def session_to_dict(state: ChatState, session_id: str) -> dict[str, Any]:
    """Messages and review panels of one session."""
    return {
        "messages": [message_to_dict(m) for m in state.messages if m.session_id == session_id],
        "task_reviews": [
            p.model_dump(mode="json") for p in state.task_review_panels_by_session.get(session_id, [])
        ],
    }


def render_json(state: ChatState, session_id: str, compact: bool = False) -> str:
    """Render a session's reconstructed turns as a JSON string."""
    data = session_to_dict(state, session_id)
    metadata = compute_metadata(state, session_id)

    # Put metadata first in output
    ordered = {"metadata": metadata, **data}

    return json.dumps(ordered, indent=None if compact else 2, ensure_ascii=False)
