"""Tool-call lifecycle tracking."""

import uuid
from datetime import datetime
from typing import Any

from .models import Message, ToolCallState
from .parser import (
    TOOL_RESULT_ID_KEYS,
    TOOL_START_ID_KEYS,
    TOOL_STREAM_ID_KEYS,
    as_text,
    preview,
    resolve_id,
    warn,
)

CANCELLED_ERROR = "Cancelled"
TOOL_FAILED_ERROR = "Tool execution failed"


def as_list(data: Any, *keys: str) -> list[dict]:
    """Unwrap a payload that may be a keyed list, a bare list or one object."""
    raw = data
    if isinstance(data, dict):
        for key in keys:
            if data.get(key) is not None:
                raw = data[key]
                break
    if raw is None:
        return []
    if not isinstance(raw, list):
        raw = [raw]
    return [item for item in raw if isinstance(item, dict)]


def find_tool_call(message: Message, tool_call_id: str) -> ToolCallState | None:
    for tool_call in message.metadata.tool_calls:
        if tool_call.id == tool_call_id:
            return tool_call
    return None


def normalize_tool_call(raw: dict, message_id: str) -> ToolCallState:
    """Build a tracker entry from a tools_start entry."""
    function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
    arguments = function.get("arguments") or raw.get("arguments") or "{}"
    return ToolCallState(
        id=resolve_id(raw, TOOL_START_ID_KEYS) or f"tool_{uuid.uuid4().hex}",
        message_id=message_id,
        name=function.get("name") or raw.get("name") or "unknown_tool",
        arguments=as_text(arguments),
    )


def register_tool_calls(message: Message, data: Any) -> list[ToolCallState]:
    """Track every tool call announced by a tools_start payload."""
    registered = []
    for raw in as_list(data, "tool_calls"):
        tool_call = normalize_tool_call(raw, message.id)
        message.metadata.tool_calls.append(tool_call)
        registered.append(tool_call)
    return registered


def is_failure(payload: dict) -> bool:
    return payload.get("success") is False or payload.get("is_error") is True


def apply_tool_stream(message: Message, data: Any) -> ToolCallState | None:
    """Apply one tools_stream payload to its tracked tool call.

    Incremental chunks (``is_stream``) accumulate in stream_log and result.
    Anything else is a full replacement and completes the call.
    """
    if not isinstance(data, dict):
        warn(f"Ignoring tool stream payload that is not an object: {preview(str(data))}")
        return None
    tool_call_id = resolve_id(data, TOOL_STREAM_ID_KEYS)
    if not tool_call_id:
        warn(f"Tool stream payload has no tool call id: {preview(as_text(data))}")
        return None
    tool_call = find_tool_call(message, tool_call_id)
    if tool_call is None:
        warn(f"No tracked tool call for stream chunk: {tool_call_id}")
        return None
    if tool_call.completed:
        return tool_call

    chunk = as_text(data.get("content") or data.get("chunk") or data.get("data"))
    if data.get("is_error") or not data.get("success"):
        tool_call.error = chunk or TOOL_FAILED_ERROR
        tool_call.completed = True
    elif data.get("is_stream") is True:
        tool_call.stream_log += chunk
        tool_call.result += chunk
    else:
        if chunk:
            tool_call.final_result = chunk
        tool_call.result = chunk
        tool_call.completed = True

    message.updated_at = datetime.now()
    return tool_call


def apply_tool_results(message: Message, data: Any) -> list[ToolCallState]:
    """Apply a tools_end payload: authoritative results or errors."""
    updated = []
    for result in as_list(data, "tool_results", "results"):
        tool_call_id = resolve_id(result, TOOL_RESULT_ID_KEYS)
        if not tool_call_id:
            warn(f"Tool result has no tool call id: {preview(as_text(result))}")
            continue
        tool_call = find_tool_call(message, tool_call_id)
        if tool_call is None:
            warn(f"No tracked tool call for result: {tool_call_id}")
            continue

        content = as_text(result.get("result") or result.get("content") or result.get("output"))
        if is_failure(result):
            tool_call.error = as_text(result.get("error")) or content or TOOL_FAILED_ERROR
        else:
            if content:
                tool_call.final_result = content
                tool_call.result = content
            tool_call.error = None
        tool_call.completed = True
        updated.append(tool_call)

    if updated:
        message.updated_at = datetime.now()
    return updated


def cancel_open_tool_calls(message: Message) -> None:
    """Close every tool call; unfinished ones without output become cancelled."""
    for tool_call in message.metadata.tool_calls:
        if not tool_call.error and not tool_call.result.strip():
            tool_call.error = CANCELLED_ERROR
        tool_call.completed = True
    message.updated_at = datetime.now()
