"""Task-review requests embedded in tool streams."""

import json
import uuid
from datetime import datetime
from typing import Any

from .models import ChatState, Message, TaskReviewDraft, TaskReviewPanelState
from .parser import TOOL_STREAM_ID_KEYS, resolve_id
from .tools import find_tool_call

REVIEW_EVENT = "task_create_review_required"
REVIEW_WAITING_TEXT = "Waiting for task review confirmation..."

PRIORITIES = ("high", "medium", "low")
STATUSES = ("todo", "doing", "blocked", "done")


def parse_review_event(data: Any) -> dict | None:
    """Return the review payload if a tools_stream content carries one."""
    if not isinstance(data, dict):
        return None
    content = data.get("content")
    if not isinstance(content, str):
        return None
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or parsed.get("event") != REVIEW_EVENT:
        return None
    payload = parsed.get("data")
    if not isinstance(payload, dict):
        return None
    return payload


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_tags(tags: Any) -> list[str]:
    """Trim, drop empties and deduplicate, keeping first occurrence order."""
    if not isinstance(tags, list):
        return []
    seen: list[str] = []
    for tag in tags:
        tag = _clean(tag)
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def normalize_draft(raw: dict) -> TaskReviewDraft:
    priority = _clean(raw.get("priority")).lower()
    status = _clean(raw.get("status")).lower()
    due_at = raw.get("due_at") or raw.get("dueAt")
    return TaskReviewDraft(
        id=_clean(raw.get("id")) or f"draft_{uuid.uuid4().hex}",
        title=raw.get("title") if isinstance(raw.get("title"), str) else "",
        details=raw.get("details") if isinstance(raw.get("details"), str) else "",
        priority=priority if priority in PRIORITIES else "medium",
        status=status if status in STATUSES else "todo",
        tags=normalize_tags(raw.get("tags")),
        due_at=due_at if isinstance(due_at, str) and due_at else None,
    )


def build_review_panel(
    payload: dict, session_id: str, conversation_turn_id: str
) -> TaskReviewPanelState | None:
    """Materialize a panel; None when the payload has no review id."""
    review_id = _clean(payload.get("review_id"))
    if not review_id:
        return None
    raw_drafts = payload.get("draft_tasks")
    drafts = [normalize_draft(d) for d in raw_drafts if isinstance(d, dict)] if isinstance(raw_drafts, list) else []
    timeout_ms = payload.get("timeout_ms")
    return TaskReviewPanelState(
        review_id=review_id,
        session_id=_clean(payload.get("session_id")) or session_id,
        conversation_turn_id=_clean(payload.get("conversation_turn_id")) or conversation_turn_id,
        drafts=drafts,
        timeout_ms=timeout_ms if isinstance(timeout_ms, int) and timeout_ms > 0 else None,
    )


def upsert_review_panel(state: ChatState, panel: TaskReviewPanelState) -> None:
    """Insert or replace a panel by review id in its session's list."""
    panels = state.task_review_panels_by_session.setdefault(panel.session_id, [])
    for i, existing in enumerate(panels):
        if existing.review_id == panel.review_id:
            panels[i] = panel
            break
    else:
        panels.append(panel)

    if state.current_session_id == panel.session_id:
        state.task_review_panel = panel


def set_review_panel(state: ChatState, panel: TaskReviewPanelState | None) -> None:
    """Make panel the active one, or clear the active panel."""
    if panel is None:
        state.task_review_panel = None
        return
    upsert_review_panel(state, panel)
    state.task_review_panel = panel


def remove_review_panel(state: ChatState, review_id: str, session_id: str | None = None) -> None:
    sessions = [session_id] if session_id else list(state.task_review_panels_by_session)
    for sid in sessions:
        panels = state.task_review_panels_by_session.get(sid)
        if panels is None:
            continue
        remaining = [p for p in panels if p.review_id != review_id]
        if remaining:
            state.task_review_panels_by_session[sid] = remaining
        else:
            del state.task_review_panels_by_session[sid]

    active = state.task_review_panel
    if active is not None and active.review_id == review_id:
        state.task_review_panel = None


def apply_review_event(
    state: ChatState,
    message: Message,
    data: dict,
    payload: dict,
    session_id: str,
    conversation_turn_id: str,
) -> TaskReviewPanelState | None:
    """Surface a review panel and park its tool call until a decision arrives.

    Only an open tool call shows the waiting text; a completed call keeps its
    outcome and is not reopened.
    """
    panel = build_review_panel(payload, session_id, conversation_turn_id)
    if panel is None:
        return None
    upsert_review_panel(state, panel)

    tool_call_id = resolve_id(data, TOOL_STREAM_ID_KEYS)
    tool_call = find_tool_call(message, tool_call_id) if tool_call_id else None
    if tool_call is not None and not tool_call.completed:
        tool_call.result = REVIEW_WAITING_TEXT
        tool_call.completed = False
        message.updated_at = datetime.now()
    return panel
