"""Drives one streamed turn from request to finalized message."""

import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import httpx

from .drafts import clear_draft, ensure_streaming_message, persist_draft, snapshot
from .errors import StreamError, TurnError, TurnSetupError
from .models import (
    AgentConfig,
    AiModelConfig,
    ChatState,
    ContentSegment,
    Message,
    MessageMetadata,
    MessageStatus,
    Role,
    SegmentType,
)
from .parser import FrameDecoder, as_text, decode_events, warn
from .process import update_turn_process
from .review import apply_review_event, parse_review_event
from .segments import (
    append_summary,
    append_text,
    append_thinking,
    apply_complete_content,
    finish_summary,
    open_tool_call_segment,
    open_trailing_text_segment,
    start_summary,
)
from .tools import apply_tool_results, apply_tool_stream, cancel_open_tool_calls, register_tool_calls
from .transport import ChunkStream, Transport, attachment_preview, build_turn_request

DONE = "done"
CANCELLED = "cancelled"

SUMMARY_EVENTS = (
    "context_summarized_start",
    "context_summarized_stream",
    "context_summarized_end",
    "context_summarized",
)


class StreamingTurn:
    """Bookkeeping for the one in-flight turn of a session."""

    def __init__(
        self,
        state: ChatState,
        session_id: str,
        turn_id: str,
        user_message: Message,
        assistant_message: Message,
    ) -> None:
        self.state = state
        self.session_id = session_id
        self.turn_id = turn_id
        self.user_message = user_message
        self.placeholder = assistant_message
        self.streamed_text = ""
        self.saw_done = False

    def message(self) -> Message:
        """The assistant message being rebuilt, restored if it was evicted."""
        return ensure_streaming_message(self.state, self.session_id, self.placeholder, self.streamed_text)

    def bump(self, **increments: int) -> None:
        """Add to the turn's process counters on the user message."""
        user_message = self.state.find_message(self.user_message.id)
        if user_message is None:
            return
        update_turn_process(
            user_message,
            self.placeholder.id,
            lambda summary: {k: getattr(summary, k) + v for k, v in increments.items()},
        )


def _event_data(event: dict) -> dict:
    data = event.get("data")
    return data if isinstance(data, dict) else {}


def apply_event(turn: StreamingTurn, message: Message, event: dict) -> str | None:
    """Apply one decoded event to the turn's assistant message.

    Returns DONE or CANCELLED when the event ends the turn. Raises
    StreamError for a backend error event. Unknown types are ignored.
    """
    event_type = event.get("type")

    if event_type in ("chunk", "content"):
        text = event.get("content")
        if isinstance(text, str) and text:
            turn.streamed_text += text
            append_text(message, text)

    elif event_type == "thinking":
        text = event.get("content")
        if isinstance(text, str) and text and append_thinking(message, text):
            turn.bump(thinking_count=1)

    elif event_type in SUMMARY_EVENTS:
        data = _event_data(event)
        if event_type == "context_summarized_start":
            opened = start_summary(message)
        elif event_type == "context_summarized_stream":
            opened = append_summary(message, as_text(data.get("content") or data.get("chunk") or data.get("data")))
        else:
            full = data.get("full_summary")
            if not isinstance(full, str) or not full:
                full = data.get("summary_preview")
            opened = finish_summary(message, as_text(full))
        if opened:
            turn.bump(process_message_count=1)

    elif event_type == "tools_start":
        registered = register_tool_calls(message, event.get("data"))
        for tool_call in registered:
            open_tool_call_segment(message, tool_call.id)
        if registered:
            open_trailing_text_segment(message)
            turn.bump(tool_call_count=len(registered))

    elif event_type == "tools_stream":
        data = event.get("data")
        payload = parse_review_event(data)
        if payload is not None:
            apply_review_event(turn.state, message, data, payload, turn.session_id, turn.turn_id)
        else:
            apply_tool_stream(message, data)

    elif event_type == "tools_end":
        apply_tool_results(message, event.get("data"))

    elif event_type == "error":
        raise StreamError(
            as_text(event.get("message")) or as_text(_event_data(event).get("message")) or "Stream error"
        )

    elif event_type == "cancelled":
        cancel_open_tool_calls(message)
        return CANCELLED

    elif event_type == "done":
        return DONE

    elif event_type == "complete":
        result = event.get("result")
        content = result.get("content") if isinstance(result, dict) else None
        if isinstance(content, str) and content:
            turn.streamed_text = content
            apply_complete_content(message, content)
        return DONE

    return None


def resolve_target(
    state: ChatState,
) -> tuple[AiModelConfig | None, AgentConfig | None, AiModelConfig | None]:
    """Find the selected model or agent; an agent wins when both are set.

    Returns (model, agent, agent_model).
    """
    if state.selected_agent_id:
        agent = next((a for a in state.agents if a.id == state.selected_agent_id), None)
        if agent is None or not agent.enabled:
            raise TurnSetupError("The selected agent is not available")
        agent_model = next((m for m in state.ai_model_configs if m.id == agent.ai_model_config_id), None)
        return None, agent, agent_model

    if state.selected_model_id:
        model = next((m for m in state.ai_model_configs if m.id == state.selected_model_id), None)
        if model is None or not model.enabled:
            raise TurnSetupError("The selected model is not available")
        return model, None, None

    raise TurnSetupError("Select a model or an agent first")


def active_model(state: ChatState) -> AiModelConfig | None:
    """Look up the model behind the current selection without validating it."""
    model_id = state.selected_model_id
    if state.selected_agent_id:
        agent = next((a for a in state.agents if a.id == state.selected_agent_id), None)
        model_id = agent.ai_model_config_id if agent is not None else None
    if not model_id:
        return None
    return next((m for m in state.ai_model_configs if m.id == model_id), None)


class TurnController:
    """Sends a message and rebuilds the streamed reply into the state."""

    def __init__(self, state: ChatState, transport: Transport, user_id: str | None = None) -> None:
        self.state = state
        self.transport = transport
        self.user_id = user_id

    def _set_flags(self, session_id: str, active: bool, streaming_message_id: str | None = None) -> None:
        chat_state = self.state.chat_state_for(session_id)
        chat_state.is_loading = active
        chat_state.is_streaming = active
        chat_state.streaming_message_id = streaming_message_id
        if self.state.current_session_id == session_id:
            self.state.is_loading = active
            self.state.is_streaming = active
            self.state.streaming_message_id = streaming_message_id

    def _set_error(self, session_id: str, error: Exception) -> None:
        text = str(error) or "Failed to send message"
        self.state.chat_state_for(session_id).error = text
        if self.state.current_session_id == session_id:
            self.state.error = text

    async def send_message(self, content: str, attachments: Iterable[dict[str, Any]] = ()) -> Message | None:
        """Run one turn to completion.

        Returns the finalized assistant message (None for a duplicate send).
        On failure the turn's placeholders are removed and the error re-raised.
        """
        state = self.state
        session_id = state.current_session_id
        if not session_id:
            raise TurnSetupError("No active session")

        chat_state = state.chat_state_for(session_id)
        if chat_state.is_loading or chat_state.is_streaming:
            return None

        model, agent, agent_model = resolve_target(state)
        attachments = list(attachments)
        turn_id = f"turn_{uuid.uuid4().hex}"
        request = build_turn_request(
            session_id,
            turn_id,
            content,
            attachments,
            state.chat_config,
            model=model,
            agent=agent,
            agent_model=agent_model,
            user_id=self.user_id,
        )

        chat_state.error = None
        self._set_flags(session_id, True)
        try:
            stream = await self.transport.open_stream(request)
            if stream is None:
                raise TurnSetupError("No response received")
        except Exception as e:
            self._set_flags(session_id, False)
            self._set_error(session_id, e)
            raise

        label = f"[Agent] {agent.name}" if agent is not None else model.model_name
        user_message, assistant_message = self._insert_placeholders(
            session_id, turn_id, content, request.attachments, label
        )
        turn = StreamingTurn(state, session_id, turn_id, user_message, assistant_message)
        persist_draft(state, session_id, assistant_message)

        try:
            try:
                await self._read_loop(turn, stream)
            finally:
                await stream.aclose()
            return self._finalize(turn)
        except Exception as e:
            self._rollback(turn, e)
            raise
        finally:
            self._set_flags(session_id, False)
            clear_draft(state, session_id)

    def _insert_placeholders(
        self,
        session_id: str,
        turn_id: str,
        content: str,
        attachments: list[dict[str, Any]],
        label: str,
    ) -> tuple[Message, Message]:
        created_at = datetime.now()
        user_message = Message(
            id=f"temp_user_{uuid.uuid4().hex}",
            session_id=session_id,
            role=Role.USER,
            content=content,
            status=MessageStatus.COMPLETED,
            created_at=created_at,
            metadata=MessageMetadata(
                conversation_turn_id=turn_id,
                model=label,
                attachments=[attachment_preview(a) for a in attachments],
            ),
        )
        assistant_message = Message(
            id=f"temp_{uuid.uuid4().hex}",
            session_id=session_id,
            role=Role.ASSISTANT,
            status=MessageStatus.STREAMING,
            created_at=created_at + timedelta(milliseconds=1),
            metadata=MessageMetadata(
                conversation_turn_id=turn_id,
                model=label,
                content_segments=[ContentSegment(type=SegmentType.TEXT)],
                current_segment_index=0,
            ),
        )
        self.state.messages.append(user_message)
        self.state.messages.append(assistant_message)
        self._set_flags(session_id, True, assistant_message.id)
        return user_message, assistant_message

    async def _read_loop(self, turn: StreamingTurn, stream: ChunkStream) -> None:
        decoder = FrameDecoder()
        async for chunk in stream:
            if self._dispatch(turn, decoder.feed(chunk)):
                return
        self._dispatch(turn, decoder.feed(b"", final=True))

    def _dispatch(self, turn: StreamingTurn, frames: list[str]) -> bool:
        """Apply a batch of frames; True once the turn has ended."""
        events, ended = decode_events(frames)
        for event in events:
            message = turn.message()
            signal = apply_event(turn, message, event)
            persist_draft(self.state, turn.session_id, message)
            if signal is not None:
                turn.saw_done = True
                return True
        if ended:
            turn.saw_done = True
        return ended

    def _finalize(self, turn: StreamingTurn) -> Message:
        """Write the final draft into the message list."""
        message = turn.message()
        if turn.saw_done:
            message.status = MessageStatus.COMPLETED
        message.updated_at = datetime.now()
        final = snapshot(message)

        for i, existing in enumerate(self.state.messages):
            if existing.id == final.id:
                self.state.messages[i] = final
                break
        else:
            if self.state.current_session_id == turn.session_id:
                self.state.messages.append(final)
        return final

    def _rollback(self, turn: StreamingTurn, error: Exception) -> None:
        placeholder_ids = {turn.user_message.id, turn.placeholder.id}
        self.state.messages = [m for m in self.state.messages if m.id not in placeholder_ids]
        self._set_error(turn.session_id, error)

    async def abort_current_conversation(self) -> None:
        """Ask the backend to stop and close out the streaming message locally."""
        state = self.state
        session_id = state.current_session_id
        if not session_id:
            return

        active = active_model(state)
        try:
            await self.transport.stop_chat(session_id, use_responses=active is not None and active.supports_responses)
        except (TurnError, httpx.HTTPError) as e:
            warn(f"Failed to stop conversation: {e}")

        streaming_id = state.chat_state_for(session_id).streaming_message_id or state.streaming_message_id
        self._set_flags(session_id, False)
        if streaming_id:
            message = state.find_message(streaming_id)
            if message is not None:
                cancel_open_tool_calls(message)
