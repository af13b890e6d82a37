"""Domain models for turn-stream."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class MessageStatus(str, Enum):
    """Lifecycle of a message."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"


class SegmentType(str, Enum):
    """Kinds of content segments in an assistant message."""

    TEXT = "text"
    THINKING = "thinking"
    TOOL_CALL = "tool_call"


class ContentSegment(BaseModel):
    """A contiguous run of one content kind."""

    type: SegmentType
    content: str = ""
    tool_call_id: str | None = None  # for tool_call


class ToolCallState(BaseModel):
    """Lifecycle of one tool invocation within a turn."""

    id: str
    message_id: str
    name: str = "unknown_tool"
    arguments: str = "{}"
    result: str = ""  # latest displayable output
    final_result: str = ""  # authoritative completed output
    stream_log: str = ""  # every incremental chunk, never overwritten
    completed: bool = False
    error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class TurnProcessSummary(BaseModel):
    """Process counters attached to the user message of a turn."""

    has_process: bool = False
    tool_call_count: int = 0
    thinking_count: int = 0
    process_message_count: int = 0
    user_message_id: str | None = None
    final_assistant_message_id: str | None = None
    expanded: bool = False
    loaded: bool = False
    loading: bool = False


class MessageMetadata(BaseModel):
    """Metadata bag carried by a message."""

    conversation_turn_id: str | None = None
    content_segments: list[ContentSegment] = []
    current_segment_index: int = 0
    tool_calls: list[ToolCallState] = []
    history_process: TurnProcessSummary | None = None  # user message only
    model: str | None = None
    attachments: list[dict[str, Any]] = []


class Message(BaseModel):
    """One chat turn's content holder."""

    id: str
    session_id: str
    role: Role
    content: str = ""
    status: MessageStatus = MessageStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime | None = None
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class TaskReviewDraft(BaseModel):
    """An editable task proposed for human confirmation."""

    id: str
    title: str = ""
    details: str = ""
    priority: str = "medium"  # "high" | "medium" | "low"
    status: str = "todo"  # "todo" | "doing" | "blocked" | "done"
    tags: list[str] = []
    due_at: str | None = None


class TaskReviewPanelState(BaseModel):
    """A pending task-creation review surfaced through a tool stream."""

    review_id: str
    session_id: str
    conversation_turn_id: str
    drafts: list[TaskReviewDraft] = []
    timeout_ms: int | None = None
    submitting: bool = False
    error: str | None = None


class AiModelConfig(BaseModel):
    """A selectable model configuration."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    name: str
    provider: str = "openai"
    model_name: str
    base_url: str | None = None
    api_key: str | None = None
    temperature: float | None = None
    thinking_level: str | None = None
    enabled: bool = True
    supports_images: bool = False
    supports_reasoning: bool = False
    supports_responses: bool = False


class AgentConfig(BaseModel):
    """A selectable agent backed by a model configuration."""

    id: str
    name: str
    ai_model_config_id: str | None = None
    enabled: bool = True


class ChatConfig(BaseModel):
    """User chat preferences."""

    temperature: float = 0.7
    reasoning_enabled: bool = False
    system_prompt: str = ""


class SessionChatState(BaseModel):
    """In-flight flags for one session."""

    is_loading: bool = False
    is_streaming: bool = False
    streaming_message_id: str | None = None
    error: str | None = None


class ChatState(BaseModel):
    """Mutable state container shared by the engine and its consumers."""

    messages: list[Message] = []
    current_session_id: str | None = None
    session_chat_state: dict[str, SessionChatState] = {}
    is_loading: bool = False
    is_streaming: bool = False
    streaming_message_id: str | None = None
    task_review_panel: TaskReviewPanelState | None = None
    task_review_panels_by_session: dict[str, list[TaskReviewPanelState]] = {}
    streaming_drafts: dict[str, Message | None] = {}
    ai_model_configs: list[AiModelConfig] = []
    selected_model_id: str | None = None
    agents: list[AgentConfig] = []
    selected_agent_id: str | None = None
    chat_config: ChatConfig = Field(default_factory=ChatConfig)
    error: str | None = None

    def chat_state_for(self, session_id: str) -> SessionChatState:
        """Return the session's flags, creating them on first use."""
        if session_id not in self.session_chat_state:
            self.session_chat_state[session_id] = SessionChatState()
        return self.session_chat_state[session_id]

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None
