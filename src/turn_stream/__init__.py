"""turn-stream: Rebuild streamed assistant turns from chat event streams."""

from .controller import TurnController, apply_event
from .errors import StreamError, TurnError, TurnSetupError
from .models import (
    ChatState,
    ContentSegment,
    Message,
    MessageStatus,
    SegmentType,
    TaskReviewPanelState,
    ToolCallState,
    TurnProcessSummary,
)
from .parser import FrameDecoder, extract_frames
from .renderer import render_json

__all__ = [
    "ChatState",
    "ContentSegment",
    "FrameDecoder",
    "Message",
    "MessageStatus",
    "SegmentType",
    "StreamError",
    "TaskReviewPanelState",
    "ToolCallState",
    "TurnController",
    "TurnError",
    "TurnProcessSummary",
    "TurnSetupError",
    "apply_event",
    "extract_frames",
    "render_json",
]
