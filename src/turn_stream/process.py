"""Per-turn process counters on the user message."""

from collections.abc import Callable

from .models import Message, TurnProcessSummary


def update_turn_process(
    user_message: Message,
    assistant_message_id: str,
    updater: Callable[[TurnProcessSummary], dict],
) -> TurnProcessSummary:
    """Merge the updater's partial fields into the user message's summary.

    Back-references and has_process are always recomputed.
    """
    current = user_message.metadata.history_process or TurnProcessSummary()
    merged = current.model_copy(update=updater(current))
    merged.user_message_id = user_message.id
    merged.final_assistant_message_id = assistant_message_id
    merged.has_process = (
        merged.tool_call_count > 0 or merged.thinking_count > 0 or merged.process_message_count > 0
    )
    user_message.metadata.history_process = merged
    return merged


def set_turn_process_expanded(messages: list[Message], user_message_id: str, expanded: bool) -> None:
    """Toggle the process disclosure of one turn."""
    for message in messages:
        if message.id == user_message_id and message.metadata.history_process:
            message.metadata.history_process.expanded = expanded
