"""CLI entry point for turn-stream."""

import asyncio
import uuid
from pathlib import Path

import typer

APP_HELP = """
Rebuild streamed assistant turns from a chat backend's event stream.

\b
The backend answers each message with "data:" frames separated by blank
lines, ending with "data: [DONE]".
"""

REPLAY_HELP = """
Rebuild a turn from a captured event stream and print it as JSON.

\b
Capture a stream with curl, then replay it offline:
  curl -N -X POST http://localhost:3001/api/agent_v2/chat/stream \\
    -H 'Content-Type: application/json' -d @request.json > turn.sse
  turn-stream replay turn.sse

\b
Examples:
  # Final assistant text
  turn-stream replay turn.sse | jq -r '.messages[-1].content'

  # Tool calls with their final results
  turn-stream replay turn.sse | jq '.messages[-1].metadata.tool_calls[] | {name, final_result, error}'

  # Feed the stream in tiny chunks to exercise frame reassembly
  turn-stream replay turn.sse --chunk-size 7 --compact
"""

SEND_HELP = """
Send one message to a live backend and print the reconstructed reply.

\b
Configuration is read from the environment:
  TURN_STREAM_BASE_URL   backend API root (default http://localhost:3001/api)
  TURN_STREAM_USER_ID    user id sent with each turn
  TURN_STREAM_TIMEOUT    request timeout in seconds (default 300)

\b
Examples:
  turn-stream send "Summarize the repo" --model gpt-4o --api-key $OPENAI_API_KEY
  turn-stream send "Plan my week" --agent agent_123 --json
  turn-stream send "What is in this picture?" --model gpt-4o --images --attach shot.png
"""

REPLAY_SESSION = "replay"

app = typer.Typer(add_completion=False, help=APP_HELP)


@app.command(help=REPLAY_HELP)
def replay(
    capture: Path = typer.Argument(..., help="Path to a captured event stream"),
    output: Path | None = typer.Option(None, "-o", "--output", help="Output JSON file path"),
    compact: bool = typer.Option(False, "--compact", help="No indentation (for piping)"),
    chunk_size: int = typer.Option(1024, "--chunk-size", min=1, help="Bytes per simulated read"),
) -> None:
    from .controller import TurnController
    from .errors import TurnError
    from .models import AiModelConfig, ChatState
    from .renderer import render_json
    from .transport import FileTransport

    if not capture.exists():
        typer.echo(f"Error: File not found: {capture}", err=True)
        raise typer.Exit(1)

    state = ChatState(
        current_session_id=REPLAY_SESSION,
        ai_model_configs=[AiModelConfig(id="replay", name="replay", model_name="replay")],
        selected_model_id="replay",
    )
    controller = TurnController(state, FileTransport(capture, chunk_size=chunk_size))
    try:
        asyncio.run(controller.send_message(capture.stem))
    except TurnError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    json_str = render_json(state, REPLAY_SESSION, compact=compact)
    if output is None:
        typer.echo(json_str)
    else:
        output.write_text(json_str)
        typer.echo(f"Written to {output}", err=True)


@app.command(help=SEND_HELP)
def send(
    message: str = typer.Argument(..., help="Message text"),
    model: str | None = typer.Option(None, "--model", help="Model name to chat with"),
    agent: str | None = typer.Option(None, "--agent", help="Agent id to chat with"),
    provider: str = typer.Option("openai", "--provider", help="Model provider"),
    api_key: str | None = typer.Option(None, "--api-key", envvar="TURN_STREAM_API_KEY", help="Model API key"),
    base_url: str | None = typer.Option(None, "--base-url", help="Backend API root (overrides environment)"),
    session: str | None = typer.Option(None, "--session", help="Session id (default: new session)"),
    attach: list[Path] | None = typer.Option(None, "--attach", help="File to attach (repeatable)"),
    images: bool = typer.Option(False, "--images", help="Model accepts image attachments"),
    reasoning: bool = typer.Option(False, "--reasoning", help="Request model reasoning"),
    as_json: bool = typer.Option(False, "--json", help="Print the whole turn as JSON"),
) -> None:
    import httpx

    from .config import load_config
    from .controller import TurnController
    from .errors import TurnError
    from .models import AgentConfig, AiModelConfig, ChatConfig, ChatState
    from .renderer import render_json
    from .transport import HttpTransport, attachment_from_path

    if (model is None) == (agent is None):
        typer.echo("Error: Pass exactly one of --model or --agent", err=True)
        raise typer.Exit(1)

    attachments = []
    for path in attach or []:
        if not path.exists():
            typer.echo(f"Error: File not found: {path}", err=True)
            raise typer.Exit(1)
        attachments.append(attachment_from_path(path))

    config = load_config()
    if base_url:
        config.base_url = base_url.rstrip("/")

    session_id = session or f"session_{uuid.uuid4().hex}"
    state = ChatState(current_session_id=session_id, chat_config=ChatConfig(reasoning_enabled=reasoning))
    if agent is not None:
        state.agents = [AgentConfig(id=agent, name=agent)]
        state.selected_agent_id = agent
    else:
        state.ai_model_configs = [
            AiModelConfig(
                id=model,
                name=model,
                provider=provider,
                model_name=model,
                api_key=api_key,
                supports_images=images,
                supports_reasoning=reasoning,
            )
        ]
        state.selected_model_id = model

    async def run() -> None:
        transport = HttpTransport(config)
        try:
            await TurnController(state, transport, user_id=config.user_id).send_message(message, attachments)
        finally:
            await transport.aclose()

    try:
        asyncio.run(run())
    except (TurnError, httpx.HTTPError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if as_json:
        typer.echo(render_json(state, session_id))
    else:
        typer.echo(state.messages[-1].content if state.messages else "")


if __name__ == "__main__":
    app()
