"""Courier CLI: run the server, drive ACP turns, and inspect recorded streams."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="courier",
    help="Courier: chat front-end for ACP coding agents",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"

_KIND_STYLES = {"tool": "dim cyan", "block": "white", "final": "bold green"}


def _get_client(base_url: str, api_key: str | None) -> httpx.Client:
    headers = {}
    if api_key:
        headers["X-API-Key"] = api_key
    return httpx.Client(base_url=base_url, headers=headers, timeout=660.0)


def _request(client: httpx.Client, method: str, path: str, base_url: str, **kwargs) -> dict:
    try:
        resp = client.request(method, path, **kwargs)
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Courier is not running at {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]Error {e.response.status_code}:[/red] {e.response.text}")
        raise typer.Exit(1)
    return resp.json()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the Courier server (for development)."""
    import uvicorn

    console.print(Panel("Starting Courier server...", border_style="blue"))
    uvicorn.run(
        "courier.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="COURIER_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="COURIER_API_KEY"),
) -> None:
    """Check Courier's status."""
    client = _get_client(base_url, api_key or None)
    data = _request(client, "GET", "/health", base_url)

    table = Table(title="Courier Status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    color = "green" if data["status"] == "ok" else "yellow"
    table.add_row("Status", f"[{color}]{data['status']}[/{color}]")
    table.add_row("Version", data.get("version", "?"))
    table.add_row("Uptime", f"{data.get('uptime_seconds', '?')}s")

    acp = data.get("acp") or {}
    table.add_row("ACP", "enabled" if acp.get("enabled") and acp.get("dispatch_enabled") else "disabled")
    table.add_row("Backend", f"{acp.get('backend', '?')} ({'up' if acp.get('backend_healthy') else 'down'})")
    table.add_row("Default agent", str(acp.get("default_agent", "?")))
    table.add_row("Sessions", str(acp.get("active_sessions", 0)))

    for channel in data.get("channels", []):
        state = "running" if channel.get("running") else ("idle" if channel.get("enabled") else "disabled")
        table.add_row(f"Channel {channel['channel']}", state)

    console.print()
    console.print(table)
    console.print()


@app.command()
def turn(
    prompt: str = typer.Argument(..., help="Prompt to send to the ACP agent"),
    session_key: str = typer.Option("", "--session", "-s", help="Reuse an ACP session key"),
    agent: str = typer.Option("", "--agent", "-a", help="Agent for a new session"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="COURIER_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="COURIER_API_KEY"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON response"),
) -> None:
    """Run one ACP turn through the server and print its reply."""
    client = _get_client(base_url, api_key or None)
    payload: dict = {"prompt": prompt}
    if session_key:
        payload["session_key"] = session_key
    if agent:
        payload["agent"] = agent

    data = _request(client, "POST", "/v1/acp/turns", base_url, json=payload)
    if raw:
        console.print_json(json.dumps(data, indent=2))
        return

    console.print()
    console.print(Markdown(data.get("text") or "(no reply)"))
    console.print()

    meta_parts = [f"session: {data['session_key']}"]
    if data.get("stop_reason"):
        meta_parts.append(f"stop: {data['stop_reason']}")
    if data.get("error_code"):
        meta_parts.append(f"[red]error: {data['error_code']}[/red]")
    counts = data.get("counts") or {}
    meta_parts.append(f"tool/block/final: {counts.get('tool', 0)}/{counts.get('block', 0)}/{counts.get('final', 0)}")
    console.print(f"[dim]{'  │  '.join(meta_parts)}[/dim]")


@app.command()
def sessions(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="COURIER_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="COURIER_API_KEY"),
) -> None:
    """List bound ACP sessions."""
    client = _get_client(base_url, api_key or None)
    data = _request(client, "GET", "/v1/acp/sessions", base_url)

    items = data.get("sessions", [])
    if not items:
        console.print("[dim]No ACP sessions.[/dim]")
        return

    table = Table(title="ACP Sessions", border_style="blue")
    table.add_column("Session key", style="cyan")
    table.add_column("Agent")
    table.add_column("State")
    table.add_column("Last error", style="red")
    for item in items:
        table.add_row(item["session_key"], item["agent"], item["state"], item.get("last_error") or "")
    console.print(table)


@app.command()
def replay(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Recorded JSONL protocol stream"),
    dispatch: bool = typer.Option(False, "--dispatch", "-d", help="Run the stream through the reply pipeline"),
    agent: str = typer.Option("", "--agent", "-a", help="Agent name for the replay session"),
) -> None:
    """Project a recorded ACP stream into normalized events."""
    if dispatch:
        asyncio.run(_replay_dispatch(file, agent or None))
        return

    from courier.acp.projector import parse_prompt_event_line

    table = Table(title=f"Events in {file.name}", border_style="blue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Type", style="bold")
    table.add_column("Tag", style="cyan")
    table.add_column("Text")

    count = 0
    for line in file.read_text(encoding="utf-8").splitlines():
        event = parse_prompt_event_line(line)
        if event is None:
            continue
        count += 1
        data = event.to_dict()
        text = data.get("text") or data.get("message") or data.get("stopReason") or ""
        table.add_row(str(count), event.type, str(data.get("tag") or ""), str(text)[:120])

    console.print(table)
    console.print(f"[dim]{count} events[/dim]")


async def _replay_dispatch(file: Path, agent: str | None) -> None:
    from courier.acp.runtime import JsonlReplayRuntime
    from courier.acp.session import AcpSessionManager
    from courier.config import CourierConfig
    from courier.reply.delivery import DispatchContext
    from courier.reply.dispatch_acp import try_dispatch_acp_reply
    from courier.reply.dispatcher import QueuedReplyDispatcher
    from courier.reply.payload import ReplyDispatchKind, ReplyPayload

    config = CourierConfig.load()
    session_manager = AcpSessionManager(config.acp, JsonlReplayRuntime.from_path(file))
    session_key = "cli:replay"
    session_manager.ensure_session(session_key, agent=agent)

    async def send(kind: ReplyDispatchKind, payload: ReplyPayload) -> None:
        style = _KIND_STYLES.get(kind, "white")
        body = payload.text or payload.media_url or ""
        console.print(f"[{style}][{kind}][/{style}] {body}")

    dispatcher = QueuedReplyDispatcher(send, name="cli-replay")
    try:
        result = await try_dispatch_acp_reply(
            ctx=DispatchContext(session_key=session_key, channel="cli", prompt=f"replay {file.name}"),
            cfg=config,
            dispatcher=dispatcher,
            session_manager=session_manager,
        )
    finally:
        await dispatcher.close()

    if result is None:
        console.print("[yellow]Turn was not dispatched.[/yellow]")
        return
    console.print(
        f"[dim]counts={result.counts}  stop={result.stop_reason or '-'}  error={result.error_code or '-'}[/dim]"
    )


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
