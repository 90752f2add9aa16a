"""
Command-line client for the Conduit service.
"""
import json
import os
from typing import Any, Dict, List, Optional

import requests
import typer
from prompt_toolkit import prompt as ptk_prompt
from prompt_toolkit.formatted_text import FormattedText
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

API_BASE_URL = os.environ.get("CONDUIT_API_URL", "http://127.0.0.1:8080/api/v1")

console = Console()
app = typer.Typer(
    name="conduit",
    help="Chat with a model that can call tools on MCP servers.",
    add_completion=False,
)


# --- API helpers ---

def _api(method: str, path: str, **kwargs: Any) -> requests.Response:
    try:
        response = requests.request(method, f"{API_BASE_URL}{path}", timeout=kwargs.pop("timeout", 30), **kwargs)
    except requests.RequestException as e:
        console.print(f"[bold red]Error:[/bold red] Could not connect to the service at {API_BASE_URL}.")
        console.print("Please ensure the Conduit service is running: [bold]python -m conduit_service.app[/bold]")
        console.print(f"Details: {e}")
        raise typer.Exit(1)
    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        console.print(f"[bold red]Error {response.status_code}:[/bold red] {detail}")
        raise typer.Exit(1)
    return response


def _status_style(state: str) -> str:
    return {"connected": "green", "connecting": "yellow", "error": "red"}.get(state, "dim")


# --- tool servers ---

@app.command("servers")
def list_servers():
    """List configured tool servers with their connection status."""
    servers = _api("GET", "/servers").json()
    status = {row["id"]: row for row in _api("GET", "/servers/status").json()}

    table = Table(title="Tool Servers", border_style="blue")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold cyan")
    table.add_column("Endpoint")
    table.add_column("Transport")
    table.add_column("Enabled")
    table.add_column("Status")
    for s in servers:
        st = status.get(s["id"], {})
        state = st.get("state", "unknown")
        label = state
        if state == "connected" and st.get("server_name"):
            label = f"{state} ({st['server_name']} {st.get('server_version') or ''})".strip()
        elif state == "error" and st.get("message"):
            label = f"{state}: {st['message']}"
        table.add_row(
            s["id"][:8],
            s["name"],
            s["endpoint"],
            s["transport"],
            "yes" if s["enabled"] else "no",
            Text(label, style=_status_style(state)),
        )
    console.print(table)


@app.command("add-server")
def add_server(
    endpoint: str = typer.Argument(..., help="Server URL, e.g. http://127.0.0.1:9000/mcp"),
    name: str = typer.Option("New MCP Server", "--name", "-n"),
    transport: str = typer.Option("http_streamable", "--transport", "-t", help="http_streamable or sse"),
    api_key: str = typer.Option("", "--api-key", help="Sent as a Bearer token."),
    header: Optional[List[str]] = typer.Option(None, "--header", "-H", help="Extra header as Key:Value."),
    disabled: bool = typer.Option(False, "--disabled"),
):
    """Add a tool server."""
    headers: Dict[str, str] = {}
    for h in header or []:
        key, sep, value = h.partition(":")
        if not sep:
            console.print(f"[bold red]Error:[/bold red] header {h!r} must look like Key:Value")
            raise typer.Exit(1)
        headers[key.strip()] = value.strip()

    body = {
        "name": name,
        "endpoint": endpoint,
        "transport": transport,
        "api_key": api_key,
        "custom_headers": headers,
        "enabled": not disabled,
    }
    saved = _api("POST", "/servers", json=body).json()
    console.print(f"✅ Added [bold cyan]{saved['name']}[/bold cyan] ([yellow]{saved['id']}[/yellow])")


def _resolve_server_id(prefix: str) -> str:
    matches = [s for s in _api("GET", "/servers").json() if s["id"].startswith(prefix) or s["name"] == prefix]
    if not matches:
        console.print(f"[bold red]Error:[/bold red] no server matches {prefix!r}")
        raise typer.Exit(1)
    if len(matches) > 1:
        console.print(f"[bold red]Error:[/bold red] {prefix!r} matches {len(matches)} servers, use a longer id")
        raise typer.Exit(1)
    return matches[0]["id"]


@app.command("remove-server")
def remove_server(server: str = typer.Argument(..., help="Server id (or unique prefix) or name.")):
    """Remove a tool server."""
    server_id = _resolve_server_id(server)
    _api("DELETE", f"/servers/{server_id}")
    console.print("✅ Server removed.")


@app.command("test-server")
def test_server(server: str = typer.Argument(..., help="Server id (or unique prefix) or name.")):
    """Run the handshake against one server."""
    server_id = _resolve_server_id(server)
    with console.status("Connecting..."):
        result = _api("POST", f"/servers/{server_id}/test", timeout=120).json()
    if result.get("ok"):
        console.print(
            f"✅ Connected to [bold green]{result.get('server_name') or 'unknown'}[/bold green] "
            f"{result.get('server_version') or ''}"
        )
    else:
        console.print(f"[bold red]Connection failed:[/bold red] {result.get('error')}")
        raise typer.Exit(1)


# --- tools ---

@app.command("tools")
def list_tools(refresh: bool = typer.Option(False, "--refresh", "-r", help="Reconnect to every server first.")):
    """List the tools every enabled server offers."""
    if refresh:
        with console.status("Refreshing tools..."):
            summary = _api("POST", "/tools/refresh", timeout=180).json()
        if summary.get("error"):
            console.print(f"[yellow]Warning:[/yellow] {summary['error']}")
    tools = _api("GET", "/tools").json()
    if not tools:
        console.print("[dim]No tools available.[/dim]")
        return
    table = Table(title="Tools", border_style="blue")
    table.add_column("Name", style="bold cyan")
    table.add_column("Description")
    for t in tools:
        table.add_row(t["qualified_name"], t.get("description") or "")
    console.print(table)


@app.command("call")
def call_tool(
    name: str = typer.Argument(..., help='Tool name, optionally "Server.tool".'),
    arguments: str = typer.Argument("{}", help="JSON object of arguments."),
):
    """Call one tool directly."""
    try:
        args = json.loads(arguments)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]Error:[/bold red] arguments are not valid JSON: {e}")
        raise typer.Exit(1)
    if not isinstance(args, dict):
        console.print("[bold red]Error:[/bold red] arguments must be a JSON object")
        raise typer.Exit(1)
    with console.status(f"Calling {name}..."):
        result = _api("POST", "/tools/call", json={"name": name, "arguments": args}, timeout=120).json()
    console.print(Panel(result.get("result", ""), title=f"Tool Output ({name})", border_style="yellow"))


# --- chat ---

def display_history(messages: list):
    if not messages:
        return
    console.print(Panel("Chat History", style="bold blue", expand=False))
    for msg in messages:
        if msg.get("role") == "user":
            console.print(Panel(Text(msg.get("content", ""), style="cyan"), title="You", title_align="left", border_style="cyan"))
        else:
            console.print(Panel(Text(msg.get("content", ""), style="green"), title="Assistant", title_align="left", border_style="green"))
    console.print()


def _render_event(event: Dict[str, Any], debug: bool) -> None:
    evt_type = event.get("type")
    data = event.get("data", {})
    if debug:
        console.print(f"[dim]Received event: {event}[/dim]")

    if evt_type == "assistant_round":
        calls = data.get("tool_calls") or []
        content = data.get("content", "")
        if calls:
            names = ", ".join(c.get("name", "?") for c in calls)
            console.print(Panel(f"Calling tool(s): [bold yellow]{names}[/bold yellow]", expand=False, border_style="yellow"))
        elif content:
            console.print("\n[bold green]Assistant:[/bold green]")
            console.print(content, style="green")
    elif evt_type == "tool_result":
        result = str(data.get("result", ""))
        style = "red" if result.startswith(("Error:", "Tool error:")) else "dim yellow"
        preview = result if len(result) <= 300 else result[:300] + "..."
        console.print(Panel(preview, title=f"Tool Output ({data.get('tool_name')})", expand=False, border_style=style))
    elif evt_type == "error":
        console.print(Panel(f"Error: {data.get('message')}", title="Error", border_style="bold red"))
    elif evt_type == "done" and debug:
        console.print("[dim][Turn complete][/dim]")


def _pick_session() -> Optional[str]:
    sessions = _api("GET", "/sessions").json()
    if not sessions:
        return None
    table = Table(title="Sessions", border_style="blue", show_header=False)
    table.add_column("Key", style="bold cyan")
    table.add_column("Session")
    table.add_row("c", "Create a new chat")
    for i, s in enumerate(sessions):
        table.add_row(str(i + 1), f"Resume session from {s['created_at']} ([yellow]{s['session_id'][:8]}...[/yellow])")
    console.print(table)
    choices = ["c"] + [str(i + 1) for i in range(len(sessions))]
    choice = Prompt.ask("Choose", choices=choices, default="c")
    if choice == "c":
        return None
    return sessions[int(choice) - 1]["session_id"]


@app.command("chat")
def chat(
    model_name: Optional[str] = typer.Option(None, "--model", "-m", help="Override the configured model."),
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Resume this session."),
    debug: bool = typer.Option(False, "--debug", help="Show every raw event."),
):
    """Interactive chat; the model may call tools between replies."""
    console.print(Panel.fit("[bold blue]Conduit chat[/bold blue]\nType \\exit or \\quit to end.", style="bold blue"))

    if session_id is None:
        session_id = _pick_session()
    if session_id is None:
        session_id = _api("POST", "/sessions").json()["session_id"]
        console.print(f"✅ New session created: [yellow]{session_id}[/yellow]")
    else:
        console.print(f"✅ Resuming session: [yellow]{session_id}[/yellow]")
        display_history(_api("GET", f"/sessions/{session_id}/messages").json())

    while True:
        try:
            user_prompt = ptk_prompt(FormattedText([("bold cyan", "You "), ("", "(Alt+Enter to send)\n")]), multiline=True)
        except (EOFError, KeyboardInterrupt):
            console.print("👋 Goodbye!")
            break
        if user_prompt.strip().lower() in ("\\exit", "\\quit"):
            console.print("👋 Goodbye!")
            break
        if not user_prompt.strip():
            continue

        try:
            with requests.post(
                f"{API_BASE_URL}/chat/stream",
                json={"session_id": session_id, "prompt": user_prompt, "model_name": model_name},
                stream=True,
                timeout=(10, None),
            ) as response:
                response.raise_for_status()
                with Live(Spinner("dots", text="[dim]Waiting for response...[/dim]"), console=console, transient=True) as live:
                    first = True
                    for line in response.iter_lines():
                        if first:
                            live.stop()
                            first = False
                        if not line:
                            continue
                        try:
                            event = json.loads(line)
                        except json.JSONDecodeError:
                            if debug:
                                console.print(f"[red]Error parsing JSON: {line.decode('utf-8', errors='replace')}[/red]")
                            continue
                        _render_event(event, debug)
        except requests.RequestException as e:
            console.print(f"\n[bold red]Error:[/bold red] Could not get response from server. {e}")
        finally:
            console.rule()


if __name__ == "__main__":
    app()
