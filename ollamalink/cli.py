"""
ollamalink — command-line front end for an Ollama server.

Usage:
    ollamalink models                          # list local models
    ollamalink ps                              # models loaded in memory
    ollamalink pull llama3.2                   # pull a model
    ollamalink generate -m llama3.2 "Why is the sky blue?"
    ollamalink chat -m llama3.2                # interactive chat
    echo "summarise this" | ollamalink generate -m llama3.2
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

from rich import print as rprint
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from ollamalink.client import OllamaClient
from ollamalink.errors import OllamaError
from ollamalink.logger import get_logger, setup_logging
from ollamalink.models import Chunk

log = get_logger("cli")

# ── Constants ──────────────────────────────────────────────────────────────────

DEFAULT_MODEL = "llama3.2"
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
CONFIG_PATH = Path.home() / ".config" / "ollamalink" / "config.json"

HELP_TEXT = """
[bold cyan]ollamalink chat — Commands[/bold cyan]

  [bold]/help[/bold]            Show this help
  [bold]/clear[/bold]           Clear conversation history
  [bold]/history[/bold]         Show conversation history
  [bold]/save[/bold] [dim]<file>[/dim]     Save conversation to JSON file
  [bold]/exit[/bold]            Exit (also: Ctrl+C, Ctrl+D)
"""

console = Console()


# ── Config persistence ─────────────────────────────────────────────────────────

def load_config(path: Path = CONFIG_PATH) -> dict:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Ignoring unreadable config %s: %s", path, e)
        return {}


def save_config(cfg: dict, path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2))


# ── UI helpers ─────────────────────────────────────────────────────────────────

def print_assistant(text: str) -> None:
    console.print()
    console.print(Markdown(text))
    console.print()


def stream_chunk(chunk: Chunk) -> None:
    console.print(chunk.text, end="", markup=False)


def _size(num: int) -> str:
    if num < 1_048_576:
        return f"{num / 1024:.1f} KB"
    if num < 1_073_741_824:
        return f"{num / 1_048_576:.1f} MB"
    return f"{num / 1_073_741_824:.1f} GB"


# ── Commands ───────────────────────────────────────────────────────────────────

def cmd_models(client: OllamaClient, args, cfg: dict) -> None:
    table = Table(box=None)
    table.add_column("NAME", style="cyan")
    table.add_column("SIZE", justify="right")
    table.add_column("MODIFIED", style="dim")
    default = cfg.get("default_model", DEFAULT_MODEL)
    for m in client.list_models():
        name = m.get("name", "")
        marker = "[green]●[/green] " if name == default else "  "
        table.add_row(marker + name, _size(m.get("size", 0)), m.get("modified_at", ""))
    console.print(table)


def cmd_ps(client: OllamaClient, args, cfg: dict) -> None:
    models = client.ps().get("models", [])
    if not models:
        console.print("[dim]No models loaded.[/dim]")
        return
    for m in models:
        console.print(f"  [cyan]{m.get('name', '')}[/cyan]  {_size(m.get('size', 0))}  "
                      f"[dim]until {m.get('expires_at', '?')}[/dim]")


def cmd_show(client: OllamaClient, args, cfg: dict) -> None:
    details = client.get_model_details(args.name)
    rprint(details if args.json else details.get("modelfile", details))


def cmd_pull(client: OllamaClient, args, cfg: dict) -> None:
    client.verbose = True
    with console.status(f"Pulling [cyan]{args.name}[/cyan]..."):
        client.pull_model(args.name)
    console.print(f"Pulled [cyan]{args.name}[/cyan]")


def cmd_rm(client: OllamaClient, args, cfg: dict) -> None:
    client.delete_model(args.name)
    console.print(f"Deleted [cyan]{args.name}[/cyan]")


def cmd_embed(client: OllamaClient, args, cfg: dict) -> None:
    model = args.model or cfg.get("default_model", DEFAULT_MODEL)
    result = client.embed(model, args.text)
    console.print_json(json.dumps(result.get("embeddings", [])))


def cmd_generate(client: OllamaClient, args, cfg: dict) -> None:
    model = args.model or cfg.get("default_model", DEFAULT_MODEL)
    prompt = args.prompt or ""
    if not sys.stdin.isatty():
        stdin_text = sys.stdin.read().strip()
        if stdin_text:
            prompt = f"{prompt}\n\n{stdin_text}" if prompt else stdin_text
    if not prompt:
        console.print("[red]Nothing to generate: give a prompt or pipe stdin.[/red]")
        sys.exit(2)

    log.info("generate model=%s stream=%s", model, not args.no_stream)
    if args.no_stream:
        result = client.generate(model, prompt, system=args.system)
        print_assistant(result.response)
    else:
        result = client.generate(model, prompt, system=args.system, on_chunk=stream_chunk)
        console.print()
    log.info("generate done in %d ms", result.response_time)


def cmd_chat(client: OllamaClient, args, cfg: dict) -> None:
    """Interactive chat loop."""
    model = args.model or cfg.get("default_model", DEFAULT_MODEL)
    system = [{"role": "system", "content": args.system}] if args.system else []
    history: list[dict] = list(system)

    console.print(
        Panel(
            f"[bold]Model:[/bold] [cyan]{model}[/cyan]\n"
            f"[dim]Type [bold]/help[/bold] for commands, [bold]/exit[/bold] to quit[/dim]",
            title="[bold magenta]ollamalink[/bold magenta]",
            border_style="magenta",
        )
    )

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (KeyboardInterrupt, EOFError):
            console.print("\n[dim]Goodbye.[/dim]")
            break

        if not user_input:
            continue

        # ── Built-in commands ────────────────────────────────────────────
        if user_input.startswith("/"):
            parts = user_input.split(maxsplit=1)
            cmd = parts[0].lower()
            arg = parts[1] if len(parts) > 1 else ""

            if cmd == "/exit":
                console.print("[dim]Goodbye.[/dim]")
                break
            elif cmd == "/help":
                rprint(HELP_TEXT)
            elif cmd == "/clear":
                history = list(system)
                console.print("[dim]Conversation cleared.[/dim]")
            elif cmd == "/history":
                for i, msg in enumerate(history):
                    content = str(msg.get("content", ""))[:200]
                    console.print(f"[dim]{i}[/dim] [bold]{msg['role'].upper()}[/bold]: {content}")
            elif cmd == "/save":
                path = arg or "conversation.json"
                Path(path).write_text(json.dumps(history, indent=2))
                console.print(f"Saved to [cyan]{path}[/cyan]")
            else:
                console.print(f"[red]Unknown command:[/red] {cmd}. Type /help.")
            continue

        # ── Send turn ────────────────────────────────────────────────────
        messages = history + [{"role": "user", "content": user_input}]
        console.print("[bold blue]Assistant[/bold blue] ", end="")
        try:
            result = client.chat(model, messages, on_chunk=stream_chunk)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted.[/yellow]")
            continue
        except OllamaError as e:
            console.print(f"\n[red]Error:[/red] {e}")
            log.warning("chat turn failed: %s", e)
            continue
        console.print()
        history = result.chat_history

    cfg["default_model"] = model
    save_config(cfg)


COMMANDS = {
    "models": cmd_models,
    "ps": cmd_ps,
    "show": cmd_show,
    "pull": cmd_pull,
    "rm": cmd_rm,
    "embed": cmd_embed,
    "generate": cmd_generate,
    "chat": cmd_chat,
}


# ── Entry point ────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ollamalink",
        description="ollamalink — talk to an Ollama server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""
            Environment:
              OLLAMA_URL                      server URL
              OLLAMA_USERNAME, OLLAMA_PASSWORD  basic auth for a proxied server
        """),
    )
    parser.add_argument("--url", default=OLLAMA_URL, help=f"Ollama base URL (default: {OLLAMA_URL})")
    parser.add_argument("--timeout", type=float, default=120.0, help="Request timeout in seconds (default 120)")
    parser.add_argument(
        "--log-file", default=None, metavar="PATH",
        help="Write logs to this file (default: auto-generated under ~/.local/share/ollamalink/logs/)"
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity (default: INFO)"
    )
    parser.add_argument("--log-console", action="store_true", help="Also print log output to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("models", help="List local models")
    sub.add_parser("ps", help="List models loaded in memory")

    p = sub.add_parser("show", help="Show model details")
    p.add_argument("name")
    p.add_argument("--json", action="store_true", help="Print the full response")

    p = sub.add_parser("pull", help="Pull a model")
    p.add_argument("name")

    p = sub.add_parser("rm", help="Delete a model")
    p.add_argument("name")

    p = sub.add_parser("embed", help="Embed one or more texts")
    p.add_argument("text", nargs="+")
    p.add_argument("-m", "--model", default=None)

    p = sub.add_parser("generate", help="One-shot completion")
    p.add_argument("prompt", nargs="?")
    p.add_argument("-m", "--model", default=None)
    p.add_argument("-s", "--system", default=None, help="System prompt")
    p.add_argument("--no-stream", action="store_true", help="Wait for the whole answer")

    p = sub.add_parser("chat", help="Interactive chat")
    p.add_argument("-m", "--model", default=None)
    p.add_argument("-s", "--system", default=None, help="System prompt")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    setup_logging(log_file=args.log_file, level=args.log_level, console=args.log_console)

    cfg = load_config()
    username = os.getenv("OLLAMA_USERNAME")
    password = os.getenv("OLLAMA_PASSWORD")
    auth = (username, password or "") if username else None

    log.info("Session start — command=%s  url=%s", args.command, args.url)
    with OllamaClient(args.url, request_timeout=args.timeout, basic_auth=auth) as client:
        try:
            COMMANDS[args.command](client, args, cfg)
        except OllamaError as e:
            console.print(f"[red]Error:[/red] {e}")
            log.error("%s failed: %s", args.command, e)
            sys.exit(1)


if __name__ == "__main__":
    main()
