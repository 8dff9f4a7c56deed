"""CLI commands for the trip concierge."""

import asyncio
import uuid
from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from cli.config import load_config_model
from cli.logging_config import setup_from_config
from cli.utils import console, get_components
from observability import log_run_summary


@click.group()
@click.version_option(version="0.1.0")
@click.option("-c", "--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool, json_logs: bool):
    """Trip concierge - plan a group trip day by day."""
    overrides = {"logging": {"level": "DEBUG"}} if verbose else None
    try:
        config = load_config_model(config_path, overrides=overrides)
    except ValueError as e:
        console.print(f"[red]Config error:[/] {e}")
        raise SystemExit(1)
    setup_from_config(config.logging, json_mode=json_logs or None)
    ctx.obj = {"config": config}


def _render_turn(result) -> None:
    console.print(Panel(result.response, title=f"concierge [dim]({result.phase.value})[/]", border_style="cyan"))
    interactive = result.interactive
    if interactive and interactive.get("options"):
        table = Table(show_header=True)
        table.add_column("Reply", style="cyan")
        table.add_column("Option")
        table.add_column("Service", style="dim")
        table.add_column("Price", justify="right")
        for option in interactive["options"]:
            price = option.get("priceUsd")
            table.add_row(
                option["token"],
                option["title"],
                option.get("serviceName") or "",
                f"${price:,.0f}" if price is not None else "",
            )
        console.print(table)
    if result.assumptions:
        console.print("[dim]Assuming: " + "; ".join(result.assumptions) + "[/]")


@cli.command()
@click.option("--conversation-id", default=None, help="Resume a stored conversation")
@click.pass_context
def chat(ctx: click.Context, conversation_id: str | None):
    """Interactive chat session. Type /help for dev commands, Ctrl-D to quit."""
    components = get_components(ctx.obj["config"])
    handler = components["handler"]
    conversation_id = conversation_id or uuid.uuid4().hex[:12]

    async def _repl():
        conversation = handler.store.get_or_create(conversation_id)
        console.print(Panel(conversation.messages[-1].content, title="concierge", border_style="cyan"))
        while True:
            try:
                text = await asyncio.to_thread(console.input, "[bold green]you>[/] ")
            except (EOFError, KeyboardInterrupt):
                console.print()
                return
            if text.strip().lower() in ("exit", "quit"):
                return
            with console.status("Thinking..."):
                result = await handler.handle_message(conversation_id, text)
            _render_turn(result)

    console.print(f"[dim]conversation {conversation_id}[/]")
    asyncio.run(_repl())
    log_run_summary()


@cli.command()
@click.argument("seed", nargs=-1, required=True)
@click.option("--conversation-id", default=None, help="Conversation to seed (new by default)")
@click.pass_context
def seed(ctx: click.Context, seed: tuple[str, ...], conversation_id: str | None):
    """Seed facts and plan day 1 without the model.

    Example: concierge seed Austin 7 2025-09-05..2025-09-07 wild=5
    """
    components = get_components(ctx.obj["config"])
    handler = components["handler"]
    conversation_id = conversation_id or uuid.uuid4().hex[:12]
    args = " ".join(seed)

    result = asyncio.run(handler.handle_message(conversation_id, f"/seed {args}"))
    _render_turn(result)
    console.print(f"[dim]conversation {conversation_id} (storage: {ctx.obj['config'].storage.backend})[/]")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    console.print(f"[green]Serving on[/] http://{host}:{port}")
    uvicorn.run("web.app:app", host=host, port=port)


if __name__ == "__main__":
    cli()
