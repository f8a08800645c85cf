"""
Toolchat Main CLI Application.

Module: orchestrator/cli.py
"""

import json
import logging
import sys
from typing import Any, Dict, Optional

import anyio
import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

# Load environment variables from .env file in the working directory
load_dotenv(override=False)

from adapters.llm.base import ConfigurationError, ConversationTurn
from code_exec.service.registry import ToolRegistry

from .service.config import OrchestratorConfig
from .service.turn_orchestrator import TurnOrchestrator

console = Console()

CHAT_COMMANDS = {
    "/tools": "List the tool catalog",
    "/reset": "Clear the conversation",
    "/exit": "Leave the chat",
}


def _load_settings(ctx: click.Context) -> OrchestratorConfig:
    overrides: Dict[str, Any] = {
        key: value for key, value in ctx.obj.get("overrides", {}).items() if value is not None
    }
    return OrchestratorConfig().model_copy(update=overrides)


# ============================================================================
# Rendering
# ============================================================================


def render_tools(registry: ToolRegistry) -> None:
    table = Table(title="Tool Catalog", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Enabled")
    table.add_column("Schema")
    table.add_column("Description")

    for tool in registry.list_tools():
        try:
            # Schema check only, a disabled copy skips the name check
            registry.validate_tool(tool.model_copy(update={"enabled": False}))
            schema = "[green]ok[/green]"
        except ConfigurationError:
            schema = "[red]invalid[/red]"
        enabled = "[green]yes[/green]" if tool.enabled else "[dim]no[/dim]"
        table.add_row(tool.name, enabled, schema, tool.description)

    console.print(table)


def render_turn(turn: ConversationTurn) -> None:
    """Print one model turn: its calls, their results, then its text."""
    if turn.is_error:
        console.print(f"[bold red]{turn.content}[/bold red]")
        return

    for position, call in enumerate(turn.tool_calls):
        console.print(
            Panel(
                json.dumps(call.args, indent=2),
                title=f"[bold yellow]Tool call: {call.name}[/bold yellow]",
                border_style="yellow",
            )
        )
        if position < len(turn.tool_results):
            result = turn.tool_results[position]
            console.print(
                Panel(
                    json.dumps(result.result, indent=2, default=str),
                    title=f"Result: {result.name}",
                    border_style="red" if result.is_error else "green",
                )
            )

    if turn.content:
        console.print(Markdown(turn.content))


async def _chat_loop(orchestrator: TurnOrchestrator) -> None:
    while True:
        try:
            text = await anyio.to_thread.run_sync(console.input, "[bold cyan]You[/bold cyan] > ")
        except (EOFError, KeyboardInterrupt):
            console.print()
            break

        text = text.strip()
        if not text:
            continue
        if text in ("/exit", "/quit"):
            break
        if text == "/reset":
            orchestrator.reset()
            console.print("[dim]Conversation cleared[/dim]")
            continue
        if text == "/tools":
            render_tools(orchestrator.registry)
            continue

        before = len(orchestrator.log)
        try:
            with console.status("[dim]Thinking...[/dim]"):
                await orchestrator.handle_user_message(text)
        except ConfigurationError as e:
            console.print(f"[bold red]Configuration error:[/bold red] {e}")
            continue

        # Skip the user turn just typed
        for turn in orchestrator.log.snapshot()[before + 1 :]:
            render_turn(turn)

    await orchestrator.gateway.aclose()


# ============================================================================
# Commands
# ============================================================================


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option(
    "--tools-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML tool catalog to load instead of the built-in tools",
)
@click.option(
    "--provider",
    type=click.Choice(["gemini", "mock"], case_sensitive=False),
    default=None,
    help="Model provider (default from LLM_PROVIDER)",
)
@click.option("--max-tool-rounds", type=click.IntRange(min=1), default=None)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging level for the terminal session",
)
@click.pass_context
def cli(
    ctx: click.Context,
    version: bool,
    tools_file: Optional[str],
    provider: Optional[str],
    max_tool_rounds: Optional[int],
    log_level: str,
) -> None:
    """
    Toolchat v1.0 - chat with a model that can call your tools.

    Tools are small Python function bodies; the model decides when to call
    them and sees their results before answering.
    """
    if version:
        console.print("[bold green]Toolchat v1.0.0[/bold green]")
        sys.exit(0)

    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "tools_file": tools_file,
        "llm_provider": provider.lower() if provider else None,
        "max_tool_rounds": max_tool_rounds,
    }
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=_load_settings(ctx).log_format,
    )

    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@cli.command()
@click.pass_context
def chat(ctx: click.Context) -> None:
    """Start an interactive chat session."""
    settings = _load_settings(ctx)
    orchestrator = TurnOrchestrator.from_config(settings)

    commands = ", ".join(CHAT_COMMANDS)
    console.print(
        Panel(
            f"Provider: [bold]{orchestrator.gateway.provider}[/bold]  "
            f"Model: [bold]{orchestrator.gateway.model}[/bold]\n"
            f"Commands: {commands}",
            title="[bold green]Toolchat[/bold green]",
            border_style="green",
        )
    )
    anyio.run(_chat_loop, orchestrator)


@cli.command()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """List the tool catalog."""
    render_tools(ToolRegistry.from_catalog(_load_settings(ctx).tools_file))


@cli.command()
@click.option("--host", default=None, help="Host to bind (default from HOST)")
@click.option("--port", type=int, default=None, help="Port to bind (default from PORT)")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .service.main import create_app

    settings = _load_settings(ctx)
    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    """Main entry point for toolchat."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
