"""Command-line runner: stream one conversation through the supervisor."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.panel import Panel

from llm_relay import __version__
from llm_relay.config import RelayConfig, load_config
from llm_relay.core.supervisor import RequestSupervisor
from llm_relay.errors import RelayError
from llm_relay.tools import ToolRegistry, register_builtins
from llm_relay.types import (
    ConversationTurn,
    EventType,
    StreamEvent,
    ThinkingBudget,
    ToolCall,
)

console = Console()

_HISTORY_FILE = Path.home() / ".llm_relay_history"


@dataclass
class _TurnOptions:
    provider: str
    model: str
    system_prompt: str
    tools: tuple[str, ...]
    thinking: ThinkingBudget
    temperature: float | None
    web_search: bool
    show_thinking: bool


def _render(event: StreamEvent, opts: _TurnOptions) -> None:
    data = event.data
    if event.type is EventType.PARTIAL_RESPONSE:
        console.print(data["text"], end="", markup=False, highlight=False)
    elif event.type is EventType.THINKING_STARTED:
        console.print("[dim]thinking...[/dim]")
    elif event.type is EventType.THINKING_PARTIAL and opts.show_thinking:
        console.print(data["text"], end="", style="dim", markup=False, highlight=False)
    elif event.type is EventType.THINKING_COMPLETE:
        duration = data.get("duration_seconds")
        if duration is not None:
            console.print(f"\n[dim]thought for {duration:.1f}s ({data['status'].value})[/dim]")
    elif event.type is EventType.ERROR:
        console.print(f"\n[bold red]Error:[/bold red] {data['message']}")


async def _run_tool(
    supervisor: RequestSupervisor, registry: ToolRegistry, event: StreamEvent
) -> None:
    call: ToolCall = event.data["tool_call"]
    console.print(
        f"\n[cyan]> {event.data.get('display_name') or call.tool_id}[/cyan] "
        f"[dim]{json.dumps(call.parameters)}[/dim]"
    )
    result = await registry.execute(call)
    if result.success:
        console.print(f"[dim]{result.output[:500]}[/dim]")
    else:
        console.print(f"[yellow]{result.error}[/yellow]")
    supervisor.provide_tool_result(event.request_id, result)


async def _run_turn(
    supervisor: RequestSupervisor,
    registry: ToolRegistry,
    opts: _TurnOptions,
    history: list[ConversationTurn],
) -> bool:
    """Stream one reply, extending *history* in place.  Returns success."""
    ok = False
    with supervisor.subscribe() as events:
        request_id = supervisor.start(
            chat_id="cli",
            provider=opts.provider,
            model=opts.model,
            history=history,
            system_prompt=opts.system_prompt,
            tools=opts.tools,
            thinking=opts.thinking,
            temperature=opts.temperature,
            web_search=opts.web_search,
        )
        async for event in events:
            if event.request_id != request_id:
                continue
            _render(event, opts)
            if event.type is EventType.TOOL_CALL_REQUEST:
                await _run_tool(supervisor, registry, event)
            elif event.type is EventType.MESSAGES_ADDED:
                history.extend(event.data["turns"])
            elif event.type is EventType.COMPLETE:
                thoughts = (event.data.get("thinking") or {}).get("thoughts")
                history.append(
                    ConversationTurn.assistant(event.data["text"], model=opts.model, thoughts=thoughts)
                )
                console.print()
                ok = True
            elif event.type is EventType.STATUS_CHANGE and event.data["status"].is_terminal:
                break
    return ok


async def _amain(
    config: RelayConfig,
    registry: ToolRegistry,
    opts: _TurnOptions,
    prompt: str | None,
) -> int:
    supervisor = RequestSupervisor(config, registry)
    history: list[ConversationTurn] = []
    try:
        if prompt is not None:
            history.append(ConversationTurn.user(prompt))
            return 0 if await _run_turn(supervisor, registry, opts, history) else 1

        console.print(Panel.fit(
            f"[bold]llm-relay[/bold] v{__version__}  [dim]{opts.provider} / {opts.model}[/dim]\n"
            "[dim]Ctrl-D to exit[/dim]",
            border_style="cyan",
        ))
        session: PromptSession[str] = PromptSession(history=FileHistory(str(_HISTORY_FILE)))
        while True:
            try:
                text = await session.prompt_async("> ")
            except (EOFError, KeyboardInterrupt):
                return 0
            if not text.strip():
                continue
            history.append(ConversationTurn.user(text))
            await _run_turn(supervisor, registry, opts, history)
    finally:
        await supervisor.aclose()


@click.command()
@click.argument("prompt", required=False)
@click.option("--config", "-c", "config_path", default=None,
              help="Path to llm_relay.yaml (auto-detected from CWD or ~/.config/llm-relay/)")
@click.option("--provider", "-p", default=None, help="Provider name from the config")
@click.option("--model", "-m", required=True, help="Model identifier")
@click.option("--system", "-s", "system_prompt", default="", help="System prompt")
@click.option("--effort", default=None, help="Reasoning effort (none, low, medium, high)")
@click.option("--thinking-tokens", type=int, default=None, help="Reasoning token budget")
@click.option("--temperature", type=float, default=None)
@click.option("--tool", "tools", multiple=True, help="Enable a registered tool (repeatable)")
@click.option("--web-search", is_flag=True, help="Enable the provider's web search")
@click.option("--show-thinking", is_flag=True, help="Print reasoning as it streams")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(
    prompt: str | None,
    config_path: str | None,
    provider: str | None,
    model: str,
    system_prompt: str,
    effort: str | None,
    thinking_tokens: int | None,
    temperature: float | None,
    tools: tuple[str, ...],
    web_search: bool,
    show_thinking: bool,
    verbose: bool,
) -> None:
    """Chat with any configured provider.  Without PROMPT, start a REPL."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        config = load_config(config_path)
    except (RelayError, OSError) as e:
        raise click.ClickException(str(e)) from e

    registry = ToolRegistry()
    register_builtins(registry)
    registry.discover()

    opts = _TurnOptions(
        provider=provider or config.default_provider,
        model=model,
        system_prompt=system_prompt,
        tools=tools,
        thinking=ThinkingBudget(effort=effort, tokens=thinking_tokens),
        temperature=temperature,
        web_search=web_search,
        show_thinking=show_thinking,
    )
    try:
        code = asyncio.run(_amain(config, registry, opts, prompt))
    except RelayError as e:
        raise click.ClickException(str(e)) from e
    raise SystemExit(code)


if __name__ == "__main__":
    main()
