from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, print_error, setup_logging
from .core.context import ContextBudget, ContextManager, ContextSource
from .core.cost_tracker import CostTracker, format_usd
from .core.tokens import estimate_tokens
from .pipeline import CustomStep, PipelineDefinition
from .providers import Message, Model

app = typer.Typer(help="aicore: routing, budgets, context and pipelines for AI backends.")


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to an aicore config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    loaded_config, meta = load_config(config_path=config)
    logger = setup_logging(level=loaded_config.log_level, verbose=verbose)

    ctx.obj = AppState(config=loaded_config, config_meta=meta, logger=logger)

    if meta.error:
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {escape(str(meta.path))}:\n{escape(meta.error)}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s)",
            meta.path,
            sorted(meta.env_overrides),
        )


@app.command("version")
def show_version() -> None:
    """Print the aicore version."""
    console.print(__version__)


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in _flatten(state.config.model_dump(mode="json")):
        table.add_row(key, escape(str(value)))

    console.print(table)

    meta_lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]
    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("tokens")
def count_tokens(
    text: str | None = typer.Argument(None, help="Text to estimate; reads stdin when omitted."),
    file: Path | None = typer.Option(
        None, "--file", "-f", exists=True, dir_okay=False, help="Estimate a file instead."
    ),
) -> None:
    """Estimate the token count of text using the 4-characters-per-token heuristic."""
    if file is not None:
        content = file.read_text(encoding="utf-8")
    elif text is not None:
        content = text
    else:
        content = sys.stdin.read()
    console.print(estimate_tokens(content))


@app.command("cost")
def estimate_cost(
    input_tokens: int = typer.Option(..., "--input-tokens", "-i", min=0),
    output_tokens: int = typer.Option(0, "--output-tokens", "-o", min=0),
    input_price: str = typer.Option(..., "--input-price", help="USD per 1000 input tokens."),
    output_price: str = typer.Option(..., "--output-price", help="USD per 1000 output tokens."),
) -> None:
    """Estimate the USD cost of a request at per-1k token prices."""
    try:
        model = Model(
            id="cli",
            name="cli",
            context_window=0,
            input_cost_per_1k=Decimal(input_price),
            output_cost_per_1k=Decimal(output_price),
        )
    except InvalidOperation:
        print_error(f"Invalid price: {input_price!r} / {output_price!r}")
        raise typer.Exit(code=1) from None

    cost = CostTracker.estimate_cost(model, input_tokens, output_tokens)
    console.print(f"{format_usd(cost)} ({cost})")


@app.command("context")
def build_context(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON context request."),
) -> None:
    """Pack sources and history from a JSON file and report what was kept.

    The file holds `model` (`id`, `context_window`), optional `budget`
    overrides, `sources` (`key`, `content`, `priority`) and `messages`
    (`role`, `content`).
    """
    state: AppState = ctx.obj
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        model = Model(
            id=data["model"]["id"],
            name=data["model"].get("name", data["model"]["id"]),
            context_window=int(data["model"]["context_window"]),
            input_cost_per_1k=Decimal(0),
            output_cost_per_1k=Decimal(0),
        )
        sources = [
            ContextSource(
                key=s["key"],
                content=s["content"],
                priority=int(s.get("priority", 0)),
                token_estimate=s.get("token_estimate"),
            )
            for s in data.get("sources", [])
        ]
        messages = [Message(role=m["role"], content=m["content"]) for m in data.get("messages", [])]
        overrides: dict[str, Any] = data.get("budget", {})
        if not isinstance(overrides, dict):
            raise TypeError("'budget' must be an object")
        budget = ContextBudget(
            max_context_tokens=int(
                overrides.get("max_context_tokens", state.config.context.max_context_tokens)
            ),
            reserved_output_tokens=int(
                overrides.get("reserved_output_tokens", state.config.context.reserved_output_tokens)
            ),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        print_error(f"Invalid context file {path}: {exc}")
        raise typer.Exit(code=1) from None

    built = ContextManager(budget).build(messages, model, extra_sources=sources)

    kept_sources = set(built.source_keys)
    table = Table(title=f"Context for {model.id}", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Priority", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Kept")
    for source in sources:
        kept = source.key in kept_sources
        table.add_row(
            source.key,
            str(source.priority),
            str(source.tokens),
            "[green]yes[/green]" if kept else "[red]no[/red]",
        )
    console.print(table)
    console.print(
        f"Messages kept: {len(built.messages)} of {len(messages)}; "
        f"estimated tokens: {built.estimated_tokens}"
    )


@app.command("pipeline-check")
def pipeline_check(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON pipeline definition."),
) -> None:
    """Validate a JSON pipeline definition and list its steps."""
    try:
        definition = PipelineDefinition.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as exc:
        print_error(f"Invalid pipeline {path}:", str(exc))
        raise typer.Exit(code=1) from None

    table = Table(title=f"{definition.name} ({definition.id})", box=box.SIMPLE, expand=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan", no_wrap=True)
    table.add_column("Options", style="white")
    for index, step in enumerate(definition.steps, start=1):
        if isinstance(step, CustomStep):
            options = step.name
        else:
            options = ", ".join(
                f"{key}={value}"
                for key, value in step.model_dump(exclude={"type"}, exclude_none=True).items()
            )
        table.add_row(str(index), step.type, options)
    console.print(table)


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            rows.extend(_flatten(value, f"{name}."))
        else:
            rows.append((name, value))
    return rows


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
