"""
CLI interface for token-governor.

Offline helpers: token estimates, prompt optimisation advice and
configuration validation.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from token_governor.config.loader import load_governor_config
from token_governor.core.optimization import analyze_prompt
from token_governor.core.token_counter import estimate_tokens

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """token-governor CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)]
        )
    if ctx.invoked_subcommand is None:
        console.print("token-governor - Use --help to see available commands")


def _read_text(text: Optional[str], file: Optional[Path]) -> str:
    if file is not None:
        return file.read_text(encoding="utf-8")
    if text is None:
        console.print("[red]Error:[/] provide TEXT or --file")
        sys.exit(EXIT_CODE_FAIL)
    return text


@app.command()
def estimate(
    text: Optional[str] = typer.Argument(None, help="Text to estimate"),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        help="Read the text from a file"
    )
):
    """Estimate the token count of a text (about 4 characters per token)."""
    content = _read_text(text, file)
    console.print(f"Estimated tokens: [bold]{estimate_tokens(content):,}[/]")


@app.command()
def analyze(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Prompt file to analyse"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if optimisation is recommended"
    )
):
    """
    Analyse a prompt for token-saving opportunities.

    Advisory only; with --enforced a prompt that should be optimised
    fails the command so it can gate CI.
    """
    prompt = path.read_text(encoding="utf-8")
    result = analyze_prompt(prompt)

    console.print("\n[bold]Prompt Optimisation Report[/bold]")
    console.print("-" * 40)
    console.print(f"Estimated tokens: {estimate_tokens(prompt):,}")

    if not result.recommendations:
        console.print("[green]✓[/] No optimisation needed")
        sys.exit(EXIT_CODE_PASS)

    for recommendation in result.recommendations:
        console.print(f"• {recommendation}")
    console.print(f"Estimated savings: {result.estimated_savings:,} tokens")
    verdict = "OPTIMIZE" if result.should_optimize else "OK"
    console.print(f"\n[bold]Verdict:[/bold] {verdict}")

    if enforced and result.should_optimize:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command("check-config")
def check_config(
    path: Path = typer.Argument(..., help="YAML settings file")
):
    """Validate a settings file and print the effective limits."""
    try:
        settings = load_governor_config(str(path))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Effective limits")
    table.add_column("Section")
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    for section, values in (
        ("rate_limits", settings.rate_limits),
        ("backoff", settings.backoff),
        ("budget", settings.budget),
    ):
        for name, value in vars(values).items():
            table.add_row(section, name, _format_value(value))
    console.print(table)
    console.print("[green]✓[/] Configuration is valid")
    sys.exit(EXIT_CODE_PASS)


def _format_value(value) -> str:
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.2f}"
    return f"{value:,.0f}" if isinstance(value, (int, float)) else str(value)


if __name__ == "__main__":
    app()
