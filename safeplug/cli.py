"""SafePlug CLI — Typer entry point with Rich formatting."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from safeplug.arguments import parse_cli_args
from safeplug.audit import read_audit
from safeplug.config import CONFIG_FILE, ProjectConfig, load_config
from safeplug.errors import ArgumentValidationError, SafePlugError
from safeplug.launcher import runtime_flags
from safeplug.manifest import MANIFEST_FILE, find_plugin, load_manifest
from safeplug.permissions import compile_for_command
from safeplug.registry import InstallReport, install_plugins, update_plugins
from safeplug.runner import run_plugin, split_target
from safeplug.validators import UrlPurpose, validate_url

app = typer.Typer(
    name="safeplug",
    help="SafePlug — run third-party plugins in a least-privilege sandbox.",
    no_args_is_help=True,
)
console = Console()

_DEFAULT_CONFIG = Path(CONFIG_FILE)

ConfigOption = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to safeplug.yaml"),
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(title: str, message: str) -> typer.Exit:
    console.print(Panel(escape(message), title=f"[red]{escape(title)}[/red]", border_style="red"))
    return typer.Exit(code=1)


def _load(config_path: Path) -> ProjectConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        raise _fail("config", str(exc)) from exc


def _cell(values: frozenset[str]) -> str:
    return escape("\n".join(sorted(values))) or "[dim](none)[/dim]"


def _print_report(report: InstallReport) -> None:
    for name in report.installed:
        console.print(f"  [green]installed[/green] {name}")
    for name in report.planned:
        console.print(f"  [cyan]would install[/cyan] {name}")
    for name in report.skipped:
        console.print(f"  [yellow]skipped[/yellow] {name}")
    for name in report.missing:
        console.print(f"  [red]not found in any registry[/red] {name}")


# ---------------------------------------------------------------------------
# Running plugins
# ---------------------------------------------------------------------------


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def run(
    ctx: typer.Context,
    target: Annotated[str, typer.Argument(help="PLUGIN:COMMAND to run")],
    config: ConfigOption = _DEFAULT_CONFIG,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Ask the plugin not to change anything")
    ] = False,
) -> None:
    """Run a plugin command. Plugin arguments follow as --name value."""
    cfg = _load(config)
    try:
        plugin, command = split_target(target)
        raw_args = parse_cli_args(list(ctx.args))
    except (ValueError, ArgumentValidationError) as exc:
        raise _fail(target, str(exc)) from exc

    result = run_plugin(cfg, plugin, command, raw_args, dry_run=dry_run)
    if result.ok:
        title = f"[green]{escape(target)}[/green]"
        console.print(Panel(escape(result.message), title=title, border_style="green"))
    else:
        raise _fail(target, result.message)


@app.command()
def permissions(
    target: Annotated[str, typer.Argument(help="PLUGIN:COMMAND to inspect")],
    config: ConfigOption = _DEFAULT_CONFIG,
) -> None:
    """Show the compiled sandbox policy for a command."""
    cfg = _load(config)
    try:
        plugin, command = split_target(target)
        manifest = load_manifest(find_plugin(cfg, plugin) / MANIFEST_FILE)
    except (ValueError, SafePlugError) as exc:
        raise _fail(target, str(exc)) from exc
    if command not in manifest.commands:
        raise _fail(target, f"Command '{command}' not found in plugin '{plugin}'")

    policy = compile_for_command(manifest, command, cfg.root_path())

    table = Table(title=f"Sandbox policy for {target}")
    table.add_column("Permission", style="cyan")
    table.add_column("Granted")
    table.add_row("Read", _cell(policy.file_read))
    table.add_row("Write", _cell(policy.file_write))
    table.add_row(
        "Environment",
        "[green]allowed[/green]" if policy.env_access else "[red]denied[/red]",
    )
    table.add_row("Network", _cell(policy.network))
    table.add_row("Run", _cell(policy.run_commands))
    console.print(table)
    console.print("[bold]Runtime flags:[/bold] " + escape(" ".join(runtime_flags(policy))))


# ---------------------------------------------------------------------------
# Registry commands
# ---------------------------------------------------------------------------


@app.command()
def add(
    names: Annotated[list[str], typer.Argument(help="Plugins to install")],
    config: ConfigOption = _DEFAULT_CONFIG,
    registry: Annotated[str | None, typer.Option("--registry", help="Registry URL to use")] = None,
    force: Annotated[bool, typer.Option("--force", help="Overwrite installed plugins")] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show what would be installed")
    ] = False,
) -> None:
    """Install plugins from a git registry."""
    cfg = _load(config)
    try:
        report = install_plugins(cfg, names, registry=registry, force=force, dry_run=dry_run)
    except SafePlugError as exc:
        raise _fail("add", str(exc)) from exc
    _print_report(report)
    if report.missing:
        raise typer.Exit(code=1)


@app.command()
def update(
    name: Annotated[str | None, typer.Argument(help="Plugin to update (default: all)")] = None,
    config: ConfigOption = _DEFAULT_CONFIG,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show what would be updated")] = False,
) -> None:
    """Update one plugin, or every installed plugin, from its registry."""
    cfg = _load(config)
    try:
        report = update_plugins(cfg, [name] if name else None, dry_run=dry_run)
    except SafePlugError as exc:
        raise _fail("update", str(exc)) from exc
    if not any((report.installed, report.planned, report.skipped, report.missing)):
        console.print("[dim]No plugins installed.[/dim]")
        return
    _print_report(report)


@app.command(name="check-url")
def check_url(
    url: Annotated[str, typer.Argument(help="URL to validate")],
    dependency: Annotated[
        bool, typer.Option("--dependency", help="Validate as a dependency instead of a registry")
    ] = False,
) -> None:
    """Check a registry or dependency URL against the security rules."""
    purpose = UrlPurpose.DEPENDENCY if dependency else UrlPurpose.REGISTRY
    try:
        validate_url(url, purpose)
    except SafePlugError as exc:
        raise _fail(f"{purpose} url", str(exc)) from exc
    console.print(f"[green]accepted[/green] {escape(url)} ({purpose})")


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@app.command()
def audit(
    config: ConfigOption = _DEFAULT_CONFIG,
    count: Annotated[int, typer.Option("--count", "-n", help="Number of entries")] = 20,
) -> None:
    """Show recent audit log entries."""
    cfg = _load(config)
    entries = read_audit(cfg.root_path(), last_n=count)

    if not entries:
        console.print("[dim]No audit log entries found.[/dim]")
        return

    table = Table(title="Audit Log (most recent first)")
    table.add_column("Timestamp", style="cyan", no_wrap=True)
    table.add_column("Action", style="magenta")
    table.add_column("Status")
    table.add_column("Detail", max_width=60)

    for entry in entries:
        ts = entry.get("timestamp", "?")[:19]
        action = entry.get("action", "?")
        status = entry.get("status", "?")
        detail = entry.get("detail", "")[:60]
        style = "green" if status == "ok" else "red"
        table.add_row(ts, action, f"[{style}]{status}[/{style}]", detail)

    console.print(table)
