"""templateswap CLI entry point."""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from templateswap.errors import TemplateCompileError, TemplateNotFoundError
from templateswap.reload import Diagnostic, DiagnosticKind, OverflowPolicy, ReloadConfig, start_auto_reload
from templateswap.store import ArtifactStore
from templateswap.templates import TemplateSet, compile_directory

console = Console()

KIND_STYLES = {
    DiagnosticKind.SETUP_ERROR: "bold red",
    DiagnosticKind.SHUTTING_DOWN: "yellow",
    DiagnosticKind.NOTIFIER_ERROR: "red",
    DiagnosticKind.COMPILE_ERROR: "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def _parse_vars(pairs: tuple[str, ...]) -> dict[str, str]:
    context: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--var")
        context[key] = value
    return context


def _print_diagnostic(diagnostic: Diagnostic) -> None:
    style = KIND_STYLES[diagnostic.kind]
    stamp = diagnostic.timestamp.strftime("%H:%M:%S")
    console.print(f"[dim]{stamp}[/dim] [{style}]{diagnostic.kind.value}[/{style}] {escape(diagnostic.message)}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """templateswap - live reloading of compiled template sets."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@cli.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--pattern", default="*", help="File name pattern selecting templates")
def check(directory: Path, pattern: str) -> None:
    """Compile a template directory once and list its templates."""
    try:
        template_set = compile_directory(directory, pattern)
    except TemplateCompileError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise SystemExit(1) from None

    table = Table(title=f"Templates in {directory}")
    table.add_column("Name", style="cyan")
    table.add_column("Autoescape", style="green")

    for name in template_set.names:
        autoescape = template_set.environment.autoescape
        escaped = autoescape(name) if callable(autoescape) else autoescape
        table.add_row(name, "yes" if escaped else "no")

    console.print(table)
    console.print(f"[green]✓[/green] {len(template_set)} templates compiled")


@cli.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.argument("name")
@click.option("--var", "variables", multiple=True, help="Context variable as key=value")
@click.option("--pattern", default="*", help="File name pattern selecting templates")
def render(directory: Path, name: str, variables: tuple[str, ...], pattern: str) -> None:
    """Render one template from a directory to stdout."""
    context = _parse_vars(variables)
    try:
        template_set = compile_directory(directory, pattern)
        click.echo(template_set.render(name, **context))
    except (TemplateCompileError, TemplateNotFoundError) as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise SystemExit(1) from None


def _build_config(
    capacity: int,
    overflow: str,
    pattern: str,
    force_polling: bool,
) -> ReloadConfig:
    try:
        return ReloadConfig(
            error_capacity=capacity,
            overflow_policy=OverflowPolicy(overflow),
            pattern=pattern,
            force_polling=force_polling or None,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from None


@cli.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--capacity", default=5, help="Error channel capacity")
@click.option(
    "--overflow",
    type=click.Choice([p.value for p in OverflowPolicy]),
    default=OverflowPolicy.BLOCK.value,
    help="What to do when the error channel is full",
)
@click.option("--pattern", default="*", help="File name pattern selecting templates")
@click.option("--force-polling", is_flag=True, help="Poll instead of using OS notifications")
def watch(directory: Path, capacity: int, overflow: str, pattern: str, force_polling: bool) -> None:
    """Watch a template directory and report reload diagnostics."""
    config = _build_config(capacity, overflow, pattern, force_polling)

    async def run_watch() -> bool:
        try:
            initial = compile_directory(directory, pattern)
            console.print(f"[green]Loaded {len(initial)} templates from {directory}[/green]")
        except TemplateCompileError as e:
            console.print(f"[yellow]Initial compile failed: {escape(str(e))}[/yellow]")
            initial = TemplateSet.empty(directory)

        store = ArtifactStore(initial)
        handle = start_auto_reload(store, directory, config=config)

        failed_setup = False
        async for diagnostic in handle.errors:
            _print_diagnostic(diagnostic)
            failed_setup = diagnostic.kind is DiagnosticKind.SETUP_ERROR

        await handle.wait()
        return failed_setup

    try:
        failed_setup = asyncio.run(run_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Watcher stopped[/yellow]")
        return

    if failed_setup:
        raise SystemExit(1)


@cli.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8080, help="Port to bind to")
@click.option("--pattern", default="*", help="File name pattern selecting templates")
def serve(directory: Path, host: str, port: int, pattern: str) -> None:
    """Serve a live-reloaded template directory over HTTP."""
    import uvicorn

    from templateswap.api import create_app

    console.print(f"[bold green]Serving templates from {directory} on {host}:{port}[/bold green]")

    uvicorn.run(
        create_app(directory, ReloadConfig(pattern=pattern)),
        host=host,
        port=port,
    )


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
