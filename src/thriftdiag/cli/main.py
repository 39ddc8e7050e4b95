"""thriftdiag CLI for linting Thrift IDL files."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..config import Settings, load_settings
from ..diagnostics.manager import DiagnosticManager, InMemoryPublisher
from ..diagnostics.workspace import LocalWorkspace
from ..exceptions import WorkspaceError
from ..models.records import DIAGNOSTIC_CODES, Issue

console = Console()
app = typer.Typer(add_completion=False, no_args_is_help=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _expand_paths(paths: List[Path], settings: Settings) -> List[Path]:
    patterns = settings.diagnostics.file_patterns
    files: List[Path] = []
    for path in paths:
        if path.is_dir():
            for pattern in patterns:
                files.extend(sorted(p for p in path.rglob(pattern) if p.is_file()))
        else:
            files.append(path)
    seen = set()
    unique: List[Path] = []
    for file in files:
        key = file.resolve()
        if key not in seen:
            seen.add(key)
            unique.append(file)
    return unique


async def _run_check(files: List[Path], settings: Settings) -> Dict[Path, List[Issue]]:
    workspace = LocalWorkspace()
    publisher = InMemoryPublisher()
    manager = DiagnosticManager(workspace, publisher, settings)
    documents = [workspace.open(file) for file in files]
    try:
        for document in documents:
            manager.schedule_analysis(document, immediate=True, skip_dependents=True, source="cli")
        await manager.scheduler.wait_idle()
        return {document.path: publisher.get(document.path) for document in documents}
    finally:
        manager.dispose()


@app.command()
def check(
    paths: List[Path] = typer.Argument(..., exists=True, help="Files or directories to check"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to thriftdiag.yaml"),
    as_json: bool = typer.Option(False, "--json", help="Print issues as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Analyze Thrift files and report issues. Exits with status 1 if any are found."""
    _configure_logging(verbose)
    settings = load_settings(config)
    files = _expand_paths(paths, settings)
    if not files:
        console.print("[yellow]No matching files found[/yellow]")
        raise typer.Exit(0)

    try:
        results = asyncio.run(_run_check(files, settings))
    except WorkspaceError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2)

    total = sum(len(issues) for issues in results.values())
    if as_json:
        payload = {str(path): [issue.to_dict() for issue in issues] for path, issues in results.items()}
        typer.echo(json.dumps(payload, indent=2))
    else:
        for path, issues in results.items():
            if not issues:
                console.print(f"[green]{path}: no issues[/green]", soft_wrap=True)
                continue
            table = Table(title=str(path))
            table.add_column("Line", justify="right")
            table.add_column("Col", justify="right")
            table.add_column("Code", style="cyan", no_wrap=True)
            table.add_column("Message")
            for issue in issues:
                table.add_row(
                    str(issue.range.start_line + 1),
                    str(issue.range.start_col + 1),
                    issue.code,
                    issue.message,
                )
            console.print(table)
        console.print(f"{total} issue(s) in {len(results)} file(s)", soft_wrap=True)

    if total:
        raise typer.Exit(1)


@app.command()
def codes():
    """List the diagnostic codes that can be reported."""
    table = Table(title="Diagnostic codes")
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Description")
    for code, description in DIAGNOSTIC_CODES.items():
        table.add_row(code, description)
    console.print(table)
