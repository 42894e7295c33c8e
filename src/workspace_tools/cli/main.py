"""
CLI for workspace-tools.

Inspect configuration, check paths against the workspace boundary, run
searches and manage backups from the command line.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from workspace_tools import __version__
from workspace_tools.filesystem.audit import create_file_handler, log_level
from workspace_tools.filesystem.backup import BackupManager
from workspace_tools.filesystem.exceptions import FileSystemError
from workspace_tools.filesystem.models import (
    FindDuplicatesParams,
    SearchContentParams,
    SearchFilesParams,
    format_size,
)
from workspace_tools.filesystem.tools import WorkspaceTools
from workspace_tools.filesystem.validator import PathValidator, WorkspaceBoundary
from workspace_tools.settings.config import WorkspaceToolsConfig, load_config

# Load environment variables
load_dotenv()

console = Console()

CLI_AGENT = "cli"


def setup_logging(config: WorkspaceToolsConfig, verbose: bool = False) -> None:
    """Setup rich console logging plus the optional JSON-lines file log."""
    level = logging.DEBUG if verbose else log_level(config.logging)
    handlers: list[logging.Handler] = [RichHandler(console=console, rich_tracebacks=True)]

    file_handler = create_file_handler(config.logging)
    if file_handler is not None:
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    sys.exit(1)


def _report(result) -> bool:
    """Print a failed operation result; returns True on success."""
    if result.success:
        return True
    console.print(f"[bold red]{result.error_type}:[/bold red] {escape(result.error or '')}")
    return False


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to config file (default: .workspace-tools.yaml if present)",
)
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Workspace root (overrides the config file and WORKSPACE_DIR)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], workspace: Optional[str], verbose: bool):
    """Workspace Tools CLI - sandboxed file operations for agents."""
    try:
        config = load_config(config_path)
        if workspace:
            data = config.to_dict()
            data["workspace"]["dir"] = workspace
            config = WorkspaceToolsConfig.from_dict(data)
    except (ValidationError, ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(1)

    setup_logging(config, verbose)
    ctx.obj = config


# =============================================================================
# config
# =============================================================================


@cli.group()
def config():
    """Show or create configuration files."""
    pass


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of YAML")
@click.pass_obj
def config_show(config: WorkspaceToolsConfig, as_json: bool):
    """Print the effective configuration (defaults <- file <- environment)."""
    data = config.to_dict()
    if as_json:
        console.print_json(json.dumps(data))
    else:
        console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))


@config.command("init")
@click.argument("path", type=click.Path(dir_okay=False), default=".workspace-tools.yaml")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_obj
def config_init(config: WorkspaceToolsConfig, path: str, force: bool):
    """
    Write the effective configuration to PATH.

    Examples:

        workspace-tools config init

        workspace-tools -w ~/project config init project.json
    """
    target = Path(path)
    if target.exists() and not force:
        _fail(f"{target} already exists. Use --force to overwrite it.")

    fmt = "json" if target.suffix == ".json" else "yaml"
    config.save(target, format=fmt)
    console.print(f"[green]Configuration written to {target}[/green]")


# =============================================================================
# check-path
# =============================================================================


@cli.command("check-path")
@click.argument("paths", nargs=-1, required=True)
@click.pass_obj
def check_path(config: WorkspaceToolsConfig, paths: tuple[str, ...]):
    """
    Check whether workspace-relative PATHS pass validation.

    Exits with status 1 if any path is rejected.

    Examples:

        workspace-tools check-path src/main.py ../etc/passwd .git/config
    """
    validator = PathValidator(WorkspaceBoundary.from_config(config.workspace))

    table = Table(title=escape(f"Workspace: {validator.root}"))
    table.add_column("Path")
    table.add_column("Verdict")
    table.add_column("Reason")

    rejected = 0
    for candidate in paths:
        verdict = validator.validate(candidate)
        if verdict.valid:
            table.add_row(escape(candidate), "[green]allowed[/green]", "")
        else:
            rejected += 1
            table.add_row(escape(candidate), "[red]rejected[/red]", escape(verdict.reason or ""))

    console.print(table)
    if rejected:
        sys.exit(1)


# =============================================================================
# search
# =============================================================================


@cli.command("search-files")
@click.argument("pattern")
@click.option("--path", "-p", default="", help="Directory to search (default: workspace root)")
@click.option("--regex", is_flag=True, help="Treat PATTERN as a regular expression")
@click.option("--case-sensitive", is_flag=True, help="Case-sensitive matching")
@click.option("--hidden", is_flag=True, help="Include hidden files")
@click.option("--type", "-t", "file_types", multiple=True, help="Only these extensions")
@click.option("--exclude", "-x", multiple=True, help="Glob patterns to exclude")
@click.option("--max-results", "-n", type=int, default=None, help="Maximum results")
@click.pass_obj
def search_files(
    config: WorkspaceToolsConfig,
    pattern: str,
    path: str,
    regex: bool,
    case_sensitive: bool,
    hidden: bool,
    file_types: tuple[str, ...],
    exclude: tuple[str, ...],
    max_results: Optional[int],
):
    """
    Find files by name, glob or regular expression.

    Examples:

        workspace-tools search-files config

        workspace-tools search-files "*.py" -p src -x "tests/**"
    """
    tools = WorkspaceTools(config)
    params = SearchFilesParams(
        agent=CLI_AGENT,
        pattern=pattern,
        path=path,
        use_regex=regex,
        case_sensitive=case_sensitive,
        include_hidden=hidden,
        file_types=list(file_types) or None,
        exclude_patterns=list(exclude) or None,
        max_results=max_results,
    )
    result = asyncio.run(tools.search.search_files(params))
    if not _report(result):
        sys.exit(1)

    table = Table(title=f"{result.total_returned} of {result.total_found} files")
    table.add_column("Score", justify="right")
    table.add_column("Match")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    for entry in result.results:
        table.add_row(
            f"{entry.relevance_score:.0f}",
            entry.match_type.value,
            escape(entry.path),
            entry.size_formatted,
        )
    console.print(table)
    if result.truncated:
        console.print("[yellow]Results truncated; use --max-results to see more.[/yellow]")


@cli.command("search-content")
@click.argument("query")
@click.option("--path", "-p", default="", help="Directory to search (default: workspace root)")
@click.option("--regex", is_flag=True, help="Treat QUERY as a regular expression")
@click.option("--case-sensitive", is_flag=True, help="Case-sensitive matching")
@click.option("--word", is_flag=True, help="Match whole words only")
@click.option("--type", "-t", "file_types", multiple=True, help="Only these extensions")
@click.option("--exclude", "-x", multiple=True, help="Glob patterns to exclude")
@click.option("--context", "-C", type=int, default=2, help="Context lines around matches")
@click.option("--max-results", "-n", type=int, default=None, help="Maximum files with matches")
@click.pass_obj
def search_content(
    config: WorkspaceToolsConfig,
    query: str,
    path: str,
    regex: bool,
    case_sensitive: bool,
    word: bool,
    file_types: tuple[str, ...],
    exclude: tuple[str, ...],
    context: int,
    max_results: Optional[int],
):
    """
    Search file contents for text or a regular expression.

    Examples:

        workspace-tools search-content TODO -t py

        workspace-tools search-content "def \\w+_test" --regex -C 0
    """
    tools = WorkspaceTools(config)
    params = SearchContentParams(
        agent=CLI_AGENT,
        query=query,
        path=path,
        use_regex=regex,
        case_sensitive=case_sensitive,
        whole_word=word,
        file_types=list(file_types) or None,
        exclude_patterns=list(exclude) or None,
        context=context,
        max_results=max_results,
    )
    result = asyncio.run(tools.search.search_content(params))
    if not _report(result):
        sys.exit(1)

    for file_match in result.results:
        lines = []
        for match in file_match.matches:
            first = match.line - len(match.before)
            for offset, text in enumerate(match.before):
                lines.append(f"[dim]{first + offset:>5}  {escape(text)}[/dim]")
            lines.append(f"[bold]{match.line:>5}[/bold]  {escape(match.text)}")
            for offset, text in enumerate(match.after, start=1):
                lines.append(f"[dim]{match.line + offset:>5}  {escape(text)}[/dim]")
            lines.append("")
        console.print(
            Panel(
                "\n".join(lines).rstrip(),
                title=escape(f"{file_match.file} ({file_match.match_count})"),
                title_align="left",
            ),
            markup=True,
        )

    console.print(
        f"{result.total_matches} matches in {result.files_with_matches} of "
        f"{result.total_files} files ({result.search_time:.1f} ms)"
    )
    if result.truncated:
        console.print("[yellow]Results truncated; use --max-results to see more.[/yellow]")


@cli.command()
@click.option("--path", "-p", default="", help="Directory to scan (default: workspace root)")
@click.option(
    "--by",
    "compare_by",
    type=click.Choice(["hash", "name", "size-name"]),
    default="hash",
    help="Comparison mode",
)
@click.option("--min-size", type=int, default=1024, help="Ignore smaller files (bytes)")
@click.option("--max-size", type=int, default=None, help="Ignore larger files (bytes)")
@click.option("--type", "-t", "file_types", multiple=True, help="Only these extensions")
@click.option("--exclude", "-x", multiple=True, help="Glob patterns to exclude")
@click.pass_obj
def duplicates(
    config: WorkspaceToolsConfig,
    path: str,
    compare_by: str,
    min_size: int,
    max_size: Optional[int],
    file_types: tuple[str, ...],
    exclude: tuple[str, ...],
):
    """
    Find duplicate files.

    Examples:

        workspace-tools duplicates

        workspace-tools duplicates --by name --min-size 0
    """
    tools = WorkspaceTools(config)
    params = FindDuplicatesParams(
        agent=CLI_AGENT,
        path=path,
        compare_by=compare_by,
        min_size=min_size,
        max_size=max_size,
        file_types=list(file_types) or None,
        exclude_patterns=list(exclude) or None,
    )
    result = asyncio.run(tools.search.find_duplicates(params))
    if not _report(result):
        sys.exit(1)

    if not result.duplicate_groups:
        console.print("[green]No duplicates found.[/green]")
        return

    for group in result.duplicate_groups:
        table = Table(
            title=f"{group.count} x {group.size_formatted} "
            f"(wasted {format_size(group.total_wasted)})",
            title_justify="left",
        )
        table.add_column("Path")
        table.add_column("Modified")
        table.add_column("")
        for member in group.files:
            table.add_row(escape(member.path), member.modified, "original" if member.original else "")
        console.print(table)

    console.print(
        f"{result.total_groups} groups, {result.total_duplicates} duplicates, "
        f"{result.wasted_space_formatted} wasted"
    )


# =============================================================================
# backups
# =============================================================================


@cli.group()
def backups():
    """List, restore and clean backups."""
    pass


@backups.command("list")
@click.argument("name", required=False)
@click.pass_obj
def backups_list(config: WorkspaceToolsConfig, name: Optional[str]):
    """List backups, newest first (optionally only those of NAME)."""
    manager = BackupManager(config.files)
    records = manager.list_backups(name) if name else manager.list_all_backups()

    if not records:
        console.print(f"[yellow]No backups in {manager.backup_dir}[/yellow]")
        return

    table = Table(title=escape(str(manager.backup_dir)))
    table.add_column("Backup")
    table.add_column("Original")
    table.add_column("Created (UTC)")
    table.add_column("Size", justify="right")
    table.add_column("Kind")
    for record in records:
        table.add_row(
            escape(record.file_name),
            escape(record.original_name),
            record.created.strftime("%Y-%m-%d %H:%M:%S"),
            format_size(record.size),
            "directory" if record.is_directory else "file",
        )
    console.print(table)
    console.print(f"Total: {format_size(sum(r.size for r in records))}")


@backups.command("restore")
@click.argument("backup")
@click.argument("target")
@click.pass_obj
def backups_restore(config: WorkspaceToolsConfig, backup: str, target: str):
    """
    Restore BACKUP (a file name in the backup directory) to the
    workspace-relative TARGET path.

    Examples:

        workspace-tools backups restore main.py.1735689600000.backup src/main.py
    """
    manager = BackupManager(config.files)
    validator = PathValidator(WorkspaceBoundary.from_config(config.workspace))

    backup_path = Path(backup)
    if not backup_path.is_absolute():
        backup_path = manager.backup_dir / backup_path

    try:
        target_path = validator.resolve(target, "target path")
        manager.restore_backup(backup_path, target_path)
    except FileSystemError as e:
        _fail(str(e))

    console.print(f"[green]Restored {escape(backup_path.name)} -> {escape(target)}[/green]")


@backups.command("clean")
@click.pass_obj
def backups_clean(config: WorkspaceToolsConfig):
    """Remove backups older than the retention period."""
    manager = BackupManager(config.files)
    removed = manager.clean_all_old_backups()
    console.print(
        f"Removed [bold]{removed}[/bold] backups older than "
        f"{manager.retention_days} days; {format_size(manager.get_backup_size())} remaining"
    )


if __name__ == "__main__":
    cli()
