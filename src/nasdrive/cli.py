"""Command line interface for the nasdrive store."""

from __future__ import annotations

import difflib
import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

from nasdrive import identity
from nasdrive.config import ConfigError, ConfigManager, NasdriveConfig, resolve_with_precedence
from nasdrive.drive import Drive
from nasdrive.errors import DriveError, translate_os_errors
from nasdrive.paths import split_relative
from nasdrive.state import StateError
from nasdrive.upload import UploadSource, UploadTask

console = Console()
err_console = Console(stderr=True)


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command.

    Raises:
        SystemExit: When emitting JSON output.
        click.ClickException: For plain-text output.
    """

    if json_output:
        console.print_json(data={"error": {"code": code, "message": message}})
        raise SystemExit(1)
    raise click.ClickException(message) from original


@contextmanager
def _cli_errors(json_output: bool) -> Iterator[None]:
    try:
        yield
    except DriveError as exc:
        _handle_cli_error(str(exc), code=exc.code, json_output=json_output, original=exc)
    except StateError as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=logging.getLevelName(level.upper()),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_config(ctx: click.Context) -> NasdriveConfig:
    overrides: dict[str, Any] = {}
    if ctx.obj.get("root"):
        overrides["storage.root"] = str(ctx.obj["root"])
    return ConfigManager().load(cli_overrides=overrides)


def _open_drive(ctx: click.Context) -> tuple[Drive, NasdriveConfig]:
    config = _load_config(ctx)
    _configure_logging(config.logging.level)
    Path(config.storage.root).expanduser().mkdir(parents=True, exist_ok=True)
    return Drive.from_config(config), config


def _id_for(path: str) -> str:
    return identity.encode("/".join(split_relative(path)))


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="nasdrive")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Store root directory (overrides storage.root).",
)
@click.pass_context
def cli(ctx: click.Context, root: Path | None) -> None:
    """Manage a single-root file store with tags, trash and resumable uploads."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


@cli.command("ls")
@click.argument("path", default="")
@click.option("--json", "json_output", is_flag=True, help="Emit entries as JSON.")
@click.pass_context
def ls(ctx: click.Context, path: str, json_output: bool) -> None:
    """List the entries of directory PATH (default: the store root)."""
    with _cli_errors(json_output):
        drive, _ = _open_drive(ctx)
        entries = drive.list(path)
        tags = drive.get_tags()

    if json_output:
        console.print_json(data=[entry.model_dump(mode="json") for entry in entries])
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("Tags")
    prefix = "/".join(split_relative(path))
    for entry in entries:
        key = f"{prefix}/{entry.name}" if prefix else entry.name
        table.add_row(
            entry.name + ("/" if entry.kind == "directory" else ""),
            entry.kind,
            "" if entry.kind == "directory" else _format_size(entry.size),
            entry.modified_at.strftime("%Y-%m-%d %H:%M"),
            ", ".join(tags.get(key, [])),
        )
    console.print(table)


@cli.command("mkdir")
@click.argument("path")
@click.argument("name")
@click.pass_context
def mkdir(ctx: click.Context, path: str, name: str) -> None:
    """Create directory NAME inside PATH (use '' for the root)."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        entry = drive.create_directory(path, name)
    console.print(f"[green]Created {entry.name}/.[/green]")


@cli.command("rename")
@click.argument("path")
@click.argument("new_name")
@click.pass_context
def rename(ctx: click.Context, path: str, new_name: str) -> None:
    """Rename the entry at PATH to NEW_NAME within the same directory."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        new_id = drive.rename(_id_for(path), new_name)
    console.print(f"[green]Renamed to {identity.decode(new_id)}.[/green]")


@cli.command("mv")
@click.argument("sources", nargs=-1, required=True)
@click.argument("destination")
@click.pass_context
def mv(ctx: click.Context, sources: tuple[str, ...], destination: str) -> None:
    """Move SOURCES into the DESTINATION directory."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        moved = drive.move([_id_for(source) for source in sources], _id_for(destination))
    for new_id in moved:
        console.print(f"[green]Moved to {identity.decode(new_id)}.[/green]")


@cli.command("rm")
@click.argument("path")
@click.option("--permanent", is_flag=True, help="Delete immediately instead of moving to trash.")
@click.option("--json", "json_output", is_flag=True, help="Emit the trash record as JSON.")
@click.pass_context
def rm(ctx: click.Context, path: str, permanent: bool, json_output: bool) -> None:
    """Move PATH to the trash, or delete it outright with --permanent."""
    with _cli_errors(json_output):
        drive, _ = _open_drive(ctx)
        if permanent:
            drive.delete(_id_for(path))
            entry = None
        else:
            entry = drive.move_to_trash(_id_for(path))

    if json_output:
        console.print_json(data={"trash": entry.model_dump(mode="json") if entry else None})
    elif entry is None:
        console.print(f"[green]Deleted {path}.[/green]")
    else:
        console.print(f"[green]Moved {path} to trash ({entry.trash_id}).[/green]")


@cli.group()
def trash() -> None:
    """Inspect and manage trashed entries."""


@trash.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit entries as JSON.")
@click.pass_context
def trash_list(ctx: click.Context, json_output: bool) -> None:
    """List trashed entries, purging expired ones first."""
    with _cli_errors(json_output):
        drive, _ = _open_drive(ctx)
        entries = drive.list_trash()

    if json_output:
        console.print_json(data=[entry.model_dump(mode="json") for entry in entries])
        return
    if not entries:
        console.print("[yellow]Trash is empty.[/yellow]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Trash ID")
    table.add_column("Original path")
    table.add_column("Kind")
    table.add_column("Size", justify="right")
    table.add_column("Trashed")
    for entry in entries:
        table.add_row(
            entry.trash_id,
            entry.original_path,
            entry.kind,
            _format_size(entry.size),
            entry.trashed_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@trash.command("restore")
@click.argument("trash_ids", nargs=-1, required=True)
@click.pass_context
def trash_restore(ctx: click.Context, trash_ids: tuple[str, ...]) -> None:
    """Restore TRASH_IDS to their original locations."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        restored, errors = drive.restore_many(trash_ids)
    for trash_id, path in restored.items():
        console.print(f"[green]Restored {trash_id} to {path}.[/green]")
    for trash_id, message in errors.items():
        console.print(f"[red]{trash_id}: {message}[/red]")
    if errors:
        raise SystemExit(1)


@trash.command("purge")
@click.argument("trash_ids", nargs=-1, required=True)
@click.pass_context
def trash_purge(ctx: click.Context, trash_ids: tuple[str, ...]) -> None:
    """Permanently delete TRASH_IDS."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        errors = drive.permanently_delete_many(trash_ids)
    for trash_id, message in errors.items():
        console.print(f"[red]{trash_id}: {message}[/red]")
    purged = len(trash_ids) - len(errors)
    console.print(f"[green]Purged {purged} entr{'y' if purged == 1 else 'ies'}.[/green]")
    if errors:
        raise SystemExit(1)


@trash.command("empty")
@click.pass_context
def trash_empty(ctx: click.Context) -> None:
    """Permanently delete everything in the trash."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        count = drive.empty_trash()
    console.print(f"[green]Emptied trash ({count} removed).[/green]")


@cli.group()
def tags() -> None:
    """Read and edit path labels."""


@tags.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit the tag map as JSON.")
@click.pass_context
def tags_list(ctx: click.Context, json_output: bool) -> None:
    """Show every tagged path."""
    with _cli_errors(json_output):
        drive, _ = _open_drive(ctx)
        tag_map = drive.get_tags()
    if json_output:
        console.print_json(data=tag_map)
        return
    for path, labels in sorted(tag_map.items()):
        console.print(f"{path}: {', '.join(labels)}")


@tags.command("set")
@click.argument("path")
@click.argument("labels", nargs=-1)
@click.pass_context
def tags_set(ctx: click.Context, path: str, labels: tuple[str, ...]) -> None:
    """Replace the labels of PATH (no LABELS clears them)."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        drive.set_tags(path, labels)
    if labels:
        console.print(f"[green]Tagged {path}: {', '.join(labels)}.[/green]")
    else:
        console.print(f"[green]Cleared tags on {path}.[/green]")


@cli.command("upload")
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--dest", default="", help="Destination directory inside the store.")
@click.option("--quiet", is_flag=True, help="Suppress per-file output.")
@click.pass_context
def upload(ctx: click.Context, files: tuple[Path, ...], dest: str, quiet: bool) -> None:
    """Upload FILES into the store directory --dest."""
    with _cli_errors(False):
        drive, config = _open_drive(ctx)
        quiet = quiet or config.cli.quiet_default

        def _report(task: UploadTask) -> None:
            if quiet:
                return
            if task.status == "completed":
                console.print(f"[green]Uploaded {task.name}.[/green]")
            elif task.status == "error":
                console.print(f"[red]Failed {task.name}: {task.error}[/red]")

        settings = config.upload
        orchestrator = drive.uploader(
            concurrency=settings.concurrency,
            max_retries=settings.max_retries,
            chunk_threshold=settings.chunk_threshold_bytes,
            chunk_size=settings.chunk_size_bytes,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            on_update=_report,
        )
        drive.list(dest)
        summary = orchestrator.upload(
            [UploadSource.from_path(path) for path in files], split_relative(dest)
        )

    console.print(
        f"Upload summary for /{dest.strip('/')}: "
        f"succeeded={summary.succeeded}, failed={summary.failed}."
    )
    if summary.failed:
        raise SystemExit(1)


@cli.command("download")
@click.argument("path")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Destination file (default: the entry name in the current directory).",
)
@click.pass_context
def download(ctx: click.Context, path: str, output: Path | None) -> None:
    """Copy the store file at PATH to the local filesystem."""
    with _cli_errors(False):
        drive, _ = _open_drive(ctx)
        handle = drive.download_file(_id_for(path))
        target = output or Path(handle.name)
        with handle.stream as source, translate_os_errors(str(target)):
            with target.open("wb") as sink:
                shutil.copyfileobj(source, sink)
    console.print(f"[green]Saved {handle.size} bytes to {target}.[/green]")


@cli.group()
def config() -> None:
    """Manage nasdrive configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY."""
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'trash.retention_days'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    file_data = manager.load_file_overrides()
    node = file_data
    for segment in segments[:-1]:
        existing = node.setdefault(segment, {})
        if not isinstance(existing, dict):
            raise click.ClickException(f"Cannot assign into '{segment}': not a mapping.")
        node = existing
    node[segments[-1]] = parsed_value

    try:
        resolve_with_precedence(defaults=NasdriveConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    diff = list(
        difflib.unified_diff(
            before,
            manager.read_text().splitlines(),
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if diff:
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
