"""Command-line interface for copyparty_bridge."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from copyparty_bridge import (
    CopypartyClient,
    CopypartyError,
    Inventory,
    TransferItem,
    TransferQueue,
    TransferStatus,
    collect_local_paths,
    get_settings,
    resolve,
)
from copyparty_bridge.config import Settings
from copyparty_bridge.exceptions import PartialSuccessError, UpstreamUnavailableError
from copyparty_bridge.listing import parse_sort_direction, parse_sort_key, sort_files
from copyparty_bridge.models import ConflictStrategy
from copyparty_bridge.transfers import default_concurrency


def _fail(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(package_name="copyparty-bridge")
@click.option("--verbose", "-v", is_flag=True, help="Log requests and queue activity")
def main(verbose: bool) -> None:
    """copyparty bridge CLI - Browse and upload files on a copyparty server."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command("ls")
@click.argument("path", default="/")
@click.option(
    "--sort",
    type=click.Choice(["name", "type", "size", "modified"]),
    default="type",
    help="Sort files by (default: type)",
)
@click.option("--desc", is_flag=True, help="Sort files in descending order")
def list_folder(path: str, sort: str, desc: bool) -> None:
    """List contents of a folder.

    PATH: Folder path to list (default: /)

    Examples:

        copyparty-bridge ls

        copyparty-bridge ls /photos --sort size --desc
    """

    async def run() -> Inventory:
        async with CopypartyClient.from_settings(get_settings()) as client:
            return await client.list_folder(path)

    try:
        inventory = asyncio.run(run())
    except CopypartyError as e:
        _fail(str(e))
        return

    if inventory.error:
        _fail(inventory.error)
        return

    if not inventory.directories and not inventory.files:
        click.echo(f"(empty folder: {inventory.current_path})")
        return

    for directory in inventory.directories:
        click.echo(click.style(f"  {directory.name}/", fg="blue"))
    direction = parse_sort_direction("desc" if desc else "asc")
    for file in sort_files(inventory.files, parse_sort_key(sort), direction):
        click.echo(f"  {file.name}  ({_format_size(file.size)}, {file.modified})")
    click.echo(
        f"\n{len(inventory.directories)} folder(s), {len(inventory.files)} file(s), "
        f"{_format_size(inventory.total_bytes)}"
    )


async def _upload(
    settings: Settings,
    files: tuple[Path, ...],
    folder: str,
    conflict: ConflictStrategy,
    concurrency: int,
    flatten: bool,
) -> tuple[int, list[TransferItem]]:
    async with CopypartyClient.from_settings(settings) as client:
        inventory = await client.list_folder(folder)
        if inventory.error:
            raise UpstreamUnavailableError(inventory.error)

        candidates = await collect_local_paths(files)
        plans = resolve(candidates, [f.name for f in inventory.files], conflict, folder)
        queue = TransferQueue(
            client,
            concurrency=concurrency,
            history_limit=max(settings.history_limit, len(plans)),
            flatten_uploads=flatten,
        )
        existing = [entry.name for entry in inventory.directories + inventory.files]
        items = await queue.enqueue(plans, folder, existing)
        await queue.join()
        return len(candidates) - len(plans), items


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--folder",
    "-f",
    default="/",
    help="Target folder on the server (default: /)",
)
@click.option(
    "--conflict",
    "-c",
    type=click.Choice([s.value for s in ConflictStrategy]),
    default=ConflictStrategy.RENAME.value,
    help="What to do when a file already exists (default: rename)",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Simultaneous uploads (default: UPLOAD_CONCURRENCY or 4)",
)
@click.option(
    "--flatten",
    is_flag=True,
    help="Upload nested files into the target folder, then move them into place",
)
def upload(
    files: tuple[Path, ...],
    folder: str,
    conflict: str,
    concurrency: int | None,
    flatten: bool,
) -> None:
    """Upload files and folders.

    FILES: One or more local files or folders. Folders keep their layout.

    Examples:

        copyparty-bridge upload report.pdf

        copyparty-bridge upload photos/ --folder /inbox --conflict skip
    """
    settings = get_settings()
    try:
        skipped, items = asyncio.run(
            _upload(
                settings,
                files,
                folder,
                ConflictStrategy(conflict),
                concurrency or default_concurrency(settings),
                flatten,
            )
        )
    except CopypartyError as e:
        _fail(str(e))
        return

    success_count = 0
    for item in items:
        if item.status is TransferStatus.COMPLETE:
            click.echo(click.style("✓ ", fg="green") + f"{item.source_name} -> {item.target_path}")
            success_count += 1
        elif isinstance(item.failure, PartialSuccessError):
            click.echo(click.style("! ", fg="yellow") + f"{item.source_name}: {item.error}", err=True)
        else:
            click.echo(click.style("✗ ", fg="red") + f"{item.source_name}: {item.error}", err=True)

    if skipped:
        click.echo(f"Skipped {skipped} existing file(s).")

    total = len(items)
    if success_count == total:
        click.echo(click.style(f"\nAll {total} file(s) uploaded successfully!", fg="green"))
    else:
        click.echo(f"\n{success_count}/{total} file(s) uploaded.", err=True)
        sys.exit(1)


@main.command()
@click.argument("parent")
@click.argument("name")
def mkdir(parent: str, name: str) -> None:
    """Create folder NAME inside PARENT.

    Examples:

        copyparty-bridge mkdir /photos 2024
    """

    async def run() -> str:
        async with CopypartyClient.from_settings(get_settings()) as client:
            return await client.mkdir(parent, name)

    try:
        created = asyncio.run(run())
    except CopypartyError as e:
        _fail(str(e))
        return
    click.echo(click.style(f"Created folder: {created}", fg="green"))


@main.command("rm")
@click.argument("targets", nargs=-1, required=True)
def remove(targets: tuple[str, ...]) -> None:
    """Delete files or folders, stopping at the first failure.

    Examples:

        copyparty-bridge rm /old.txt /tmp/cache
    """

    async def run() -> list[str]:
        async with CopypartyClient.from_settings(get_settings()) as client:
            return await client.delete_many(list(targets))

    try:
        deleted = asyncio.run(run())
    except CopypartyError as e:
        _fail(str(e))
        return
    for target in deleted:
        click.echo(click.style("Deleted: ", fg="green") + target)


@main.command("mv")
@click.argument("sources", nargs=-1, required=True)
@click.argument("destination")
def move(sources: tuple[str, ...], destination: str) -> None:
    """Move SOURCES into the DESTINATION folder.

    Examples:

        copyparty-bridge mv /inbox/a.txt /inbox/b.txt /archive
    """

    async def run() -> list[str]:
        async with CopypartyClient.from_settings(get_settings()) as client:
            return await client.move_many(list(sources), destination)

    try:
        moved = asyncio.run(run())
    except CopypartyError as e:
        _fail(str(e))
        return
    for source in moved:
        click.echo(click.style("Moved: ", fg="green") + f"{source} -> {destination}")


@main.command()
@click.argument("path")
@click.argument("new_name")
def rename(path: str, new_name: str) -> None:
    """Rename PATH to NEW_NAME within its folder."""

    async def run() -> str:
        async with CopypartyClient.from_settings(get_settings()) as client:
            return await client.rename(path, new_name)

    try:
        renamed = asyncio.run(run())
    except CopypartyError as e:
        _fail(str(e))
        return
    click.echo(click.style("Renamed: ", fg="green") + f"{path} -> {renamed}")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
@click.option("--port", default=8000, type=int, help="Bind port (default: 8000)")
def serve(host: str, port: int) -> None:
    """Run the HTTP file-action and inventory API."""
    import uvicorn

    from copyparty_bridge.api import create_app

    uvicorn.run(create_app(), host=host, port=port)


def _format_size(size_bytes: int) -> str:
    """Format file size in human-readable form."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}" if unit != "B" else f"{size_bytes} {unit}"
        size_bytes /= 1024  # type: ignore[assignment]
    return f"{size_bytes:.1f} TB"


if __name__ == "__main__":
    main()
