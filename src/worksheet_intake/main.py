"""CLI entrypoint for worksheet-intake."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from worksheet_intake import __version__
from worksheet_intake.config import RunMode, parse_run_mode
from worksheet_intake.controllers import (
    DiscoverCommand,
    InitCommand,
    IntakeCliController,
    ListCommand,
    ProcessCommand,
    StatusCommand,
    UploadCommand,
)
from worksheet_intake.queue.repository import StoreError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = IntakeCliController()

storage_root_option = click.option(
    "--storage-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Storage root directory. Defaults to `WORKSHEET_INTAKE_STORAGE_ROOT` or `storage`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="worksheet-intake")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline progress to stderr.")
def worksheet_intake(verbose: bool) -> None:
    """Worksheet intake queue and build pipeline CLI."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@worksheet_intake.command("init")
@storage_root_option
def init_storage(storage_root: Path | None) -> None:
    """Create the storage layout and an empty pending list."""

    _emit(lambda: CONTROLLER.init_storage(InitCommand(storage_root=storage_root)))


@worksheet_intake.command("upload")
@storage_root_option
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", default=None, help="Worksheet title, up to 200 characters.")
@click.option("--owner-email", default=None, help="Owner contact email.")
@click.option(
    "--content-type",
    default=None,
    help="Declared MIME type. Guessed from the file name when omitted.",
)
def upload(
    storage_root: Path | None,
    file_path: Path,
    title: str | None,
    owner_email: str | None,
    content_type: str | None,
) -> None:
    """Validate a `.zip` archive and enqueue it as a new worksheet."""

    _emit(
        lambda: CONTROLLER.upload(
            UploadCommand(
                storage_root=storage_root,
                file_path=file_path,
                title=title,
                owner_email=owner_email,
                content_type=content_type,
            ),
        ),
    )


@worksheet_intake.command("status")
@storage_root_option
@click.argument("worksheet_id")
def status(storage_root: Path | None, worksheet_id: str) -> None:
    """Show merged metadata and queue status for one worksheet."""

    _emit(
        lambda: CONTROLLER.status(
            StatusCommand(storage_root=storage_root, worksheet_id=worksheet_id),
        ),
    )


@worksheet_intake.command("list")
@storage_root_option
def list_worksheets(storage_root: Path | None) -> None:
    """List every known worksheet, newest upload first."""

    _emit(lambda: CONTROLLER.list_worksheets(ListCommand(storage_root=storage_root)))


@worksheet_intake.command("discover")
@storage_root_option
def discover(storage_root: Path | None) -> None:
    """Show which worksheets the next batch run would process, and why."""

    _emit(lambda: CONTROLLER.discover(DiscoverCommand(storage_root=storage_root)))


@worksheet_intake.command("process")
@storage_root_option
@click.option("--ws", "worksheet_id", default=None, help="Process only this worksheet id.")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in RunMode], case_sensitive=False),
    default=None,
    help="Transform mode. Defaults to `WORKSHEET_INTAKE_RUN_MODE` or `codex`.",
)
def process(storage_root: Path | None, worksheet_id: str | None, mode: str | None) -> None:
    """Run one batch: claim, build, verify, and publish eligible worksheets."""

    _emit(
        lambda: CONTROLLER.process(
            ProcessCommand(
                storage_root=storage_root,
                worksheet_id=worksheet_id,
                mode=parse_run_mode(mode) if mode else None,
            ),
        ),
    )


def _emit(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (ValueError, StoreError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    worksheet_intake()
