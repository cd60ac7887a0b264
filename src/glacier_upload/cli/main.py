"""CLI interface for Glacier multipart archive uploads."""

import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from ..core.api import GlacierUploadAPI
from ..core.cancellation import CancellationToken
from ..core.config import UploaderConfig
from ..core.partition import MIB
from ..core.progress import ProgressReporter, format_duration, human_mb_per_s
from ..core.treehash import tree_hash_file

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

EXIT_CANCELLED = 130


def format_size(size: int) -> str:
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    elif size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


class RichProgressReporter(ProgressReporter):
    """Render progress events on a rich progress bar."""

    def __init__(self, progress: Progress, total_bytes: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.bar = progress
        self.task = progress.add_task(
            "Uploading", total=total_bytes, part="", eta="?"
        )

    def report(self, stats) -> None:
        super().report(stats)
        event = stats.event
        self.bar.update(
            self.task,
            completed=event.skipped_bytes + event.bytes_done,
            part=f"part {event.part_number}/{event.total_parts}"
            + (f" (attempt {event.attempt})" if event.attempt > 1 else ""),
            eta=format_duration(stats.eta_seconds),
        )


@contextmanager
def cancel_on_interrupt(token: CancellationToken):
    """Turn Ctrl-C into a cancellation request for the duration of the block."""

    def handler(signum, frame):
        console.print("\n[yellow]Stopping after the current request...[/yellow]")
        token.cancel("interrupted by user")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def get_api(ctx) -> GlacierUploadAPI:
    """Build the API from the CLI context."""
    return GlacierUploadAPI(ctx.obj["config"], transport=ctx.obj.get("transport"))


@click.group()
@click.option("--region", envvar="GLACIER_UPLOAD_REGION", help="AWS region of the vault")
@click.option("--profile", envvar="GLACIER_UPLOAD_PROFILE", help="AWS credentials profile")
@click.option(
    "--account-id",
    envvar="GLACIER_UPLOAD_ACCOUNT_ID",
    help="Vault owner account ID (default: the caller's account)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, region, profile, account_id, verbose):
    """Glacier Upload CLI - Resumable multipart archive uploads."""
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = UploaderConfig.from_env(
                region=region, profile=profile, account_id=account_id
            )
        except ValueError as e:
            console.print(f"[red]Invalid configuration: {e}[/red]")
            sys.exit(1)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(ctx.obj["config"].log_level)


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--vault", "vault_name", required=True, help="Target vault name")
@click.option("--description", help="Archive description (default: file name)")
@click.option(
    "--part-size",
    type=int,
    default=None,
    help="Part size in MiB, a power of two (default: the upload's own, or auto-detected from file size)",
)
@click.option("--upload-id", help="Continue an existing multipart upload")
@click.option(
    "--resume-from-part",
    type=int,
    default=1,
    show_default=True,
    help="First part to send when continuing an upload",
)
@click.option(
    "--retries",
    type=int,
    envvar="GLACIER_UPLOAD_RETRIES",
    default=None,
    help="Attempts per part before giving up",
)
@click.pass_context
def upload(ctx, local_path, vault_name, description, part_size, upload_id, resume_from_part, retries):
    """Upload a file as an archive to a vault."""
    try:
        if retries is not None:
            ctx.obj["config"] = ctx.obj["config"].model_copy(update={"retry_budget": retries})
        api = get_api(ctx)

        description = description or Path(local_path).name
        part_bytes = part_size * MIB if part_size else None
        planned_size, planned_parts = api.plan(
            local_path, part_bytes, vault_name=vault_name, upload_id=upload_id
        )
        total_bytes = Path(local_path).stat().st_size

        console.print(
            f"Uploading [cyan]{local_path}[/cyan] ({format_size(total_bytes)}) to vault "
            f"[green]{vault_name}[/green] in {planned_parts} parts of "
            f"{planned_size // MIB} MiB"
        )

        token = CancellationToken()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TextColumn("{task.fields[part]}"),
            TextColumn("ETA {task.fields[eta]}"),
            console=console,
        ) as progress, cancel_on_interrupt(token):
            reporter = RichProgressReporter(progress, total_bytes)
            result = api.upload_archive(
                local_path,
                vault_name,
                description=description,
                part_size=planned_size,
                upload_id=upload_id,
                resume_from_part=resume_from_part,
                progress=reporter,
                cancel_token=token,
            )

        if result.success:
            console.print("[green]✓[/green] Upload completed successfully!")
            table = Table(title="Archive")
            table.add_column("Field", style="cyan")
            table.add_column("Value", style="green")
            table.add_row("Archive ID", result.archive_id or "N/A")
            table.add_row("Tree hash", result.archive_checksum or "N/A")
            table.add_row("Size", format_size(result.total_bytes))
            table.add_row("Duration", format_duration(result.elapsed_seconds))
            if result.elapsed_seconds > 0:
                speed = human_mb_per_s(result.transferred_bytes / result.elapsed_seconds)
                table.add_row("Speed", f"{speed:.2f} MB/s")
            console.print(table)
            return

        done = result.skipped_parts + result.transferred_parts
        resume_hint = (
            f"glacier-upload upload {local_path} --vault {vault_name} "
            f"--part-size {result.part_size // MIB} --upload-id {result.upload_id} "
            f"--resume-from-part {result.next_part}"
        )
        if result.cancelled:
            console.print(
                f"[yellow]Upload cancelled after {done}/{result.total_parts} parts "
                f"({format_size(result.transferred_bytes)} sent this run).[/yellow]"
            )
            console.print(f"Resume with: [bold]{resume_hint}[/bold]")
            console.print(
                f"Or discard it with: [bold]glacier-upload abort --vault {vault_name} "
                f"--upload-id {result.upload_id}[/bold]"
            )
            sys.exit(EXIT_CANCELLED)

        console.print(
            f"[red]Upload failed at part {result.next_part} after {done}/{result.total_parts} "
            f"parts: {result.last_error}[/red]"
        )
        console.print(f"Resume with: [bold]{resume_hint}[/bold]")
        sys.exit(1)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--vault", "vault_name", required=True, help="Vault name")
@click.option("--upload-id", required=True, help="Multipart upload ID")
@click.option(
    "--fail-if-missing",
    is_flag=True,
    help="Exit with an error if the upload does not exist",
)
@click.pass_context
def abort(ctx, vault_name, upload_id, fail_if_missing):
    """Abort a multipart upload."""
    try:
        api = get_api(ctx)
        api.abort_upload(vault_name, upload_id, fail_if_missing=fail_if_missing)
        console.print(f"[green]✓[/green] Aborted upload {upload_id}")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--part-size", type=int, default=None, help="Part size in MiB")
@click.pass_context
def plan(ctx, local_path, part_size):
    """Show how a file would be split into parts."""
    try:
        api = get_api(ctx)
        size, parts = api.plan(local_path, part_size * MIB if part_size else None)
        total_bytes = Path(local_path).stat().st_size
        last = total_bytes - size * (parts - 1)

        table = Table(title=f"Upload plan for {Path(local_path).name}")
        table.add_column("Field", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Archive size", f"{total_bytes} bytes ({format_size(total_bytes)})")
        table.add_row("Part size", f"{size // MIB} MiB")
        table.add_row("Parts", str(parts))
        table.add_row("Last part", f"{last} bytes")
        console.print(table)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
def treehash(local_path):
    """Print the SHA-256 tree hash of a file."""
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Hashing...", total=None)
            checksum = tree_hash_file(local_path)
            progress.update(task, completed=1)
        click.echo(checksum)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command("list-uploads")
@click.option("--vault", "vault_name", required=True, help="Vault name")
@click.pass_context
def list_uploads(ctx, vault_name):
    """List in-progress multipart uploads."""
    try:
        api = get_api(ctx)
        uploads = api.list_uploads(vault_name)

        if not uploads:
            console.print("[yellow]No multipart uploads in progress.[/yellow]")
            return

        table = Table(title=f"Multipart uploads in {vault_name}")
        table.add_column("Upload ID", style="cyan", overflow="fold")
        table.add_column("Description", style="green")
        table.add_column("Part size", justify="right")
        table.add_column("Created", style="blue")

        for upload in uploads:
            part_size = upload.get("part_size")
            table.add_row(
                upload["upload_id"],
                upload.get("description") or "N/A",
                f"{int(part_size) // MIB} MiB" if part_size else "N/A",
                str(upload.get("created") or "N/A"),
            )

        console.print(table)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--vault", "vault_name", required=True, help="Vault name")
@click.option("--upload-id", required=True, help="Multipart upload ID")
@click.pass_context
def status(ctx, vault_name, upload_id):
    """Show the parts already uploaded and where to resume."""
    try:
        api = get_api(ctx)
        resume_from, parts = api.resume_point(vault_name, upload_id)
        console.print(f"Upload [cyan]{upload_id}[/cyan]: {len(parts)} parts accepted")
        console.print(f"Resume from part: [green]{resume_from}[/green]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def main():
    """Main entry point."""
    cli()
