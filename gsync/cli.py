"""CLI interface for GSync."""

import logging
from typing import Any, Optional

import click

from .api import DriveClient
from .auth import OAuthTokenProvider, perform_oauth2_login
from .config import Config, load_config
from .database import Database
from .exceptions import GSyncConfigError, GSyncError
from .output import OutputFormatter
from .sync import SyncEngine, SyncStateStore

logger = logging.getLogger(__name__)


def _require_complete(config: Config) -> None:
    complete, reason = config.is_complete()
    if not complete:
        raise GSyncConfigError(
            f"Configuration is incomplete: {reason}. "
            "Run 'gsync config --help' for more information."
        )


def _create_client(database: Database, config: Config) -> DriveClient:
    if not config.client_id or not config.client_secret:
        raise GSyncConfigError("Client ID and secret are not configured")
    token_provider = OAuthTokenProvider(
        database, config.client_id, config.client_secret
    )
    return DriveClient(token_provider, drive_id=config.drive_id)


def _format_error(e: GSyncError) -> str:
    if e.path is not None and str(e.path) not in str(e):
        return f"{e.path}: {e}"
    return str(e)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option()
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """GSync - sync folders and files to Google Drive while respecting
    gitignore files."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("gsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    if "database" not in ctx.obj:
        try:
            ctx.obj["database"] = Database()
        except GSyncError as e:
            ctx.obj["out"].error(str(e))
            ctx.exit(1)


@main.command("config")
@click.option("--id", "-i", "client_id", help="The Client ID provided by Google")
@click.option(
    "--secret", "-s", "client_secret", help="The Client Secret provided by Google"
)
@click.option(
    "--files", "-f", "input_files", help="The files to sync, comma separated"
)
@click.option("--drive-id", "-d", help="ID of the Shared Drive to sync into")
@click.option(
    "--root-folder", "-r", help="ID of the Drive folder to sync into (default: root)"
)
@click.pass_context
def config_command(
    ctx: Any,
    client_id: Optional[str],
    client_secret: Optional[str],
    input_files: Optional[str],
    drive_id: Optional[str],
    root_folder: Optional[str],
) -> None:
    """Configure GSync.

    Options that are not supplied keep their stored value. The first time,
    the client ID, client secret and files must all be provided.
    """
    out: OutputFormatter = ctx.obj["out"]
    database: Database = ctx.obj["database"]

    try:
        update = Config(
            client_id=client_id,
            client_secret=client_secret,
            input_files=input_files,
            drive_id=drive_id,
            root_folder=root_folder,
        )
        config = update.merge(Config.load(database))
        complete, reason = config.is_complete()
        if not complete:
            out.error(f"Configuration is incomplete: {reason}")
            ctx.exit(1)
        config.save(database)
    except GSyncError as e:
        out.error(_format_error(e))
        ctx.exit(1)

    out.success("Configuration updated!")


@main.command()
@click.pass_context
def show(ctx: Any) -> None:
    """Show the current GSync configuration."""
    out: OutputFormatter = ctx.obj["out"]
    database: Database = ctx.obj["database"]

    try:
        config = load_config(database)
    except GSyncError as e:
        out.error(_format_error(e))
        ctx.exit(1)

    if config.is_empty():
        out.info(
            "GSync is unconfigured. Run 'gsync config --help' for more information."
        )
        return

    secret = config.client_secret
    out.print_summary(
        "Current GSync configuration",
        [
            ("Client ID", config.client_id),
            ("Client Secret", f"{secret[:4]}..." if secret else None),
            ("Input Files", config.input_files),
            ("Drive ID", config.drive_id),
            ("Root Folder", config.root_folder_id),
        ],
    )


@main.command()
@click.pass_context
def login(ctx: Any) -> None:
    """Log in to Google Drive through the browser."""
    out: OutputFormatter = ctx.obj["out"]
    database: Database = ctx.obj["database"]

    def show_url(url: str) -> None:
        click.echo("Please open the following URL:")
        click.echo(f"\n{url}\n")

    try:
        config = load_config(database)
        if not config.client_id or not config.client_secret:
            raise GSyncConfigError(
                "Client ID and secret are not configured. Run 'gsync config' first."
            )
        perform_oauth2_login(
            database, config.client_id, config.client_secret, show_url
        )
    except GSyncError as e:
        out.error(_format_error(e))
        ctx.exit(1)

    out.success("Logged in successfully")


@main.command()
@click.option(
    "--dry-run", is_flag=True, help="Show what would be synced without syncing"
)
@click.pass_context
def sync(ctx: Any, dry_run: bool) -> None:
    """Sync the configured files to Google Drive.

    New files and folders are created, changed files are updated and files
    that disappeared locally are deleted from Drive.
    """
    out: OutputFormatter = ctx.obj["out"]
    database: Database = ctx.obj["database"]

    try:
        config = load_config(database)
        _require_complete(config)
        with _create_client(database, config) as client:
            engine = SyncEngine(
                client,
                SyncStateStore(database),
                output=out,
                root_folder_id=config.root_folder_id,
            )
            stats = engine.sync(config.input_paths, dry_run=dry_run)
    except GSyncError as e:
        out.error(_format_error(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json(stats)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """List the paths GSync is tracking."""
    out: OutputFormatter = ctx.obj["out"]
    database: Database = ctx.obj["database"]

    try:
        records = SyncStateStore(database).all_records()
    except GSyncError as e:
        out.error(_format_error(e))
        ctx.exit(1)

    if not records and not out.json_output:
        out.info("No files have been synced yet.")
        return

    out.print_table(
        "Tracked paths",
        ["Path", "Drive ID", "Modified"],
        [[str(r.path), r.remote_id, r.modification_time] for r in records],
    )


@main.command()
@click.pass_context
def drives(ctx: Any) -> None:
    """List the Shared Drives you have access to."""
    out: OutputFormatter = ctx.obj["out"]
    database: Database = ctx.obj["database"]

    try:
        config = load_config(database)
        _require_complete(config)
        with _create_client(database, config) as client:
            shared_drives = client.get_shared_drives()
    except GSyncError as e:
        out.error(_format_error(e))
        ctx.exit(1)

    out.print_table(
        "Shared Drives",
        ["ID", "Name"],
        [[drive.id, drive.name] for drive in shared_drives],
    )


if __name__ == "__main__":
    main()
