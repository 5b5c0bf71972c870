"""CLI interface for davsync."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import click

from . import __version__
from .cli_progress import TransmissionProgressDisplay
from .config import DEFAULT_MAX_SYNC_RETRIES, SessionOptions
from .exceptions import BootstrapError, DavConfigError, DavSyncError
from .session import SyncSession
from .supervisor import SupervisorOutcome

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at INFO
HTTP_LOGGERS = ("httpx", "httpcore")


def setup_logging(silent: bool, debug: bool) -> None:
    """Configure logging once for the whole process.

    Args:
        silent: Suppress all log output, including that of the HTTP libraries
        debug: Log debug messages
    """
    if silent:
        for name in ("", "davsync", *HTTP_LOGGERS):
            logging.getLogger(name).setLevel(logging.CRITICAL + 1)
        return

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S")
    logging.getLogger("davsync").setLevel(level)
    # Request lines of the HTTP libraries only with --logdebug
    http_level = logging.DEBUG if debug else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)


def run_session(session: SyncSession, show_progress: bool) -> SupervisorOutcome:
    """Prepare the session and run it on a fresh event loop."""
    session.prepare()
    if not show_progress:
        return asyncio.run(session.run())

    with TransmissionProgressDisplay() as display:
        session.progress_callback = display.handle_event
        return asyncio.run(session.run())


@click.command(context_settings={"help_option_names": ["--help"]})
@click.argument(
    "source_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.argument("target_url")
@click.option("--silent", "-s", is_flag=True, help="Don't be so verbose")
@click.option(
    "--httpproxy",
    metavar="PROXY",
    help='Specify a http proxy to use, in the form "http://server:port"',
)
@click.option("--trust", is_flag=True, help="Trust the SSL certification")
@click.option(
    "--exclude",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Exclude list file",
)
@click.option(
    "--unsyncedfolders",
    type=click.Path(dir_okay=False, path_type=Path),
    help="File containing the list of unsynced remote folders (selective sync)",
)
@click.option("--user", "-u", help="Use NAME as the login name", metavar="NAME")
@click.option("--password", "-p", help="Use PASS as password", metavar="PASS")
@click.option("-n", "use_netrc", is_flag=True, help="Use netrc (5) for login")
@click.option(
    "--non-interactive",
    is_flag=True,
    help="Do not block execution with interaction",
)
@click.option("--davpath", help="Custom themed dav path")
@click.option(
    "--max-sync-retries",
    type=click.IntRange(min=0),
    default=DEFAULT_MAX_SYNC_RETRIES,
    show_default=True,
    help="Retries maximum N times",
)
@click.option(
    "--uplimit",
    type=click.IntRange(min=0),
    default=0,
    help="Limit the upload speed of files to N KB/s",
)
@click.option(
    "--downlimit",
    type=click.IntRange(min=0),
    default=0,
    help="Limit the download speed of files to N KB/s",
)
@click.option(
    "-h",
    "sync_hidden",
    is_flag=True,
    help="Sync hidden files, do not ignore them",
)
@click.option("--logdebug", is_flag=True, help="More verbose logging")
@click.version_option(__version__, "--version", "-v", prog_name="davsync")
@click.pass_context
def main(
    ctx: Any,
    source_dir: Path,
    target_url: str,
    silent: bool,
    httpproxy: Optional[str],
    trust: bool,
    exclude: Optional[Path],
    unsyncedfolders: Optional[Path],
    user: Optional[str],
    password: Optional[str],
    use_netrc: bool,
    non_interactive: bool,
    davpath: Optional[str],
    max_sync_retries: int,
    uplimit: int,
    downlimit: int,
    sync_hidden: bool,
    logdebug: bool,
) -> None:
    """davsync - command line sync client.

    Syncs SOURCE_DIR with the folder at TARGET_URL. A proxy can be set
    manually using --httpproxy.
    """
    setup_logging(silent=silent, debug=logdebug)

    options = SessionOptions(
        source_dir=source_dir.resolve(),
        target_url=target_url,
        user=user,
        password=password,
        proxy=httpproxy,
        trust_ssl=trust,
        use_netrc=use_netrc,
        interactive=not non_interactive,
        ignore_hidden_files=not sync_hidden,
        exclude_file=exclude,
        unsynced_folders_file=unsyncedfolders,
        dav_path=davpath,
        max_sync_retries=max_sync_retries,
        uplimit=uplimit * 1000,
        downlimit=downlimit * 1000,
        silent=silent,
        log_debug=logdebug,
    )

    try:
        outcome = run_session(SyncSession(options), show_progress=not silent)
    except KeyboardInterrupt:
        click.echo("\nSync cancelled by user", err=True)
        ctx.exit(130)  # Standard exit code for SIGINT
    except BootstrapError as e:
        if e.step == "capabilities":
            click.echo("Error connecting to server", err=True)
        else:
            click.echo("Error fetching the user identity from the server", err=True)
        if e.cause is not None:
            click.echo(f"  {e.cause}", err=True)
        ctx.exit(1)
    except DavConfigError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    except DavSyncError as e:
        click.echo(f"Sync failed: {e}", err=True)
        ctx.exit(1)

    ctx.exit(outcome.exit_code)


if __name__ == "__main__":
    main()
