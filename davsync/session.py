"""Orchestration of one sync session.

A session turns the parsed command line options into a configured account,
negotiates with the server and then hands over to the supervised sync
engine. The steps run in a fixed order:

1. resolve credentials and derive the sync target
2. parse the manual proxy
3. compose and load the exclude lists
4. fetch capabilities and identity from the server
5. reconcile the selective sync list with the journal
6. run the sync engine, restarting it while a follow-up sync is needed
"""

import logging
from pathlib import Path
from typing import Callable, Optional

import httpx

from .api import DavClient
from .bootstrap import BootstrapNegotiator
from .config import SessionOptions, config
from .credentials import (
    lookup_netrc,
    prompt_password,
    prompt_user,
    resolve_credentials,
)
from .exceptions import DavConfigError
from .exclude import ExcludedFiles, compose_exclude_files
from .journal import SyncJournal
from .models import Account, BootstrapResult, Credentials, SyncTarget
from .proxy import parse_proxy
from .selective_sync import read_unsynced_folders, selective_sync_fixup
from .supervisor import RetrySupervisor, SupervisorOutcome
from .sync.engine import SyncEngine
from .sync.progress import SyncProgressInfo
from .target import build_sync_target, prepare_target_url

logger = logging.getLogger(__name__)


def _url_credentials(url: str) -> Credentials:
    parsed = httpx.URL(url)
    return Credentials(user=parsed.username, password=parsed.password)


class SyncSession:
    """Prepares and runs a single sync session.

    Args:
        options: Parsed command line options
        progress_callback: Receives transmission progress of the engine
        transport: Optional httpx transport for the server connection
        ask_user: Prompt for a missing user name
        ask_password: Prompt for a missing password
    """

    def __init__(
        self,
        options: SessionOptions,
        progress_callback: Optional[Callable[[SyncProgressInfo], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ask_user: Callable[[], str] = prompt_user,
        ask_password: Callable[[str], str] = prompt_password,
    ):
        self.options = options
        self.progress_callback = progress_callback
        self.transport = transport
        self.ask_user = ask_user
        self.ask_password = ask_password

        self.target: Optional[SyncTarget] = None
        self.account: Optional[Account] = None
        self.excluded = ExcludedFiles()
        self.bootstrap_result: Optional[BootstrapResult] = None

    # =========================
    # Preparation
    # =========================

    def prepare(self) -> None:
        """Run the local preparation steps.

        These may prompt for credentials, so they run before any progress
        display is shown.

        Raises:
            DavConfigError: On a malformed target URL, proxy or exclude list
        """
        self.resolve_target()
        self.configure_proxy()
        self.load_excludes()

    def resolve_target(self) -> SyncTarget:
        """Resolve credentials and derive the sync target from the URL.

        Raises:
            DavConfigError: If the target URL cannot be parsed
        """
        options = self.options
        dav_url = prepare_target_url(options.target_url, options.effective_dav_path)
        try:
            url_credentials = _url_credentials(dav_url)
        except httpx.InvalidURL as e:
            raise DavConfigError(f"Invalid target URL: {e}") from e

        netrc_credentials = None
        if options.use_netrc:
            netrc_credentials = lookup_netrc(httpx.URL(dav_url).host)

        credentials = resolve_credentials(
            url_credentials,
            cli_user=options.user,
            cli_password=options.password,
            netrc_credentials=netrc_credentials,
            interactive=options.interactive,
            ask_user=self.ask_user,
            ask_password=self.ask_password,
        )
        self.target = build_sync_target(
            dav_url, options.effective_dav_path, credentials.user
        )
        self.account = Account(
            url=self.target.credential_free_url,
            dav_path=options.effective_dav_path,
            credentials=credentials,
            trust_ssl=options.trust_ssl,
        )
        logger.debug(
            f"Syncing {options.source_dir} with {self.target.credential_free_url}"
            f" folder {self.target.folder} as {credentials.user or '<no user>'}"
        )
        return self.target

    def configure_proxy(self) -> None:
        """Apply ``--httpproxy`` to the account.

        Raises:
            ProxyFormatError: If the proxy string is malformed
        """
        assert self.account is not None
        if self.options.proxy:
            self.account.proxy = parse_proxy(self.options.proxy)
            logger.debug(f"Using proxy {self.account.proxy.url}")

    def load_excludes(self) -> None:
        """Register and load the exclude lists.

        Raises:
            ExcludeListError: If a list cannot be read or parsed
        """
        for path in compose_exclude_files(
            self.options.exclude_file, config.system_exclude_file
        ):
            self.excluded.add_exclude_file_path(path)
        self.excluded.reload_exclude_files()

    def create_client(self) -> DavClient:
        assert self.account is not None and self.target is not None
        return DavClient(
            self.account, folder=self.target.folder, transport=self.transport
        )

    @property
    def journal_path(self) -> Path:
        assert self.target is not None
        return SyncJournal.path_for(
            self.options.source_dir,
            self.target.credential_free_url,
            self.target.folder,
            self.target.user,
        )

    def fixup_selective_sync(self) -> set[str]:
        """Store the unsynced folders in the journal.

        Returns:
            Folders scheduled for remote discovery
        """
        folders = read_unsynced_folders(self.options.unsynced_folders_file)
        journal_path = self.journal_path
        return selective_sync_fixup(lambda: SyncJournal.open(journal_path), folders)

    # =========================
    # Sync
    # =========================

    def _log_sync_error(self, message: str) -> None:
        logger.warning(f"Sync error: {message}")

    def create_engine(self, client: DavClient) -> SyncEngine:
        return SyncEngine(
            client,
            source_dir=self.options.source_dir,
            journal_path=self.journal_path,
            excluded=self.excluded,
            ignore_hidden_files=self.options.ignore_hidden_files,
            uplimit=self.options.uplimit,
            downlimit=self.options.downlimit,
            progress_callback=self.progress_callback,
            error_callback=self._log_sync_error,
        )

    async def run(self) -> SupervisorOutcome:
        """Run all steps of the session.

        Returns:
            Outcome of the supervised sync

        Raises:
            DavConfigError: On a malformed proxy or exclude list
            BootstrapError: If the server cannot be negotiated with
        """
        if self.account is None:
            self.prepare()

        async with self.create_client() as client:
            assert self.account is not None
            self.bootstrap_result = await BootstrapNegotiator(
                self.account, client
            ).negotiate()

            self.fixup_selective_sync()

            supervisor = RetrySupervisor(
                lambda: self.create_engine(client),
                max_restarts=self.options.max_sync_retries,
            )
            outcome = await supervisor.run()

        logger.info(
            f"Sync {'finished' if outcome.success else 'failed'} after "
            f"{outcome.invocations} run(s)"
        )
        return outcome
