"""Pre-sync negotiation with the server.

Before the sync may start the server capabilities and the identity of the
logged in user are fetched, strictly one after the other. Both must succeed.
"""

import logging
from typing import Any

from .api import DavClient
from .exceptions import BootstrapError, DavSyncError
from .models import Account, BootstrapResult

logger = logging.getLogger(__name__)


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_capabilities(document: dict[str, Any]) -> tuple[dict[str, Any], str]:
    """Extract the capabilities and the server version from an OCS response.

    Args:
        document: Response of the capabilities endpoint

    Returns:
        Tuple of (capabilities, core version string)
    """
    data = _object(_object(document.get("ocs")).get("data"))
    capabilities = _object(data.get("capabilities"))
    status = _object(_object(capabilities.get("core")).get("status"))
    version = status.get("version") or ""
    return capabilities, str(version)


def parse_identity(document: dict[str, Any]) -> tuple[str, str]:
    """Extract user id and display name from the current user response."""
    data = _object(_object(document.get("ocs")).get("data"))
    return str(data.get("id") or ""), str(data.get("display-name") or "")


class BootstrapNegotiator:
    """Fetches capabilities, then identity, and applies them to the account."""

    def __init__(self, account: Account, client: DavClient):
        self.account = account
        self.client = client

    async def negotiate(self) -> BootstrapResult:
        """Run both calls in sequence.

        The identity call is only issued once the capabilities call has
        completed successfully. Nothing is retried here.

        Returns:
            The combined result; each part is stored on the account as soon
            as its call completed

        Raises:
            BootstrapError: With ``step`` set to the call that failed
        """
        try:
            document = await self.client.get_capabilities()
        except DavSyncError as e:
            raise BootstrapError("capabilities", e) from e
        capabilities, version = parse_capabilities(document)
        self.account.capabilities = capabilities
        self.account.server_version = version
        logger.debug(f"Server capabilities {capabilities}")
        logger.info(f"Server version {version or 'unknown'}")

        try:
            document = await self.client.get_user()
        except DavSyncError as e:
            raise BootstrapError("identity", e) from e
        user_id, display_name = parse_identity(document)
        if not user_id:
            raise BootstrapError("identity")
        self.account.dav_user = user_id
        self.account.dav_display_name = display_name
        logger.debug(f"Logged in as {user_id} ({display_name})")

        return BootstrapResult(
            capabilities=capabilities,
            server_version=version,
            user_id=user_id,
            display_name=display_name,
        )
