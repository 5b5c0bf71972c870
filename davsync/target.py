"""Derive the sync target (server url, remote folder) from the target URL."""

import re

import httpx

from .models import SyncTarget
from .utils import normalize_remote_folder

_OWNCLOUD_SCHEME = re.compile(r"^owncloud(s?)://", re.IGNORECASE)


def prepare_target_url(target_url: str, dav_path: str) -> str:
    """Turn user input into the full WebDAV URL of the target folder.

    A missing scheme defaults to ``http``, the ``owncloud(s)://`` schemes are
    mapped to ``http(s)://``, and the dav path is appended unless the URL
    already contains it.

    Args:
        target_url: URL given on the command line
        dav_path: Dav path of the server (e.g. ``remote.php/webdav/``)

    Returns:
        URL ending with ``/`` and containing the dav path

    Examples:
        >>> prepare_target_url("https://cloud.example.com", "remote.php/webdav/")
        'https://cloud.example.com/remote.php/webdav/'
    """
    url = target_url.strip()
    url = _OWNCLOUD_SCHEME.sub(r"http\1://", url)
    if "://" not in url:
        url = "http://" + url
    if not url.endswith("/"):
        url += "/"
    if dav_path not in url:
        url += dav_path
    return url


def build_sync_target(dav_url: str, dav_path: str, user: str) -> SyncTarget:
    """Split the WebDAV URL into server URL and remote folder.

    Args:
        dav_url: URL as returned by :func:`prepare_target_url`
        dav_path: Dav path contained in ``dav_url``
        user: Effective user name after credential resolution

    Returns:
        The immutable sync target
    """
    parsed = httpx.URL(dav_url)
    base_path, _, folder_part = parsed.path.partition("/" + dav_path.strip("/"))

    base = parsed.copy_with(path=base_path.rstrip("/"))
    credential_free = base.copy_with(username="", password="")

    return SyncTarget(
        dav_url=dav_url,
        url=str(base),
        credential_free_url=str(credential_free),
        folder=normalize_remote_folder(folder_part),
        user=user,
    )
