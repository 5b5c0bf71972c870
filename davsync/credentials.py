"""Credential resolution for the sync session.

Credentials are looked up in this order, where a later source overrides an
earlier one if it provides a non-empty value:

1. user and password embedded in the target URL
2. ``--user`` / ``--password`` options
3. the netrc entry of the server host (with ``-n``)
4. an interactive prompt (unless ``--non-interactive``)
"""

import logging
import netrc
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, TextIO

import click

from .config import config
from .models import Credentials

try:
    import termios
except ImportError:  # pragma: no cover - Windows
    termios = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


def lookup_netrc(host: str, path: Optional[Path] = None) -> Optional[Credentials]:
    """Look up the login pair for ``host`` in a netrc file.

    Args:
        host: Host name of the server
        path: netrc file to read (defaults to ``$NETRC`` or ``~/.netrc``)

    Returns:
        Credentials of the matching machine entry, or None if the file is
        missing, unparsable or has no entry for the host
    """
    netrc_path = path or config.netrc_path
    try:
        auth = netrc.netrc(str(netrc_path)).authenticators(host)
    except FileNotFoundError:
        logger.debug(f"No netrc file at {netrc_path}")
        return None
    except (netrc.NetrcParseError, OSError) as e:
        logger.warning(f"Could not read netrc file {netrc_path}: {e}")
        return None

    if auth is None:
        logger.debug(f"No netrc entry for host {host}")
        return None
    login, _account, password = auth
    return Credentials(user=login or "", password=password or "")


@contextmanager
def echo_disabled(stream: Optional[TextIO] = None) -> Iterator[None]:
    """Disable terminal echo on ``stream`` for the duration of the block.

    The previous terminal mode is restored on every exit path. When the
    stream is not a terminal nothing is changed.
    """
    stream = stream or sys.stdin
    if termios is None or not stream.isatty():
        yield
        return

    fd = stream.fileno()
    old_attrs = termios.tcgetattr(fd)
    new_attrs = termios.tcgetattr(fd)
    new_attrs[3] &= ~termios.ECHO
    termios.tcsetattr(fd, termios.TCSANOW, new_attrs)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSANOW, old_attrs)


def prompt_user() -> str:
    """Ask for the user name on standard input."""
    click.echo("Please enter user name: ", nl=False)
    return sys.stdin.readline().rstrip("\r\n")


def prompt_password(user: str) -> str:
    """Ask for the password of ``user`` without echoing it."""
    with echo_disabled(sys.stdin):
        click.echo(f"Password for user {user}: ", nl=False)
        password = sys.stdin.readline().rstrip("\r\n")
    click.echo("")
    return password


def resolve_credentials(
    url_credentials: Credentials,
    cli_user: Optional[str] = None,
    cli_password: Optional[str] = None,
    netrc_credentials: Optional[Credentials] = None,
    interactive: bool = True,
    ask_user: Callable[[], str] = prompt_user,
    ask_password: Callable[[str], str] = prompt_password,
) -> Credentials:
    """Resolve the effective user and password.

    Args:
        url_credentials: User and password embedded in the target URL
        cli_user: Value of ``--user``
        cli_password: Value of ``--password``
        netrc_credentials: Result of the netrc lookup, None on a miss
        interactive: Whether the user may be prompted
        ask_user: Prompt used for a missing user name
        ask_password: Prompt used for a missing password

    Returns:
        The resolved credentials. Fields may stay empty in non-interactive
        mode; the server rejects such a session later.
    """
    user = url_credentials.user
    password = url_credentials.password

    if cli_user:
        user = cli_user
    if cli_password:
        password = cli_password

    if netrc_credentials is not None:
        if netrc_credentials.user:
            user = netrc_credentials.user
        if netrc_credentials.password:
            password = netrc_credentials.password

    if interactive:
        if not user:
            user = ask_user()
        if not password:
            password = ask_password(user)

    return Credentials(user=user, password=password)
