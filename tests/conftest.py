"""Shared fixtures: an in-memory WebDAV/OCS server behind httpx.MockTransport."""

import hashlib
import itertools
from email.utils import formatdate
from urllib.parse import quote, unquote
from xml.sax.saxutils import escape

import httpx
import pytest

from davsync.models import Account, Credentials

SERVER_URL = "https://cloud.example.com"
DAV_ROOT = "/remote.php/webdav/"


class FakeDavServer:
    """Very small ownCloud lookalike.

    Files and folders are kept in dicts keyed by their path relative to the
    WebDAV root. Every change gets the touched resource and all of its
    parent folders a new ETag, like a real server does.
    """

    def __init__(self) -> None:
        self.files: dict[str, dict] = {}
        self.folders: dict[str, str] = {"": "root-0"}
        self.requests: list[tuple[str, str]] = []
        self.capabilities = {
            "core": {"status": {"version": "10.13.0.1"}},
            "files": {"bigfilechunking": True},
        }
        self.user = {"id": "alice", "display-name": "Alice Liddell"}
        self.fail: dict[tuple[str, str], int] = {}
        self._counter = itertools.count(1)

    # helpers used by tests

    def _next_etag(self, path: str) -> str:
        digest = hashlib.md5(path.encode()).hexdigest()[:8]
        return f"{digest}-{next(self._counter)}"

    def _touch_parents(self, path: str) -> None:
        parts = path.split("/")[:-1]
        for i in range(len(parts), -1, -1):
            parent = "/".join(parts[:i])
            if parent in self.folders:
                self.folders[parent] = self._next_etag(parent)

    def add_folder(self, path: str) -> None:
        parts = path.split("/")
        for i in range(1, len(parts) + 1):
            folder = "/".join(parts[:i])
            if folder not in self.folders:
                self.folders[folder] = self._next_etag(folder)
        self._touch_parents(path)

    def add_file(self, path: str, content: bytes, mtime: float = 1700000000) -> None:
        if "/" in path:
            self.add_folder(path.rsplit("/", 1)[0])
        self.files[path] = {
            "content": content,
            "etag": self._next_etag(path),
            "mtime": mtime,
        }
        self._touch_parents(path)

    def remove(self, path: str) -> None:
        prefix = path + "/"
        for name in [p for p in self.files if p == path or p.startswith(prefix)]:
            del self.files[name]
        for name in [p for p in self.folders if p == path or p.startswith(prefix)]:
            del self.folders[name]
        self._touch_parents(path)

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.requests if m == method)

    # request handling

    def _json(self, data: dict, status: int = 100) -> httpx.Response:
        return httpx.Response(
            200,
            json={"ocs": {"meta": {"status": "ok", "statuscode": status}, "data": data}},
        )

    def _entry(self, path: str) -> str:
        href = quote(DAV_ROOT + path)
        if path in self.folders:
            href = href.rstrip("/") + "/"
            props = (
                "<d:resourcetype><d:collection/></d:resourcetype>"
                f'<d:getetag>"{self.folders[path]}"</d:getetag>'
            )
        else:
            info = self.files[path]
            props = (
                "<d:resourcetype/>"
                f'<d:getetag>"{info["etag"]}"</d:getetag>'
                f"<d:getcontentlength>{len(info['content'])}</d:getcontentlength>"
                "<d:getlastmodified>"
                f"{formatdate(info['mtime'], usegmt=True)}"
                "</d:getlastmodified>"
            )
        return (
            f"<d:response><d:href>{escape(href)}</d:href>"
            f"<d:propstat><d:prop>{props}</d:prop>"
            "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )

    def _propfind(self, path: str) -> httpx.Response:
        if path not in self.folders:
            return httpx.Response(404)
        prefix = path + "/" if path else ""
        children = [
            p
            for p in sorted(set(self.folders) | set(self.files))
            if p and p.startswith(prefix) and "/" not in p[len(prefix) :]
        ]
        body = (
            '<?xml version="1.0"?><d:multistatus xmlns:d="DAV:">'
            + "".join(self._entry(p) for p in [path, *children])
            + "</d:multistatus>"
        )
        return httpx.Response(
            207, content=body.encode(), headers={"Content-Type": "application/xml"}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        url_path = unquote(request.url.path)
        if url_path.endswith("ocs/v1.php/cloud/capabilities"):
            self.requests.append(("GET", "capabilities"))
            status = self.fail.get(("GET", "capabilities"))
            if status:
                return httpx.Response(status)
            return self._json({"capabilities": self.capabilities})
        if url_path.endswith("ocs/v1.php/cloud/user"):
            self.requests.append(("GET", "user"))
            status = self.fail.get(("GET", "user"))
            if status:
                return httpx.Response(status)
            return self._json(self.user)

        if not url_path.startswith(DAV_ROOT.rstrip("/")):
            return httpx.Response(404)
        path = url_path[len(DAV_ROOT) :].strip("/")
        method = request.method
        self.requests.append((method, path))

        status = self.fail.get((method, path))
        if status:
            return httpx.Response(status)

        if method == "PROPFIND":
            return self._propfind(path)

        if method == "GET":
            info = self.files.get(path)
            if info is None:
                return httpx.Response(404)
            return httpx.Response(
                200, content=info["content"], headers={"ETag": f'"{info["etag"]}"'}
            )

        parent = path.rsplit("/", 1)[0] if "/" in path else ""
        if method == "PUT":
            if parent not in self.folders:
                return httpx.Response(409)
            mtime = float(request.headers.get("X-OC-Mtime", "0"))
            self.add_file(path, request.content, mtime=mtime)
            etag = self.files[path]["etag"]
            return httpx.Response(201, headers={"OC-ETag": f'"{etag}"'})

        if method == "MKCOL":
            if path in self.folders or path in self.files:
                return httpx.Response(405)
            if parent not in self.folders:
                return httpx.Response(409)
            self.add_folder(path)
            return httpx.Response(201)

        if method == "DELETE":
            if path not in self.folders and path not in self.files:
                return httpx.Response(404)
            self.remove(path)
            return httpx.Response(204)

        return httpx.Response(405)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def dav_server() -> FakeDavServer:
    """In-memory server with an empty root folder."""
    return FakeDavServer()


@pytest.fixture
def account() -> Account:
    """Account of the fake server."""
    return Account(
        url=SERVER_URL,
        dav_path="remote.php/webdav/",
        credentials=Credentials(user="alice", password="secret"),
    )
