"""Connection details and request construction for a copyparty backend.

Every outbound request goes through :func:`send`, which applies the
connection's credentials, cookie and timeout. Mutating requests also get
``Origin``/``Referer`` forced to the upstream origin so copyparty's CSRF
check accepts WebDAV verbs proxied from another origin.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from copyparty_bridge import paths
from copyparty_bridge.config import DEFAULT_TIMEOUT_MS, Settings
from copyparty_bridge.exceptions import NetworkError, NotConfiguredError, RequestTimeoutError

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})
TIMEOUT_MESSAGE = "Copyparty request timed out."


@dataclass(frozen=True)
class RemoteConnection:
    """Immutable description of one copyparty backend.

    Built from settings at the start of each operation and passed explicitly;
    nothing about it is cached between operations.
    """

    base_url: str
    root_path: str = "/"
    password: str = ""
    cookie: str = ""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    public_base_url: str = ""

    @property
    def timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self.timeout_ms / 1000

    @property
    def origin(self) -> str:
        """Scheme and host of the upstream backend, e.g. ``http://localhost:3923``."""
        parts = urlsplit(self.base_url)
        return f"{parts.scheme}://{parts.netloc}"

    def upstream_path(self, virtual_path: str) -> str:
        """Translate a virtual path into the backend's rooted path space."""
        return paths.join(self.root_path, paths.normalize(virtual_path))

    def scoped_url(self, virtual_path: str, *, base_url: str | None = None) -> str:
        """Build the authenticated URL for ``virtual_path`` beneath the root."""
        url = url_for_path(base_url or self.base_url, self.upstream_path(virtual_path))
        return _with_password(url, self.password)

    def listing_url(self, virtual_path: str) -> str:
        return add_query(self.scoped_url(virtual_path), [("ls", "")])

    def upload_url(self, virtual_path: str, request_origin: str | None = None) -> str:
        """Build the per-directory upload URL on the public base URL."""
        return self.scoped_url(virtual_path, base_url=self.public_base(request_origin))

    def public_base(self, request_origin: str | None = None) -> str:
        return resolve_public_base_url(self.base_url, request_origin, self.public_base_url)

    def cookie_header(self, request_cookie: str | None = None) -> str:
        """Merge the configured cookie with a cookie forwarded from the caller."""
        return "; ".join(part for part in (self.cookie, request_cookie or "") if part)


def connection_from_settings(settings: Settings) -> RemoteConnection:
    """Build a RemoteConnection, raising NotConfiguredError without a base URL."""
    if not settings.base_url:
        raise NotConfiguredError("Copyparty is not configured.")
    return RemoteConnection(
        base_url=settings.base_url,
        root_path=paths.normalize(settings.root_path),
        password=settings.password,
        cookie=settings.cookie,
        timeout_ms=settings.timeout_ms,
        public_base_url=settings.public_base_url,
    )


def is_loopback_host(hostname: str) -> bool:
    normalized = hostname.lower()
    return normalized in LOOPBACK_HOSTS or normalized.endswith(".localhost")


def resolve_public_base_url(
    base_url: str, request_origin: str | None = None, override: str | None = None
) -> str:
    """Resolve the base URL that browsers should use to reach copyparty.

    An explicit override always wins. Otherwise, when the backend only knows
    itself as a loopback host, swap in the hostname the caller reached us on,
    keeping scheme, port and path. Parse failures fall back to ``base_url``.
    """
    if override:
        return override
    if not request_origin:
        return base_url

    try:
        internal = urlsplit(base_url)
        if not internal.hostname or not is_loopback_host(internal.hostname):
            return base_url
        incoming_host = urlsplit(request_origin).hostname
        if not incoming_host:
            return base_url
        port = internal.port
    except ValueError:
        return base_url

    host = f"[{incoming_host}]" if ":" in incoming_host else incoming_host
    netloc = f"{host}:{port}" if port else host
    userinfo, sep, _ = internal.netloc.rpartition("@")
    if sep:
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit(internal._replace(netloc=netloc))


def should_forward_cookies(request_url: str, base_url: str | None) -> bool:
    """Only forward browser cookies when the caller shares copyparty's scheme and host."""
    if not base_url:
        return False
    try:
        incoming = urlsplit(request_url)
        upstream = urlsplit(base_url)
        return bool(incoming.hostname) and (
            incoming.scheme == upstream.scheme and incoming.hostname == upstream.hostname
        )
    except ValueError:
        return False


def strip_query(url: str) -> str:
    """Drop the query string and fragment from ``url``."""
    return urlunsplit(urlsplit(url)._replace(query="", fragment=""))


def ensure_trailing_slash(url: str) -> str:
    parts = urlsplit(url)
    if parts.path.endswith("/"):
        return url
    return urlunsplit(parts._replace(path=parts.path + "/"))


def url_for_path(base_url: str, upstream_path: str) -> str:
    parts = urlsplit(base_url)
    full_path = paths.join(parts.path or "/", upstream_path)
    return urlunsplit(parts._replace(path=quote(full_path, safe="/"), query="", fragment=""))


def _with_password(url: str, password: str) -> str:
    if not password:
        return url
    return add_query(url, [("pw", password)])


def add_query(url: str, params: list[tuple[str, str]]) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    keys = {key for key, _ in params}
    query = [(key, value) for key, value in query if key not in keys] + params
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_headers(
    connection: RemoteConnection,
    url: str,
    headers: dict[str, str] | None = None,
    request_cookie: str | None = None,
    *,
    mutating: bool = True,
) -> dict[str, str]:
    """Build outbound headers: caller headers, forced origin, merged cookie."""
    request_headers: dict[str, str] = {}
    for key, value in (headers or {}).items():
        if mutating and key.lower() in ("origin", "referer"):
            continue
        request_headers[key] = value

    if mutating:
        # Requests proxied for a browser can carry the browser's Origin;
        # copyparty's CSRF check only accepts its own.
        target = urlsplit(url)
        target_origin = f"{target.scheme}://{target.netloc}"
        request_headers["Origin"] = target_origin
        request_headers["Referer"] = f"{target_origin}/"

    cookie = connection.cookie_header(request_cookie)
    if cookie:
        request_headers["Cookie"] = cookie
    return request_headers


async def send(
    client: httpx.AsyncClient,
    connection: RemoteConnection,
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    request_cookie: str | None = None,
    mutating: bool = True,
    timeout: httpx.Timeout | None = None,
    **request_kwargs: Any,
) -> httpx.Response:
    """Issue one request against copyparty.

    Args:
        client: Shared async HTTP client
        connection: Backend connection details
        method: HTTP verb (GET, DELETE, MOVE, MKCOL, POST)
        url: Fully built request URL
        headers: Extra headers for this request
        request_cookie: Cookie forwarded from the inbound request, if allowed
        mutating: Force Origin/Referer to the upstream origin
        timeout: Override the connection's per-request timeout
        **request_kwargs: Passed through to ``httpx.AsyncClient.request``

    Returns:
        The response, whatever its status code

    Raises:
        RequestTimeoutError: If the request exceeded its deadline
        NetworkError: On any other transport failure
    """
    request_headers = build_headers(
        connection, url, headers, request_cookie, mutating=mutating
    )
    logger.debug(f"{method} {strip_query(url)}")
    try:
        return await client.request(
            method,
            url,
            headers=request_headers,
            timeout=timeout if timeout is not None else connection.timeout,
            **request_kwargs,
        )
    except httpx.TimeoutException as e:
        logger.warning(f"{method} {strip_query(url)} timed out after {connection.timeout_ms} ms")
        raise RequestTimeoutError(TIMEOUT_MESSAGE) from e
    except httpx.TransportError as e:
        raise NetworkError(f"Could not reach copyparty: {e}") from e
