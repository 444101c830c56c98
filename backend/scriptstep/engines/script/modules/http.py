"""
HTTP module for guest scripts: request, get, post, put, patch, delete.

Calls are proxied by the host through httpx. A request is sent only when its
URL passes the HostPolicy: http(s) scheme, a host on
``SCRIPT_HTTP_ALLOWED_HOSTS``, and no private or link-local address behind
the name. ``SCRIPT_HTTP_ENABLED=false`` swaps in a module that refuses
every call.
"""

import ipaddress
import socket
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

DEFAULT_HTTP_TIMEOUT = 30.0

_SCHEMES = ("http", "https")
_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"})

# Loopback, RFC 1918, link-local (cloud metadata), unique-local
_INTERNAL_NETWORKS = tuple(
    ipaddress.ip_network(n)
    for n in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)


def _addresses(host: str) -> list[Any]:
    """Literal IP, or every address the name resolves to (empty if it does not)."""
    try:
        return [ipaddress.ip_address(host)]
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except OSError:
        return []
    return [ipaddress.ip_address(info[4][0]) for info in infos]


def _is_internal(host: str) -> bool:
    addrs = _addresses(host)
    if not addrs:
        return True
    return any(addr in net for addr in addrs for net in _INTERNAL_NETWORKS)


@dataclass(frozen=True)
class HostPolicy:
    """
    Outbound allow-list. Entries are exact host names, ``*.domain`` for any
    subdomain, or ``*`` for any public host. Empty allows nothing.
    """

    allowed: frozenset[str] = frozenset()

    def permits(self, hostname: str) -> bool:
        if "*" in self.allowed or hostname in self.allowed:
            return True
        return any(p.startswith("*.") and hostname.endswith(p[1:]) for p in self.allowed)

    def check(self, url: str) -> None:
        """Raise PermissionError unless ``url`` may be requested."""
        parsed = urlparse(url)
        if parsed.scheme not in _SCHEMES:
            raise PermissionError(f"Scripts may only use http/https URLs, not '{parsed.scheme}'")
        hostname = (parsed.hostname or "").lower()
        if not hostname:
            raise PermissionError(f"URL '{url}' has no host")
        if not self.permits(hostname):
            listed = ", ".join(sorted(self.allowed)) or "(none)"
            raise PermissionError(
                f"Host '{hostname}' is not in SCRIPT_HTTP_ALLOWED_HOSTS (allowed: {listed})"
            )
        if _is_internal(hostname):
            raise PermissionError(f"Host '{hostname}' points at an internal address")


def check_url_allowed(url: str, allowed_hosts: frozenset[str]) -> None:
    HostPolicy(frozenset(allowed_hosts)).check(url)


def _body(resp: httpx.Response) -> Any:
    if "application/json" in resp.headers.get("content-type", ""):
        return resp.json()
    return resp.text


class HttpModule:
    """Guest ``http`` object. Opens its httpx.Client on first use; close() ends it."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        allowed_hosts: frozenset[str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._policy = HostPolicy(frozenset(allowed_hosts or ()))
        self._timeout = timeout
        self._transport = transport
        self._session: httpx.Client | None = None
        self._revoked = False

    @property
    def _client(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(timeout=self._timeout, transport=self._transport)
        return self._session

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        if self._revoked:
            raise RuntimeError("http is no longer available: the invocation has ended")
        verb = str(method).upper()
        if verb not in _METHODS:
            raise PermissionError(f"HTTP method '{verb}' is not allowed for scripts")
        self._policy.check(url)
        resp = self._client.request(verb, url, **kwargs)
        resp.raise_for_status()
        return _body(resp)

    def get(self, url: str, **kwargs: Any) -> Any:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> Any:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> Any:
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs: Any) -> Any:
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> Any:
        return self.request("DELETE", url, **kwargs)

    def close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()

    def revoke(self) -> None:
        """Refuse further requests and close the client."""
        self._revoked = True
        self.close()


class DisabledHttpModule(HttpModule):
    """Same surface as HttpModule; every request is refused."""

    def __init__(self) -> None:
        super().__init__(allowed_hosts=frozenset())

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        raise PermissionError("The http helper is disabled for scripts on this host.")


def make_http_module(
    *,
    enabled: bool = True,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    allowed_hosts: frozenset[str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> HttpModule:
    """Build the ``http`` object from the host's settings."""
    if not enabled:
        return DisabledHttpModule()
    return HttpModule(timeout=timeout, allowed_hosts=allowed_hosts, transport=transport)
