"""apix executor - HTTP transport."""

import json
import logging
import time
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import requests

from apix.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_MAX_REDIRECTS = 30
USER_AGENT = "apix"

_DNS_MARKERS = (
    "NameResolutionError",
    "Name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "Temporary failure in name resolution",
)


def proxy_url(proxy: str, login: str | None = None, password: str | None = None) -> str:
    """Proxy URL with credentials folded into its netloc."""
    if not login:
        return proxy
    parts = urlsplit(proxy if "://" in proxy else f"http://{proxy}")
    userinfo = quote(login, safe="")
    if password:
        userinfo += ":" + quote(password, safe="")
    host = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{host}"))


class TransportResponse:
    """Result of one HTTP round-trip (any status code)."""

    def __init__(self):
        self.status_code: int = 0
        self.url: str = ""
        self.headers: dict[str, str] = {}
        self.body: Any = None  # parsed JSON or raw text
        self.raw_text: str = ""
        self.content: bytes = b""
        self.elapsed_ms: float = 0
        # (Set-Cookie value, URL of the response that sent it), redirect hops first
        self.set_cookies: list[tuple[str, str | None]] = []


def _set_cookie_headers(resp) -> list[str]:
    """Every Set-Cookie header of one response, unjoined when the raw response allows it."""
    raw_headers = getattr(getattr(resp, "raw", None), "headers", None)
    getlist = getattr(raw_headers, "getlist", None)
    if callable(getlist):
        return list(getlist("Set-Cookie"))
    value = resp.headers.get("Set-Cookie")
    return [value] if value else []


def _collect_set_cookies(resp) -> list[tuple[str, str]]:
    out = []
    for hop in [*resp.history, resp]:
        out.extend((header, hop.url) for header in _set_cookie_headers(hop))
    return out


def _classify(exc: requests.exceptions.RequestException) -> str:
    if isinstance(exc, requests.exceptions.SSLError):
        return "tls"
    if isinstance(exc, requests.exceptions.Timeout):
        return "timeout"
    if isinstance(exc, requests.exceptions.ProxyError):
        return "connection"
    if isinstance(exc, requests.exceptions.ConnectionError):
        text = str(exc)
        if any(marker in text for marker in _DNS_MARKERS):
            return "dns"
        return "connection"
    return "request"


def send_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    cookies: dict[str, str] | None = None,
    body: str | bytes | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    verify: bool = True,
    follow_redirects: bool = True,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    proxy: str | None = None,
    user_agent: str = USER_AGENT,
) -> TransportResponse:
    """Send a fully resolved request.

    - Any HTTP status is a successful round-trip
    - Attempts to parse the response as JSON, falls back to raw text
    - Captures timing and the Set-Cookie headers of every redirect hop
    - Connection-level failures raise TransportError; nothing is retried
    """
    req_headers = {"User-Agent": user_agent}
    req_headers.update(headers or {})
    data = body.encode("utf-8") if isinstance(body, str) else body
    proxies = {"http": proxy, "https": proxy} if proxy else None

    logger.debug(
        "sending %s %s (timeout=%ss, verify=%s, follow=%s, proxy=%s)",
        method,
        url,
        timeout,
        verify,
        follow_redirects,
        bool(proxies),
    )
    start = time.monotonic()
    try:
        with requests.Session() as session:
            session.max_redirects = max_redirects
            resp = session.request(
                method=method.upper(),
                url=url,
                headers=req_headers,
                cookies=cookies or None,
                data=data,
                timeout=timeout,
                verify=verify,
                allow_redirects=follow_redirects,
                proxies=proxies,
            )
    except requests.exceptions.RequestException as e:
        kind = _classify(e)
        logger.debug("transport failure (%s): %s", kind, e)
        raise TransportError(kind, str(e)) from e

    result = TransportResponse()
    result.elapsed_ms = (time.monotonic() - start) * 1000
    result.status_code = resp.status_code
    result.url = resp.url
    result.headers = dict(resp.headers)
    result.raw_text = resp.text
    result.content = resp.content
    result.set_cookies = _collect_set_cookies(resp)

    try:
        result.body = resp.json()
    except (json.JSONDecodeError, ValueError):
        result.body = resp.text

    logger.debug(
        "received %s in %dms after %d redirects",
        result.status_code,
        result.elapsed_ms,
        len(resp.history),
    )
    return result
