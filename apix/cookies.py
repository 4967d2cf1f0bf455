"""apix cookies - the context cookie jar.

A jar is a plain list of Cookie entries keyed by (domain, path, name).
Expired entries are dropped by prune(), which every read goes through.
"""

from __future__ import annotations

import datetime
import logging
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from http.cookies import CookieError, SimpleCookie
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


@dataclass
class Cookie:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float | None = None  # unix seconds; None = no declared expiry
    secure: bool = False
    host_only: bool = False

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.domain, self.path, self.name)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def matches(self, url: str) -> bool:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        if self.secure and parts.scheme != "https":
            return False
        if self.host_only:
            if host != self.domain:
                return False
        elif not domain_match(host, self.domain):
            return False
        path = parts.path or "/"
        if path == self.path or self.path == "/":
            return True
        prefix = self.path.rstrip("/") + "/"
        return path.startswith(prefix)

    def to_dict(self) -> dict:
        data = {
            "domain": self.domain,
            "path": self.path,
            "name": self.name,
            "value": self.value,
        }
        if self.expires is not None:
            data["expires"] = (
                datetime.datetime.fromtimestamp(self.expires, tz=datetime.timezone.utc)
                .replace(microsecond=0)
                .isoformat()
            )
        if self.secure:
            data["secure"] = True
        if self.host_only:
            data["host_only"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Cookie:
        expires = data.get("expires")
        if isinstance(expires, str):
            expires = datetime.datetime.fromisoformat(expires).timestamp()
        elif isinstance(expires, datetime.datetime):
            expires = expires.timestamp()
        return cls(
            name=str(data["name"]),
            value=str(data.get("value", "")),
            domain=str(data["domain"]).lower().lstrip("."),
            path=str(data.get("path") or "/"),
            expires=float(expires) if expires is not None else None,
            secure=bool(data.get("secure", False)),
            host_only=bool(data.get("host_only", False)),
        )


def domain_match(host: str, domain: str) -> bool:
    """RFC 6265 domain-match: host is domain or a subdomain of it."""
    if host == domain:
        return True
    return host.endswith("." + domain) and not host.replace(".", "").isdigit()


def _default_path(url_path: str) -> str:
    """Directory of the request path (RFC 6265 default-path)."""
    if not url_path.startswith("/") or url_path.count("/") <= 1:
        return "/"
    return url_path[: url_path.rindex("/")]


def parse_set_cookie(header: str, request_url: str, now: float | None = None) -> list[Cookie]:
    """Parse one Set-Cookie header value sent in response to request_url."""
    now = time.time() if now is None else now
    jar = SimpleCookie()
    try:
        jar.load(header)
    except CookieError as e:
        logger.warning("ignoring unparsable Set-Cookie %r: %s", header, e)
        return []

    parts = urlsplit(request_url)
    host = (parts.hostname or "").lower()
    cookies = []
    for name, morsel in jar.items():
        expires = None
        if morsel["max-age"]:
            try:
                expires = now + int(morsel["max-age"])
            except ValueError:
                logger.warning("ignoring bad max-age %r on cookie %s", morsel["max-age"], name)
        elif morsel["expires"]:
            try:
                expires = parsedate_to_datetime(morsel["expires"]).timestamp()
            except (TypeError, ValueError):
                logger.warning("ignoring bad expires %r on cookie %s", morsel["expires"], name)
        domain = morsel["domain"].lower().lstrip(".")
        if domain and not domain_match(host, domain):
            logger.warning("rejecting cookie %s: domain %s does not match host %s", name, domain, host)
            continue
        cookies.append(
            Cookie(
                name=name,
                value=morsel.value,
                domain=domain or host,
                path=morsel["path"] or _default_path(parts.path or "/"),
                expires=expires,
                secure=bool(morsel["secure"]),
                host_only=not domain,
            ),
        )
    return cookies


def prune(jar: list[Cookie], now: float | None = None) -> list[Cookie]:
    now = time.time() if now is None else now
    return [c for c in jar if not c.is_expired(now)]


def merge(jar: list[Cookie], cookie: Cookie, now: float | None = None) -> list[Cookie]:
    """Insert or replace by (domain, path, name), then drop expired entries."""
    out = [c for c in jar if c.key != cookie.key]
    out.append(cookie)
    return prune(out, now)


def cookies_for(jar: list[Cookie], url: str, now: float | None = None) -> dict[str, str]:
    """Name → value for cookies sent to url; longer paths win on name clashes."""
    matching = [c for c in prune(jar, now) if c.matches(url)]
    matching.sort(key=lambda c: len(c.path))
    return {c.name: c.value for c in matching}
