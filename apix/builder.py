"""apix builder - turn a request definition plus a resolved table into the
exact request that will be sent.

Override layers, lowest to highest:

  headers  config defaults → config auth → context session → definition → -H
  query    URL query string → definition query → -q
  cookies  context jar (matching URL) → definition cookies → -c
  body     definition body/body_file → --body/--file
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from requests.structures import CaseInsensitiveDict

from apix.core import expand_env
from apix.definitions import RequestDefinition
from apix.errors import DefinitionError, ValidationError
from apix.template import render, render_value, to_text

logger = logging.getLogger(__name__)

REDACTED = "<redacted>"
SENSITIVE_HEADERS = ("authorization", "proxy-authorization", "cookie")


@dataclass
class Invocation:
    """Per-invocation explicit inputs (CLI flags or a story step)."""

    variables: dict[str, Any] = field(default_factory=dict)
    headers: list[tuple[str, str]] = field(default_factory=list)
    query: list[tuple[str, str]] = field(default_factory=list)
    cookies: list[tuple[str, str]] = field(default_factory=list)
    body: str | None = None
    body_file: Path | None = None

    def with_variables(self, extra: Mapping[str, Any]) -> Invocation:
        """Copy with extra variables underneath this invocation's own."""
        return Invocation(
            variables={**extra, **self.variables},
            headers=list(self.headers),
            query=list(self.query),
            cookies=list(self.cookies),
            body=self.body,
            body_file=self.body_file,
        )


@dataclass
class ResolvedRequest:
    """Fully rendered request, inspectable before it is sent."""

    name: str
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: str | bytes | None = None

    def describe(self) -> str:
        """HTTP-style text of what will go on the wire."""
        lines = [f"{self.method} {self.url}"]
        for k, v in self.headers.items():
            lines.append(f"{k}: {v}")
        if self.cookies:
            lines.append("Cookie: " + "; ".join(f"{k}={v}" for k, v in self.cookies.items()))
        if self.body is not None:
            lines.append("")
            if isinstance(self.body, bytes):
                lines.append(f"<{len(self.body)} bytes>")
            else:
                lines.append(self.body)
        return "\n".join(lines)

    def snapshot(self) -> dict:
        """Serializable form for history, with credentials redacted."""
        headers = {
            k: (REDACTED if k.lower() in SENSITIVE_HEADERS else v) for k, v in self.headers.items()
        }
        body: Any = self.body
        if isinstance(body, bytes):
            body = f"<{len(body)} bytes>"
        return {
            "method": self.method,
            "url": self.url,
            "headers": headers,
            "cookies": sorted(self.cookies),
            "body": body,
        }


def build_auth_headers(auth_config: Mapping | None, table: Mapping[str, Any]) -> dict[str, str]:
    """Build authentication headers from an auth mapping.

    Supports:
    - bearer: Authorization: Bearer <token>
    - api-key: custom header with token
    - basic: Authorization: Basic <b64>

    Values may reference ${VAR} environment variables and {{name}} bindings.
    """
    if not auth_config:
        return {}

    env = table.get("env") or {}

    def _value(key: str) -> str:
        raw = expand_env(auth_config.get(key, ""), env) or ""
        return render(to_text(raw), table, f"auth.{key}")

    auth_type = str(auth_config.get("type", "")).lower()

    if auth_type == "bearer":
        return {"Authorization": f"Bearer {_value('token')}"}

    if auth_type == "api-key":
        header = auth_config.get("header", "X-API-Key")
        return {header: _value("token")}

    if auth_type == "basic":
        credentials = base64.b64encode(f"{_value('username')}:{_value('password')}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}

    return {}


def merge_query(url: str, layers: list[list[tuple[str, str]]]) -> str:
    """Apply query layers onto url. A name set by a layer replaces lower values.

    The URL is returned unchanged when every layer is empty.
    """
    if not any(layers):
        return url
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    for layer in layers:
        names = {k for k, _ in layer}
        pairs = [(k, v) for k, v in pairs if k not in names] + list(layer)
    return urlunsplit(parts._replace(query=urlencode(pairs)))


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise DefinitionError(f"Could not read body file '{path}': {e}") from e


def _file_body(path: Path, table: Mapping[str, Any], templated: bool) -> str | bytes:
    data = _read_file(path)
    if not templated:
        return data
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return data
    return render(text, table, str(path))


def _render_pairs(pairs, table, location) -> list[tuple[str, str]]:
    return [(k, to_text(render_value(v, table, f"{location}.{k}"))) for k, v in pairs]


def build(
    definition: RequestDefinition,
    table: Mapping[str, Any],
    invocation: Invocation | None = None,
    jar_cookies: Mapping[str, str] | None = None,
    session: Mapping[str, Any] | None = None,
    defaults: Mapping[str, Any] | None = None,
) -> ResolvedRequest:
    """Render every field of definition and merge the override layers."""
    invocation = invocation or Invocation()
    session = session or {}
    defaults = defaults or {}

    url = render(definition.url, table, "url")
    scheme = urlsplit(url).scheme.lower()
    if scheme not in ("http", "https"):
        raise ValidationError("url", f"only http(s) URLs are supported, got '{url}'")

    url = merge_query(
        url,
        [
            _render_pairs(definition.query, table, "query"),
            [(k, render(v, table, f"query.{k}")) for k, v in invocation.query],
        ],
    )

    headers: CaseInsensitiveDict = CaseInsensitiveDict()
    env = table.get("env") or {}
    for k, v in (defaults.get("headers") or {}).items():
        headers[k] = render(to_text(expand_env(v, env)), table, f"defaults.headers.{k}")
    headers.update(build_auth_headers(defaults.get("auth"), table))
    for k, v in (session.get("headers") or {}).items():
        headers[k] = render(to_text(v), table, f"session.headers.{k}")
    headers.update(build_auth_headers(session.get("auth"), table))
    headers.update(dict(_render_pairs(definition.headers, table, "headers")))
    for k, v in invocation.headers:
        headers[k] = render(v, table, f"header.{k}")

    cookies = dict(jar_cookies or {})
    cookies.update(dict(_render_pairs(definition.cookies, table, "cookies")))
    for k, v in invocation.cookies:
        cookies[k] = render(v, table, f"cookie.{k}")

    body: str | bytes | None = None
    if invocation.body is not None:
        body = render(invocation.body, table, "body")
    elif invocation.body_file is not None:
        body = _file_body(invocation.body_file, table, templated=True)
    elif definition.body_file:
        body = _file_body(definition.body_path(), table, templated=definition.render_body_file)
    elif isinstance(definition.body, dict | list):
        body = json.dumps(render_value(definition.body, table, "body"))
        if "Content-Type" not in headers:
            headers["Content-Type"] = "application/json"
    elif definition.body is not None:
        body = render(to_text(definition.body), table, "body")

    resolved = ResolvedRequest(
        name=definition.name,
        method=definition.method,
        url=url,
        headers=dict(headers),
        cookies=cookies,
        body=body,
    )
    logger.debug("built %s %s (%d headers, %d cookies)", resolved.method, url, len(headers), len(cookies))
    return resolved
