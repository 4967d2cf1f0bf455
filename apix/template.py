"""apix template - the placeholder renderer behind render(template, table).

Placeholders look like ``{{ path | filter | filter(arg) }}``:

  {{base}}                 variable from the resolved table
  {{user.ids[0]}}          nested lookup into a structured value
  {{env.HOME}}             environment namespace
  {{name | upper}}         whitelisted filter
  {{nick | default("x")}}  fallback when undefined or empty
  {{uuid}}                 helper, used only when no variable has that name

Rendering is a pure function of the template and the table (the helpers
uuid/timestamp/timestamp_ms/date are the only non-deterministic parts).
On error a RenderError is raised and nothing is returned.
"""

from __future__ import annotations

import base64
import datetime
import json
import re
import time as _time
import uuid
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, urlencode

from apix.errors import RenderError
from apix.extract import ITER, PathError, parse_path

OPEN = "{{"
CLOSE = "}}"

_FILTER_RE = re.compile(r"^([A-Za-z_]\w*)\s*(?:\((.*)\))?$", re.S)
_SINGLE_RE = re.compile(r"^\{\{(?:(?!\}\}).)*\}\}$", re.S)

HELPERS = {
    "uuid": lambda: str(uuid.uuid4()),
    "timestamp": lambda: str(int(_time.time())),
    "timestamp_ms": lambda: str(int(_time.time() * 1000)),
    "date": lambda: datetime.datetime.now(datetime.timezone.utc).isoformat(),
}

_MISSING = object()


def to_text(value: Any) -> str:
    """String form of a bound value inside a larger template."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value)
    return str(value)


# ── Filters ──────────────────────────────────────────────────────────────


def _as_str(value: Any, filter_name: str, location: str) -> str:
    if isinstance(value, dict | list):
        raise RenderError(
            RenderError.TYPE,
            location,
            f"filter '{filter_name}' expects a scalar, got {type(value).__name__}",
        )
    return to_text(value)


def _f_urlencode(value: Any, location: str) -> str:
    if isinstance(value, dict):
        return urlencode({k: to_text(v) for k, v in value.items()})
    return quote(_as_str(value, "urlencode", location), safe="")


def _f_b64encode(value: Any, location: str) -> str:
    return base64.b64encode(_as_str(value, "b64encode", location).encode()).decode()


FILTERS = {
    "upper": lambda v, loc: _as_str(v, "upper", loc).upper(),
    "lower": lambda v, loc: _as_str(v, "lower", loc).lower(),
    "trim": lambda v, loc: _as_str(v, "trim", loc).strip(),
    "urlencode": _f_urlencode,
    "b64encode": _f_b64encode,
    "json": lambda v, loc: json.dumps(v),
}


def _parse_arg(raw: str | None) -> Any:
    if raw is None:
        return ""
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[1:-1]
    try:
        return json.loads(raw)
    except ValueError:
        return raw


# ── Expression evaluation ────────────────────────────────────────────────


class _Expr:
    """A parsed placeholder: lookup path plus filter chain."""

    def __init__(self, source: str, location: str, position: int):
        self.source = source
        parts = [p.strip() for p in source.split("|")]
        if not parts[0]:
            raise RenderError(RenderError.SYNTAX, location, "empty placeholder", position=position)
        try:
            self.segments = parse_path(parts[0])
        except PathError as e:
            raise RenderError(RenderError.SYNTAX, location, str(e), position=position) from e
        if not isinstance(self.segments[0], str):
            raise RenderError(
                RenderError.SYNTAX,
                location,
                f"placeholder must start with a name: '{parts[0]}'",
                position=position,
            )
        self.filters: list[tuple[str, Any]] = []
        for part in parts[1:]:
            m = _FILTER_RE.match(part)
            if not m or (m.group(1) not in FILTERS and m.group(1) != "default"):
                raise RenderError(
                    RenderError.SYNTAX,
                    location,
                    f"unknown filter '{part}'",
                    position=position,
                )
            self.filters.append((m.group(1), _parse_arg(m.group(2))))

    @property
    def name(self) -> str:
        return self.segments[0]

    @property
    def has_default(self) -> bool:
        return any(f == "default" for f, _ in self.filters)

    def evaluate(self, table: Mapping[str, Any], location: str) -> Any:
        value = self._lookup(table, location)
        for fname, arg in self.filters:
            if fname == "default":
                if value is _MISSING or value is None or value == "":
                    value = arg
            elif value is _MISSING:
                continue
            else:
                value = FILTERS[fname](value, location)
        if value is _MISSING:
            raise RenderError(
                RenderError.UNDEFINED,
                location,
                f"'{self.source.split('|')[0].strip()}' is not defined",
                name=self.name,
            )
        return value

    def _lookup(self, table: Mapping[str, Any], location: str) -> Any:
        name = self.name
        if name not in table:
            if len(self.segments) == 1 and name in HELPERS:
                return HELPERS[name]()
            return _MISSING
        current = table[name]
        for seg in self.segments[1:]:
            if seg is ITER:
                raise RenderError(
                    RenderError.SYNTAX,
                    location,
                    "'[]' is not allowed in placeholders",
                )
            if isinstance(seg, int):
                if not isinstance(current, list):
                    raise RenderError(
                        RenderError.TYPE,
                        location,
                        f"cannot index {type(current).__name__} with [{seg}] in '{self.source}'",
                    )
                try:
                    current = current[seg]
                except IndexError:
                    return _MISSING
            else:
                if not isinstance(current, Mapping):
                    raise RenderError(
                        RenderError.TYPE,
                        location,
                        f"cannot read '{seg}' from {type(current).__name__} in '{self.source}'",
                    )
                if seg not in current:
                    return _MISSING
                current = current[seg]
        return current


def _scan(template: str, location: str):
    """Yield (literal_text, expr_or_None) chunks of a template."""
    pos = 0
    while True:
        start = template.find(OPEN, pos)
        if start < 0:
            yield template[pos:], None
            return
        end = template.find(CLOSE, start + len(OPEN))
        if end < 0:
            raise RenderError(
                RenderError.SYNTAX,
                location,
                "unclosed '{{'",
                position=start,
            )
        source = template[start + len(OPEN) : end].strip()
        yield template[pos:start], _Expr(source, location, start)
        pos = end + len(CLOSE)


# ── Public API ───────────────────────────────────────────────────────────


def render(template: str, table: Mapping[str, Any], location: str = "template") -> str:
    """Render a template string against a resolved variable table."""
    if not isinstance(template, str):
        raise RenderError(
            RenderError.TYPE,
            location,
            f"template must be a string, got {type(template).__name__}",
        )
    out: list[str] = []
    for literal, expr in _scan(template, location):
        out.append(literal)
        if expr is not None:
            out.append(to_text(expr.evaluate(table, location)))
    return "".join(out)


def render_value(value: Any, table: Mapping[str, Any], location: str = "template") -> Any:
    """Render every string inside a structured value.

    A string made of exactly one placeholder keeps the bound value's type,
    so ``{"id": "{{id}}"}`` stays an integer when id is one.
    """
    if isinstance(value, dict):
        return {k: render_value(v, table, f"{location}.{k}") for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, table, f"{location}.{i}") for i, v in enumerate(value)]
    if isinstance(value, str):
        if _SINGLE_RE.match(value):
            _, expr = next(_scan(value, location))
            return expr.evaluate(table, location)
        return render(value, table, location)
    return value


def referenced_names(value: Any) -> set[str]:
    """Top-level names a template (or structured value) needs from the table.

    Helpers and placeholders with a default filter are not required.
    Malformed placeholders are skipped here; render() reports them.
    """
    names: set[str] = set()
    if isinstance(value, dict):
        for v in value.values():
            names |= referenced_names(v)
    elif isinstance(value, list):
        for v in value:
            names |= referenced_names(v)
    elif isinstance(value, str) and OPEN in value:
        try:
            for _, expr in _scan(value, "template"):
                if expr is None or expr.has_default:
                    continue
                if len(expr.segments) == 1 and expr.name in HELPERS:
                    continue
                names.add(expr.name)
        except RenderError:
            pass
    return names
