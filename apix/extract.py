"""apix extract - pull values out of responses and variables by path.

Path syntax (shared by exports, story outputs and template lookups):

  field                  → key
  nested.field           → key, key
  data[0].id             → key, 0, key
  data[-1]               → key, -1
  data[].id              → key, iter, key
  headers[Content-Type]  → key, key   (bracket key access)
  items.2                → key, 2     (numeric dot segment = index)
"""

from __future__ import annotations

import re
from typing import Any

_INT_RE = re.compile(r"^-?\d+$")
_PART_RE = re.compile(r"^([^\[]*)((?:\[[^\]]*\])+)$")
_BRACKET_RE = re.compile(r"\[([^\]]*)\]")

ITER = None  # segment marker: every element of a list


class PathError(ValueError):
    pass


def parse_path(path: str) -> list[Any]:
    """Split a path into str (key), int (index) and ITER segments."""
    segments: list[Any] = []
    for part in path.strip().split("."):
        part = part.strip()
        if not part:
            raise PathError(f"empty segment in path '{path}'")
        m = _PART_RE.match(part)
        if m:
            key = m.group(1).strip()
            if key:
                segments.append(key)
            for content in _BRACKET_RE.findall(m.group(2)):
                content = content.strip()
                if not content:
                    segments.append(ITER)
                elif _INT_RE.match(content):
                    segments.append(int(content))
                else:
                    segments.append(content)
        elif "[" in part or "]" in part:
            raise PathError(f"unbalanced bracket in path '{path}'")
        elif _INT_RE.match(part):
            segments.append(int(part))
        else:
            segments.append(part)
    return segments


def _ci_get(d: dict[str, Any], key: str) -> tuple[bool, Any]:
    """Case-insensitive dict lookup, exact match first."""
    if key in d:
        return True, d[key]
    lower = key.lower()
    for k, v in d.items():
        if isinstance(k, str) and k.lower() == lower:
            return True, v
    return False, None


def walk(data: Any, segments: list[Any]) -> tuple[bool, Any]:
    """Follow segments through dicts and lists. Returns (found, value)."""
    current = data
    for i, seg in enumerate(segments):
        if seg is ITER:
            if not isinstance(current, list):
                return False, None
            rest = segments[i + 1 :]
            values = []
            for item in current:
                found, value = walk(item, rest)
                if found:
                    values.append(value)
            return True, values
        if isinstance(seg, int) and isinstance(current, list):
            try:
                current = current[seg]
            except IndexError:
                return False, None
        elif isinstance(current, dict):
            found, current = _ci_get(current, str(seg))
            if not found:
                return False, None
        else:
            return False, None
    return True, current


def extract_value(data: Any, path: str) -> Any:
    """Extract a value at path, or None when the path does not match."""
    found, value = walk(data, parse_path(path))
    return value if found else None


def extract_response_value(status_code: int, headers: dict, body: Any, path: str) -> Any:
    """Resolve a response path.

    ``status`` → status code, ``headers.X`` / ``headers[X]`` → header value,
    ``body`` / ``body.a.b`` → parsed body. Any other path is read from the body.
    """
    path = path.strip()
    lowered = path.lower()
    if lowered == "status":
        return status_code
    if lowered == "body":
        return body
    if lowered == "headers" or lowered.startswith(("headers.", "headers[")):
        return extract_value({"headers": dict(headers or {})}, path)
    if lowered.startswith("body.") or lowered.startswith("body["):
        return extract_value({"body": body}, path)
    return extract_value(body, path)
