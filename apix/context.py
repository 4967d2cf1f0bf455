"""apix context - named, switchable variable/session/cookie state.

Layout under the state directory::

    active.yaml           {active: <name>}
    contexts/<name>.yaml  {name, bindings, session, cookies}

Every mutation is written immediately with an atomic replace. Concurrent
invocations follow a last-writer-wins policy; there is no cross-process lock.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from apix import cookies as cookiejar
from apix import storage
from apix.cookies import Cookie
from apix.errors import (
    ActiveContextInUse,
    AlreadyExists,
    ContextUnavailable,
    InvalidContextName,
    NotFound,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = "default"
ACTIVE_FILE = "active.yaml"
CONTEXTS_DIR = "contexts"

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass
class Context:
    name: str
    bindings: dict[str, Any] = field(default_factory=dict)
    session: dict[str, Any] = field(default_factory=dict)
    cookies: list[Cookie] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "bindings": dict(self.bindings),
            "session": dict(self.session),
            "cookies": [c.to_dict() for c in self.cookies],
        }

    @classmethod
    def from_dict(cls, data: dict, now: float | None = None) -> Context:
        return cls(
            name=str(data["name"]),
            bindings=dict(data.get("bindings") or {}),
            session=dict(data.get("session") or {}),
            cookies=cookiejar.prune(
                [Cookie.from_dict(c) for c in data.get("cookies") or []],
                now,
            ),
        )

    def cookies_for(self, url: str, now: float | None = None) -> dict[str, str]:
        return cookiejar.cookies_for(self.cookies, url, now)


def validate_name(name: str) -> str:
    if not name or not _NAME_RE.match(name):
        raise InvalidContextName(name)
    return name


class ContextStore:
    """File-backed store of contexts and the single active pointer."""

    def __init__(self, root: Path, clock=time.time):
        self.root = Path(root)
        self.clock = clock

    # ── paths ──

    @property
    def contexts_dir(self) -> Path:
        return self.root / CONTEXTS_DIR

    @property
    def active_path(self) -> Path:
        return self.root / ACTIVE_FILE

    def _path(self, name: str) -> Path:
        return self.contexts_dir / f"{validate_name(name)}.yaml"

    # ── reads ──

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def names(self) -> list[str]:
        if not self.contexts_dir.is_dir():
            return []
        return sorted(p.stem for p in self.contexts_dir.glob("*.yaml") if p.is_file())

    def get(self, name: str) -> Context:
        path = self._path(name)
        if not path.exists():
            raise NotFound(name)
        data = storage.read_yaml(path)
        if not isinstance(data, dict):
            raise ContextUnavailable(path, "not a mapping")
        data.setdefault("name", name)
        return Context.from_dict(data, self.clock())

    def active_name(self) -> str:
        """Name of the active context, creating 'default' on first use."""
        if not self.active_path.exists():
            if not self.exists(DEFAULT_CONTEXT):
                self._write(Context(name=DEFAULT_CONTEXT))
                logger.debug("created %s context", DEFAULT_CONTEXT)
            self._write_active(DEFAULT_CONTEXT)
            return DEFAULT_CONTEXT
        data = storage.read_yaml(self.active_path)
        if not isinstance(data, dict) or not data.get("active"):
            raise ContextUnavailable(self.active_path, "no active context recorded")
        return str(data["active"])

    def active(self) -> Context:
        return self.get(self.active_name())

    # ── lifecycle ──

    def init(self, name: str) -> Context:
        validate_name(name)
        if self.exists(name):
            raise AlreadyExists(name)
        ctx = Context(name=name)
        self._write(ctx)
        logger.debug("initialised context %s", name)
        return ctx

    def switch(self, name: str) -> Context:
        ctx = self.get(name)
        self._write_active(name)
        logger.debug("switched to context %s", name)
        return ctx

    def delete(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            raise NotFound(name)
        if self.active_name() == name:
            raise ActiveContextInUse(name)
        path.unlink()
        logger.debug("deleted context %s", name)

    # ── mutations ──

    def set_binding(self, key: str, value: Any, context: str | None = None) -> Context:
        ctx = self.get(context or self.active_name())
        ctx.bindings[key] = value
        return self._write(ctx)

    def unset_binding(self, key: str, context: str | None = None) -> bool:
        ctx = self.get(context or self.active_name())
        if key not in ctx.bindings:
            return False
        del ctx.bindings[key]
        self._write(ctx)
        return True

    def get_binding(self, key: str, context: str | None = None) -> Any:
        return self.get(context or self.active_name()).bindings.get(key)

    def set_session(self, session: dict[str, Any], context: str | None = None) -> Context:
        ctx = self.get(context or self.active_name())
        ctx.session = dict(session)
        return self._write(ctx)

    def upsert_cookie(self, cookie: Cookie, context: str | None = None) -> Context:
        ctx = self.get(context or self.active_name())
        ctx.cookies = cookiejar.merge(ctx.cookies, cookie, self.clock())
        return self._write(ctx)

    def apply_response(
        self,
        context: str,
        cookies: Iterable[Cookie] = (),
        bindings: dict[str, Any] | None = None,
    ) -> Context:
        """Merge a completed request's cookies and persisted values in one write."""
        ctx = self.get(context)
        now = self.clock()
        for cookie in cookies:
            ctx.cookies = cookiejar.merge(ctx.cookies, cookie, now)
        if bindings:
            ctx.bindings.update(bindings)
        logger.debug(
            "context %s: %d cookies, bindings updated: %s",
            context,
            len(ctx.cookies),
            sorted(bindings or {}),
        )
        return self._write(ctx)

    # ── writes ──

    def _write(self, ctx: Context) -> Context:
        storage.write_yaml(self._path(ctx.name), ctx.to_dict())
        return ctx

    def _write_active(self, name: str) -> None:
        storage.write_yaml(self.active_path, {"active": name})
