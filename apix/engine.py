"""apix engine - resolve, build and execute one request against the active context.

prepare() never writes state: prompting and rendering happen before the
request is sent. execute() writes cookies, persisted exports and history
only after the transport returned a response.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from apix import executor
from apix.builder import Invocation, ResolvedRequest, build
from apix.context import Context, ContextStore
from apix.cookies import parse_set_cookie
from apix.definitions import Parameter, RequestDefinition
from apix.errors import ResolutionError, ValidationError
from apix.extract import extract_response_value
from apix.history import ExecutionResult, HistoryStore, utcnow_iso
from apix.resolver import Sources, resolve
from apix.template import referenced_names, render

logger = logging.getLogger(__name__)

Prompt = Callable[[Parameter, "str | None"], Any]

_UNPROMPTABLE = ("overrides", "chain")


@dataclass(frozen=True)
class Prepared:
    request: ResolvedRequest
    context: Context
    table: Mapping[str, Any]


def extract_exports(exports: Mapping[str, str], response) -> dict[str, Any]:
    """Values named by exports, read from a transport response."""
    out: dict[str, Any] = {}
    for name, path in exports.items():
        value = extract_response_value(response.status_code, response.headers, response.body, path)
        if value is None:
            logger.warning("export %s: nothing at '%s'", name, path)
            continue
        out[name] = value
    return out


class Engine:
    def __init__(
        self,
        store: ContextStore,
        history: HistoryStore,
        transport=None,
        prompter: Prompt | None = None,
        env: Mapping[str, str] | None = None,
        defaults: Mapping[str, Any] | None = None,
        timeout: int = executor.DEFAULT_TIMEOUT,
        verify: bool = True,
        transport_options: Mapping[str, Any] | None = None,
        clock=time.time,
    ):
        self.store = store
        self.history = history
        self.transport = transport
        self.prompter = prompter
        self.env = dict(env or {})
        self.defaults = dict(defaults or {})
        self.timeout = timeout
        self.verify = verify
        # redirect, proxy and user-agent policy passed through to the transport
        self.transport_options = dict(transport_options or {})
        self.clock = clock

    # ── resolution ──

    def _referenced(self, definition: RequestDefinition, invocation: Invocation, ctx: Context) -> set[str]:
        names = definition.referenced_names()
        for _, v in invocation.headers + invocation.query + invocation.cookies:
            names |= referenced_names(v)
        names |= referenced_names(invocation.body)
        names |= referenced_names(ctx.session.get("headers"))
        names |= referenced_names(ctx.session.get("auth"))
        names |= referenced_names(self.defaults.get("headers"))
        names |= referenced_names(self.defaults.get("auth"))
        return names

    def resolve_table(
        self,
        parameters: list[Parameter],
        sources: Sources,
        referenced: set[str] = frozenset(),
    ) -> Mapping[str, Any]:
        """Resolve, prompting for missing/invalid values and retrying.

        Invalid values from tiers that outrank prompted answers (explicit
        overrides, story exports) raise ValidationError straight away.
        """
        asked: set[str] = set()
        while True:
            try:
                return resolve(parameters, sources, referenced)
            except ResolutionError as e:
                for inv in e.invalid:
                    if inv.source in _UNPROMPTABLE:
                        raise ValidationError(inv.parameter.name, inv.reason) from e
                if self.prompter is None:
                    if e.missing:
                        raise
                    first = e.invalid[0]
                    raise ValidationError(first.parameter.name, first.reason) from e
                for param, reason in e.needs_input():
                    if param.name in asked:
                        raise ValidationError(
                            param.name,
                            reason or "still unresolved after prompting",
                        ) from e
                    asked.add(param.name)
                    logger.debug("prompting for %s (%s)", param.name, reason or "missing")
                    sources = sources.with_prompted(param.name, self.prompter(param, reason))

    def prepare(
        self,
        definition: RequestDefinition,
        invocation: Invocation | None = None,
        chain: Mapping[str, Any] | None = None,
        story_defaults: Mapping[str, Any] | None = None,
    ) -> Prepared:
        """Resolve and build the request against the active context."""
        invocation = invocation or Invocation()
        ctx = self.store.active()
        sources = Sources(
            overrides=dict(invocation.variables),
            chain=dict(chain or {}),
            context=dict(ctx.bindings),
            defaults={**definition.defaults(), **(story_defaults or {})},
            env=self.env,
        )
        table = self.resolve_table(
            definition.parameters,
            sources,
            self._referenced(definition, invocation, ctx),
        )
        request = build(
            definition,
            table,
            invocation,
            jar_cookies=ctx.cookies_for(definition_url(definition, table)),
            session=ctx.session,
            defaults=self.defaults,
        )
        return Prepared(request=request, context=ctx, table=table)

    # ── execution ──

    def execute(
        self,
        prepared: Prepared,
        definition: RequestDefinition,
        exports: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        """Send the request and record its outcome.

        Raises TransportError without touching context or history.
        """
        request = prepared.request
        transport = self.transport or executor.send_request
        response = transport(
            method=request.method,
            url=request.url,
            headers=request.headers,
            cookies=request.cookies,
            body=request.body,
            timeout=self.timeout,
            verify=self.verify,
            **self.transport_options,
        )

        now = self.clock()
        cookies = [
            c for header, url in response.set_cookies for c in parse_set_cookie(header, url or request.url, now)
        ]
        exported = extract_exports({**definition.exports, **(exports or {})}, response)
        persisted = {k: exported[k] for k in definition.persist if k in exported}

        result = ExecutionResult(
            request_name=definition.name,
            context=prepared.context.name,
            timestamp=utcnow_iso(),
            request=request.snapshot(),
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.body,
            duration_ms=round(response.elapsed_ms, 1),
            exports=exported,
        )
        self.store.apply_response(prepared.context.name, cookies, persisted)
        self.history.append(definition.name, result)
        logger.debug("%s completed with %s", definition.name, response.status_code)
        return result

    def run(
        self,
        definition: RequestDefinition,
        invocation: Invocation | None = None,
        chain: Mapping[str, Any] | None = None,
        story_defaults: Mapping[str, Any] | None = None,
        exports: Mapping[str, str] | None = None,
    ) -> tuple[Prepared, ExecutionResult]:
        prepared = self.prepare(definition, invocation, chain, story_defaults)
        return prepared, self.execute(prepared, definition, exports)


def definition_url(definition: RequestDefinition, table: Mapping[str, Any]) -> str:
    """Rendered URL used to select jar cookies (query overrides don't matter)."""
    return render(definition.url, table, "url")
