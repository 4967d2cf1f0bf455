"""apix resolver - merge variable sources into one resolved table.

Precedence, highest first:
  1. overrides  explicit values for this invocation (-e/--env, step params)
  2. chain      exports of earlier steps in the running story
  3. prompted   values typed in during this run
  4. context    bindings stored in the active context
  5. defaults   story context variables, then parameter defaults

The environment is exposed under the reserved ``env`` name only.
"""

from __future__ import annotations

import logging
from collections import ChainMap
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from apix.definitions import Parameter
from apix.errors import Invalid, ResolutionError

logger = logging.getLogger(__name__)

ENV_NAMESPACE = "env"

TIERS = ("overrides", "chain", "prompted", "context", "defaults")


@dataclass(frozen=True)
class Sources:
    overrides: Mapping[str, Any] = field(default_factory=dict)
    chain: Mapping[str, Any] = field(default_factory=dict)
    prompted: Mapping[str, Any] = field(default_factory=dict)
    context: Mapping[str, Any] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)

    def with_prompted(self, name: str, value: Any) -> Sources:
        return replace(self, prompted={**self.prompted, name: value})

    def source_of(self, name: str) -> str | None:
        """Which tier supplies name, or None."""
        for tier in TIERS:
            if name in getattr(self, tier):
                return tier
        return None


def parse_assignments(specs: Iterable[str], sep: str = "=") -> dict[str, str]:
    """Parse repeated NAME=VALUE flags. Entries without the separator are skipped."""
    out: dict[str, str] = {}
    for spec in specs:
        if sep not in spec:
            continue
        k, v = spec.split(sep, 1)
        out[k.strip()] = v.strip()
    return out


def resolve(
    parameters: Iterable[Parameter],
    sources: Sources,
    referenced: Iterable[str] = (),
) -> Mapping[str, Any]:
    """Build the immutable variable table for one render.

    Raises ResolutionError listing missing and invalid values.
    """
    merged = ChainMap(
        dict(sources.overrides),
        dict(sources.chain),
        dict(sources.prompted),
        dict(sources.context),
        dict(sources.defaults),
    )
    table: dict[str, Any] = dict(merged)
    table.setdefault(ENV_NAMESPACE, dict(sources.env))

    missing: list[Parameter] = []
    invalid: list[Invalid] = []
    declared = set()

    for param in parameters:
        declared.add(param.name)
        value = table.get(param.name)
        if value is None or value == "":
            if param.required:
                missing.append(param)
            else:
                table[param.name] = None
            continue
        value = param.coerce(value)
        table[param.name] = value
        reason = param.check(value)
        if reason:
            invalid.append(Invalid(param, value, reason, sources.source_of(param.name)))

    for name in sorted(set(referenced) - declared):
        if name not in table:
            missing.append(Parameter(name=name))

    if missing or invalid:
        logger.debug(
            "resolution incomplete: missing=%s invalid=%s",
            [p.name for p in missing],
            [i.parameter.name for i in invalid],
        )
        raise ResolutionError(missing=missing, invalid=invalid)

    return MappingProxyType(table)
