"""apix prompt - ask for missing or invalid parameter values."""

from __future__ import annotations

import logging
from typing import Any

import click

from apix.definitions import Parameter
from apix.errors import UserCancelled

logger = logging.getLogger(__name__)


class Prompter:
    """Interactive fallback used by the engine when resolution is incomplete.

    Calling it asks for one parameter, re-asking with the validation cause
    until the answer satisfies the parameter's constraint. Ctrl-C / EOF
    raise UserCancelled.
    """

    def __init__(self, prompt_fn=click.prompt, echo_fn=click.echo):
        self.prompt_fn = prompt_fn
        self.echo_fn = echo_fn

    def __call__(self, parameter: Parameter, reason: str | None = None) -> Any:
        if reason:
            self.echo_fn(f"{parameter.name}: {reason}", err=True)
        label = parameter.name
        if parameter.description:
            label = f"{parameter.name} ({parameter.description})"
        while True:
            try:
                text = self.prompt_fn(label, hide_input=parameter.secret)
            except (click.Abort, KeyboardInterrupt, EOFError) as e:
                logger.debug("prompt for %s cancelled", parameter.name)
                raise UserCancelled() from e
            value = parameter.coerce(text)
            cause = parameter.check(value)
            if cause is None:
                logger.debug("prompted value accepted for %s", parameter.name)
                return value
            self.echo_fn(f"Invalid input: {cause}", err=True)
