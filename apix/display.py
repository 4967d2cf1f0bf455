"""apix display - plain-text rendering of results for the terminal."""

import json
import shlex

from apix.history import ExecutionResult


def _body_text(body) -> str:
    if isinstance(body, dict | list):
        return json.dumps(body, indent=2)
    return str(body)


def format_output(result: ExecutionResult, verbose: bool = False, raw: bool = False, body: bool = True) -> str:
    """Format an execution result for CLI output.

    Default output is minimal and structured:
        STATUS: 200
        TIME: 45ms
        BODY:
        {...}

    verbose adds response headers; raw prints only the body; body=False
    leaves the body out (it went to a file).
    """
    if raw:
        return _body_text(result.body) if result.body is not None else ""

    lines = [f"STATUS: {result.status_code}", f"TIME: {int(result.duration_ms)}ms"]

    if verbose and result.headers:
        lines.append("HEADERS:")
        for key, value in result.headers.items():
            lines.append(f"  {key}: {value}")

    if body and result.body is not None and result.body != "":
        lines.append("BODY:")
        lines.append(_body_text(result.body))

    return "\n".join(lines)


def format_exports(values: dict) -> list[str]:
    """Shell-evaluable export lines, e.g. ``export apix_token=abc``."""
    out = []
    for name, value in values.items():
        text = value if isinstance(value, str) else json.dumps(value)
        out.append(f"export apix_{name}={shlex.quote(text)}")
    return out


def format_history_line(index: int, result: ExecutionResult) -> str:
    method = result.request.get("method", "?")
    url = result.request.get("url", "?")
    return f"  [{index}] {method:<6} {url}  {result.status_code}  ({result.timestamp})"
