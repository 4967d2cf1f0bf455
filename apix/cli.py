"""apix CLI - API-request workbench with named contexts and stories."""

import functools
import logging
import sys
from pathlib import Path

import click
import yaml

from apix import storage
from apix.builder import Invocation
from apix.context import ContextStore
from apix.core import (
    STATE_DIR_NAME,
    expand_env,
    find_config,
    load_env,
    read_config,
    resolve_dirs,
)
from apix.definitions import (
    Parameter,
    RequestDefinition,
    find_definition,
    list_definitions,
    load_request,
    load_story,
    record_defaults,
    save_request,
)
from apix.display import format_exports, format_history_line, format_output
from apix.engine import Engine
from apix.errors import ApixError, ConfigError, DefinitionError
from apix.executor import DEFAULT_MAX_REDIRECTS, DEFAULT_TIMEOUT, USER_AGENT, proxy_url
from apix.history import HistoryStore
from apix.prompt import Prompter
from apix.resolver import parse_assignments
from apix.story import StoryRunner

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session."

TOOL_HELP = """\
apix — API-request workbench.

Stores requests as YAML files, resolves them against a named context
(variables, session, cookies) and chains them into stories.

\b
AD HOC REQUESTS
───────────────
  apix get https://jsonplaceholder.typicode.com/todos/1
  apix post '{{base}}/users' -b '{"name": "{{name}}"}' -e name=Ada
  apix get '{{base}}/me' -H 'Authorization: Bearer {{token}}' --dry-run

\b
STORED REQUESTS AND STORIES
───────────────────────────
  apix exec get-todos -e limit=3          # requests/get-todos.yaml
  apix exec signup --story                # stories/signup.yaml

  Requests directory resolution:
    1. --requests-dir flag
    2. requests_dir from config (relative to config file)
    3. ./requests/ in CWD
    4. ~/.apix/requests/
  Stories follow the same order with stories_dir / ./stories/.

\b
VARIABLE PRECEDENCE
───────────────────
  \b
  1. -e name=value          (highest; story step params come next)
  2. exports of earlier story steps
  3. values typed at a prompt during this run
  4. bindings of the active context
  5. story context variables, then parameter defaults
  {{env.NAME}} reads the environment (and the configured .env file).

\b
PLACEHOLDERS
────────────
  \b
  {{name}}                  Bound variable
  {{user.ids[0]}}           Nested lookup
  {{name | upper}}          Filters: upper lower trim default(x)
                            urlencode b64encode json
  {{uuid}} {{timestamp}} {{timestamp_ms}} {{date}}

\b
CONTEXTS
────────
  apix ctl init staging --switch
  apix ctl set base https://staging.example.com
  apix ctl set session.auth.type bearer
  apix ctl get contexts
  apix ctl edit request get-todos         # opens $VISUAL / $EDITOR

\b
CONFIG
──────
  apix config list
  apix config set timeout 10
  apix config set headers.Accept application/json
  apix config delete proxy

\b
EXIT CODES
──────────
  0 ok, 1 error, 3 invalid or unresolved input, 4 context error,
  5 transport error, 130 cancelled
"""


class App:
    """Per-invocation wiring: config, env, stores."""

    def __init__(self, config_file=None, state_dir=None, requests_dir=None, stories_dir=None):
        config_path = find_config(config_file)
        if config_file and config_path is None:
            raise click.UsageError(f"Config file '{config_file}' not found.")
        self.config = read_config(config_path)
        self.defaults = self.config.defaults
        self.env = load_env(self.config)
        dirs = resolve_dirs(self.config, requests=requests_dir, stories=stories_dir, state=state_dir)
        self.state_dir = dirs.state
        self.requests_dir = dirs.requests
        self.stories_dir = dirs.stories
        self.store = ContextStore(self.state_dir)
        self.history = HistoryStore(self.state_dir)
        logger.debug("state dir %s, requests dir %s", self.state_dir, self.requests_dir)

    def engine(
        self,
        timeout=None,
        insecure=False,
        prompt=True,
        follow=None,
        max_redirects=None,
        proxy=None,
        user_agent=None,
    ) -> Engine:
        """Engine for one invocation; flags win over config defaults."""
        d = self.defaults
        return Engine(
            self.store,
            self.history,
            prompter=Prompter() if prompt else None,
            env=self.env,
            defaults=d,
            timeout=timeout or d.get("timeout") or DEFAULT_TIMEOUT,
            verify=not (insecure or d.get("insecure")),
            transport_options={
                "follow_redirects": d.get("follow_redirects", True) if follow is None else follow,
                "max_redirects": max_redirects or d.get("max_redirects") or DEFAULT_MAX_REDIRECTS,
                "proxy": proxy or expand_env(d.get("proxy"), self.env),
                "user_agent": user_agent or d.get("user_agent") or USER_AGENT,
            },
        )


def handle_errors(f):
    """Print ApixError as 'ERROR: ...' and exit with its code."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ApixError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(e.exit_code)

    return wrapper


# ── Option parsing ───────────────────────────────────────────────────────


def _split_pairs(ctx, param, values):
    """Parse repeated 'name:value' options into ordered pairs."""
    pairs = []
    for item in values:
        if ":" not in item:
            raise click.BadParameter(f"expected name:value, got '{item}'")
        k, v = item.split(":", 1)
        pairs.append((k.strip(), v.strip()))
    return pairs


def _export_specs(specs) -> dict[str, str]:
    """--export name=path, or bare name as shorthand for body.name."""
    out = {}
    for spec in specs:
        if "=" in spec:
            name, path = spec.split("=", 1)
        else:
            name, path = spec, f"body.{spec}"
        out[name.strip()] = path.strip()
    return out


def request_options(f):
    """Options shared by ad hoc requests and exec."""
    options = [
        click.option("-b", "--body", default=None, help="Request body (templated)."),
        click.option(
            "-f",
            "--file",
            "body_file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="Read the request body from a file (templated).",
        ),
        click.option(
            "-H",
            "--header",
            multiple=True,
            callback=_split_pairs,
            help="Header as 'Name: Value'. Repeatable.",
        ),
        click.option(
            "-q",
            "--query",
            multiple=True,
            callback=_split_pairs,
            help="Query parameter as 'name:value'. Repeatable.",
        ),
        click.option(
            "-c",
            "--cookie",
            multiple=True,
            callback=_split_pairs,
            help="Cookie as 'name:value'. Repeatable.",
        ),
        click.option(
            "-e",
            "--env",
            "env_vars",
            multiple=True,
            help="Variable as name=value. Highest precedence. Repeatable.",
        ),
        click.option("--insecure", is_flag=True, default=False, help="Skip TLS verification."),
        click.option(
            "-v",
            "--verbose",
            is_flag=True,
            default=False,
            help="Show the resolved request and response headers.",
        ),
        click.option(
            "--dry-run",
            is_flag=True,
            default=False,
            help="Print the resolved request without sending it.",
        ),
        click.option("--raw", is_flag=True, default=False, help="Output the response body only."),
        click.option("--timeout", type=int, default=None, help="Request timeout in seconds. Default: 30."),
        click.option(
            "--follow/--no-follow",
            default=None,
            help="Follow redirects. Default: follow (config follow_redirects).",
        ),
        click.option(
            "--max-redirects",
            type=click.IntRange(min=0),
            default=None,
            help=f"Redirects to follow before failing. Default: {DEFAULT_MAX_REDIRECTS}.",
        ),
        click.option("-x", "--proxy", default=None, help="Proxy URL, e.g. http://proxy:3128."),
        click.option("--proxy-login", default=None, help="Proxy user name."),
        click.option("--proxy-password", default=None, help="Proxy password."),
        click.option("--user-agent", default=None, help=f"User-Agent header. Default: {USER_AGENT}."),
        click.option(
            "-o",
            "--output-file",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help="Write the response body to a file instead of stdout.",
        ),
        click.option(
            "--no-prompt",
            is_flag=True,
            default=False,
            help="Fail instead of prompting for missing or invalid values.",
        ),
        click.option(
            "--export",
            "export_specs",
            multiple=True,
            help="Extract a response value: 'name=path' or 'name' (body.name). Repeatable.",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _invocation(opts) -> Invocation:
    return Invocation(
        variables=parse_assignments(opts["env_vars"]),
        headers=list(opts["header"]),
        query=list(opts["query"]),
        cookies=list(opts["cookie"]),
        body=opts["body"],
        body_file=opts["body_file"],
    )


def _engine(app: App, opts) -> Engine:
    proxy = opts["proxy"]
    if opts["proxy_login"] or opts["proxy_password"]:
        if not proxy:
            raise click.UsageError("--proxy-login/--proxy-password need --proxy.")
        proxy = proxy_url(proxy, opts["proxy_login"], opts["proxy_password"])
    return app.engine(
        timeout=opts["timeout"],
        insecure=opts["insecure"],
        prompt=not opts["no_prompt"],
        follow=opts["follow"],
        max_redirects=opts["max_redirects"],
        proxy=proxy,
        user_agent=opts["user_agent"],
    )


def _show_result(result, opts):
    """Print a result, or send its body to --output-file and print the rest."""
    output_file = opts["output_file"]
    if output_file is None:
        click.echo(format_output(result, verbose=opts["verbose"], raw=opts["raw"]))
        return
    storage.atomic_write_text(output_file, format_output(result, raw=True))
    if not opts["raw"]:
        click.echo(format_output(result, verbose=opts["verbose"], body=False))
    click.echo(f"Body written to {output_file}", err=True)


def _send(app: App, definition: RequestDefinition, opts):
    """Prepare, show and execute one request. Returns (prepared, result or None)."""
    engine = _engine(app, opts)
    prepared = engine.prepare(definition, _invocation(opts))
    if opts["dry_run"]:
        click.echo(prepared.request.describe())
        return prepared, None
    if opts["verbose"]:
        click.echo(prepared.request.describe() + "\n", err=True)

    result = engine.execute(prepared, definition, exports=_export_specs(opts["export_specs"]))
    _show_result(result, opts)
    for line in format_exports(result.exports):
        click.echo(line, err=True)
    return prepared, result


def adhoc_name(method: str, url: str) -> str:
    """History key for an ad hoc request: method plus URL without query."""
    return f"{method} {url.split('?', 1)[0]}"


# ── Commands ─────────────────────────────────────────────────────────────


@click.group(help=TOOL_HELP, context_settings={"max_content_width": 88})
@click.option(
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .apix.yaml in CWD, then ~/.apix/config.yaml.",
)
@click.option(
    "--state-dir",
    default=None,
    help="Directory for contexts and history. Default: ./.apix/ if present, else ~/.apix/.",
)
@click.option("--requests-dir", default=None, help="Override the requests directory.")
@click.option("--stories-dir", default=None, help="Override the stories directory.")
@click.option("--debug", is_flag=True, default=False, help="Log debug output to stderr.")
@click.pass_context
@handle_errors
def main(ctx, config_file, state_dir, requests_dir, stories_dir, debug):
    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
    ctx.obj = App(config_file, state_dir, requests_dir, stories_dir)


def _method_command(method: str):
    @main.command(name=method.lower(), help=f"Send an ad hoc {method} request to URL.")
    @click.argument("url")
    @request_options
    @click.pass_obj
    @handle_errors
    def command(app, url, **opts):
        definition = RequestDefinition(name=adhoc_name(method, url), method=method, url=url)
        _send(app, definition, opts)

    return command


for _method in ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"):
    _method_command(_method)


@main.command("exec")
@click.argument("name")
@click.option("--story", "is_story", is_flag=True, default=False, help="NAME is a story, not a request.")
@click.option(
    "--save-defaults",
    is_flag=True,
    default=False,
    help="Record the values used as the request's parameter defaults.",
)
@request_options
@click.pass_obj
@handle_errors
def exec_cmd(app, name, is_story, save_defaults, **opts):
    """Run a stored request or story."""
    if is_story:
        _run_story(app, name, opts)
        return

    definition = load_request(name, app.requests_dir)
    prepared, result = _send(app, definition, opts)
    if save_defaults and result is not None and definition.path is not None:
        values = {
            p.name: prepared.table[p.name]
            for p in definition.parameters
            if not p.secret and prepared.table.get(p.name) is not None
        }
        changed = record_defaults(definition.path, values)
        if changed:
            click.echo(f"Saved defaults: {', '.join(changed)}", err=True)


def _run_story(app: App, name: str, opts):
    if opts["dry_run"]:
        raise click.UsageError("--dry-run cannot be used with --story.")
    story = load_story(name, app.stories_dir)

    def on_step(step, result):
        click.echo(f"[step: {step.name}] STATUS: {result.status_code} ({int(result.duration_ms)}ms)")

    runner = StoryRunner(_engine(app, opts), app.requests_dir, on_step=on_step)
    run = runner.run(story, _invocation(opts))
    if not run.ok:
        click.echo(f"ERROR: step '{run.failed_step}' failed: {run.error}", err=True)
        sys.exit(run.error.exit_code)

    _show_result(run.outcomes[-1].result, opts)
    for line in format_exports(run.bindings):
        click.echo(line, err=True)


# ── Contexts ─────────────────────────────────────────────────────────────


@main.group()
def ctl():
    """Manage contexts and stored requests."""


@ctl.command("init")
@click.argument("name")
@click.option("--switch", "do_switch", is_flag=True, default=False, help="Make it the active context.")
@click.pass_obj
@handle_errors
def ctl_init(app, name, do_switch):
    """Create an empty context."""
    app.store.init(name)
    click.echo(f"Created context '{name}'.")
    if do_switch:
        app.store.switch(name)
        click.echo(f"Switched to '{name}'.")


@ctl.command("switch")
@click.argument("name")
@click.pass_obj
@handle_errors
def ctl_switch(app, name):
    """Make NAME the active context."""
    app.store.switch(name)
    click.echo(f"Switched to '{name}'.")


def _echo_contexts(app: App):
    active = app.store.active_name()
    for name in app.store.names():
        marker = "*" if name == active else " "
        click.echo(f"{marker} {name}")


@ctl.command("get")
@click.argument("target", required=False)
@click.pass_obj
@handle_errors
def ctl_get(app, target):
    """Show the active context, a named one, or 'contexts' to list them."""
    if target == "contexts":
        _echo_contexts(app)
        return
    ctx = app.store.get(target) if target else app.store.active()
    click.echo(storage.dump_yaml(ctx.to_dict()).rstrip())


@ctl.command("list")
@click.pass_obj
@handle_errors
def ctl_list(app):
    """List contexts; the active one is marked with '*'."""
    _echo_contexts(app)


@ctl.command("delete")
@click.argument("name")
@click.pass_obj
@handle_errors
def ctl_delete(app, name):
    """Delete a context that is not active."""
    app.store.delete(name)
    click.echo(f"Deleted context '{name}'.")


def _set_path(data: dict, keys: list[str], value) -> None:
    for key in keys[:-1]:
        child = data.get(key)
        if not isinstance(child, dict):
            child = data[key] = {}
        data = child
    data[keys[-1]] = value


def _unset_path(data: dict, keys: list[str]) -> bool:
    for key in keys[:-1]:
        data = data.get(key)
        if not isinstance(data, dict):
            return False
    return data.pop(keys[-1], None) is not None


@ctl.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--context", "context_name", default=None, help="Context to change. Default: active.")
@click.pass_obj
@handle_errors
def ctl_set(app, key, value, context_name):
    """Bind KEY to VALUE. Keys under 'session.' edit the session instead."""
    if key.startswith(SESSION_PREFIX):
        ctx = app.store.get(context_name or app.store.active_name())
        session = dict(ctx.session)
        _set_path(session, key[len(SESSION_PREFIX) :].split("."), value)
        app.store.set_session(session, ctx.name)
    else:
        app.store.set_binding(key, value, context_name)
    click.echo(f"{key} set.")


@ctl.command("unset")
@click.argument("key")
@click.option("--context", "context_name", default=None, help="Context to change. Default: active.")
@click.pass_obj
@handle_errors
def ctl_unset(app, key, context_name):
    """Remove a binding (or a 'session.' entry)."""
    if key.startswith(SESSION_PREFIX):
        ctx = app.store.get(context_name or app.store.active_name())
        session = dict(ctx.session)
        removed = _unset_path(session, key[len(SESSION_PREFIX) :].split("."))
        if removed:
            app.store.set_session(session, ctx.name)
    else:
        removed = app.store.unset_binding(key, context_name)
    click.echo(f"{key} removed." if removed else f"{key} was not set.")


def _parse_param(spec: str) -> Parameter:
    """name, name=default, name:type or name:type=default."""
    default = None
    if "=" in spec:
        spec, default = spec.split("=", 1)
    name, _, json_type = spec.partition(":")
    data = {"name": name.strip()}
    if json_type:
        data["type"] = json_type.strip()
    param = Parameter.from_dict(data)
    if default is not None:
        param.default = param.coerce(default)
        param.required = False
    return param


@ctl.command("create")
@click.argument("name")
@click.argument("method", type=click.Choice(["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"], case_sensitive=False))
@click.argument("url")
@click.option("-d", "--description", default=None, help="Short description.")
@click.option("-H", "--header", multiple=True, callback=_split_pairs, help="Header as 'Name: Value'.")
@click.option("-q", "--query", multiple=True, callback=_split_pairs, help="Query as 'name:value'.")
@click.option("-b", "--body", default=None, help="Body template.")
@click.option(
    "-p",
    "--param",
    "params",
    multiple=True,
    help="Parameter as name, name=default, name:type or name:type=default.",
)
@click.option("--export", "export_specs", multiple=True, help="Export as 'name=path'.")
@click.option("--persist", multiple=True, help="Export name to store in the context.")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing request.")
@click.pass_obj
@handle_errors
def ctl_create(app, name, method, url, description, header, query, body, params, export_specs, persist, force):
    """Save a new request definition."""
    exports = _export_specs(export_specs)
    unknown = [p for p in persist if p not in exports]
    if unknown:
        raise DefinitionError(f"persist names without an export: {', '.join(unknown)}")
    definition = RequestDefinition(
        name=name,
        method=method.upper(),
        url=url,
        description=description,
        headers=list(header),
        query=list(query),
        body=body,
        parameters=[_parse_param(p) for p in params],
        exports=exports,
        persist=list(persist),
    )
    path = save_request(definition, app.requests_dir, overwrite=force)
    click.echo(f"Saved {path}")


@ctl.command("requests")
@click.pass_obj
@handle_errors
def ctl_requests(app):
    """List stored request definitions."""
    defs = list_definitions(app.requests_dir)
    if not defs:
        click.echo(f"No requests found in: {app.requests_dir}")
        return
    click.echo(f"Requests from: {app.requests_dir}")
    click.echo(f"{len(defs)} available:\n")
    for data in defs:
        desc = data.get("description")
        click.echo(f"  {data['name']} — {desc}" if desc else f"  {data['name']}")
        detail = [f"{str(data.get('method', 'GET')).upper()} {data.get('url', '')}"]
        params = [p.get("name", "") if isinstance(p, dict) else str(p) for p in data.get("parameters") or []]
        if params:
            detail.append(f"params: {', '.join(params)}")
        exports = data.get("exports") or {}
        if exports:
            detail.append(f"exports: {', '.join(exports)}")
        click.echo(f"    {' | '.join(detail)}")


@ctl.command("edit")
@click.argument("kind", type=click.Choice(["request", "story"]))
@click.argument("name")
@click.pass_obj
@handle_errors
def ctl_edit(app, kind, name):
    """Open a stored request or story in $VISUAL or $EDITOR."""
    directory = app.requests_dir if kind == "request" else app.stories_dir
    path = find_definition(name, directory)
    if path is None:
        raise DefinitionError(f"{kind.capitalize()} '{name}' not found (looked in {directory}).")
    click.edit(filename=str(path))
    load = load_request if kind == "request" else load_story
    load(str(path), directory)
    click.echo(f"Edited {path}")


# ── Config ───────────────────────────────────────────────────────────────


def _get_path(data: dict, keys: list[str]):
    for key in keys:
        if not isinstance(data, dict) or key not in data:
            raise ConfigError(f"Config key '{'.'.join(keys)}' is not set.")
        data = data[key]
    return data


@main.group("config")
def config_group():
    """Show or change config defaults (timeout, headers, proxy, ...)."""


@config_group.command("list")
@click.pass_obj
@handle_errors
def config_list(app):
    """Print the loaded config defaults."""
    if app.config.path is None:
        click.echo("No config file found.", err=True)
        return
    click.echo(f"Config from: {app.config.path}", err=True)
    if app.defaults:
        click.echo(storage.dump_yaml(app.defaults).rstrip())


@config_group.command("get")
@click.argument("key")
@click.pass_obj
@handle_errors
def config_get(app, key):
    """Print one default; dotted keys reach into mappings (headers.Accept)."""
    value = _get_path(app.defaults, key.split("."))
    if isinstance(value, dict | list):
        click.echo(f"{key}:\n{storage.dump_yaml(value).rstrip()}")
    else:
        click.echo(f"{key}: {value}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
@handle_errors
def config_set(app, key, value):
    """Set a default. VALUE is read as YAML, so 10 and true keep their types."""
    keys = key.split(".")
    try:
        _get_path(app.defaults, keys)
        replaced = True
    except ConfigError:
        replaced = False
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        parsed = value
    _set_path(app.defaults, keys, parsed)
    path = app.config.save()
    click.echo(f"{'Replaced' if replaced else 'Set'} config key {key} in {path}")


@config_group.command("delete")
@click.argument("key")
@click.pass_obj
@handle_errors
def config_delete(app, key):
    """Remove a default."""
    if app.config.path is None or not _unset_path(app.defaults, key.split(".")):
        raise ConfigError(f"Config key '{key}' is not set.")
    app.config.save()
    click.echo(f"Deleted config key {key}")


# ── History ──────────────────────────────────────────────────────────────


@main.command("history")
@click.argument("name", required=False)
@click.option("--all", "show_all", is_flag=True, default=False, help="List every recorded run of NAME.")
@click.pass_obj
@handle_errors
def history_cmd(app, name, show_all):
    """Show recorded results. Without NAME, list what has history."""
    if not name:
        names = app.history.names()
        if not names:
            click.echo("No request history.")
            return
        click.echo("Request history:\n")
        for n in names:
            entries = app.history.list(n)
            last = entries[-1]
            click.echo(f"  {n}  ({len(entries)} runs, last {last.status_code} at {last.timestamp})")
        return

    if show_all:
        entries = app.history.list(name)
        if not entries:
            click.echo(f"No history for '{name}'.")
            return
        for i, result in enumerate(entries):
            click.echo(format_history_line(i, result))
        return

    result = app.history.latest(name)
    click.echo(f"REQUEST: {result.request.get('method', '?')} {result.request.get('url', '?')}")
    click.echo(f"CONTEXT: {result.context}")
    click.echo(format_output(result, verbose=True))


# ── Project init ─────────────────────────────────────────────────────────


@main.command("init")
@handle_errors
def init_cmd():
    """Scaffold .apix.yaml, requests/, stories/ and a local state dir in CWD."""
    config_file = Path(".apix.yaml")
    base_url = _detect_base_url()

    if config_file.exists():
        click.echo(f"  {config_file} (skipped, already exists)")
    else:
        config_file.write_text(_generate_config())
        click.echo(f"  {config_file} (created)")

    for d in (Path("requests"), Path("stories")):
        if d.exists():
            click.echo(f"  {d}/ (skipped, already exists)")
        else:
            d.mkdir(parents=True)
            click.echo(f"  {d}/ (created)")

    state_dir = Path(STATE_DIR_NAME)
    if state_dir.exists():
        click.echo(f"  {state_dir}/ (skipped, already exists)")
    else:
        store = ContextStore(state_dir)
        store.set_binding("base", base_url, store.active_name())
        click.echo(f"  {state_dir}/ (created, base={base_url})")

    _ensure_gitignored(Path(".gitignore"), f"{STATE_DIR_NAME}/")
    click.echo("\nProject initialized. Run 'apix --help' to get started.")


def _ensure_gitignored(path: Path, entry: str) -> None:
    lines = path.read_text().splitlines() if path.exists() else []
    if entry in lines:
        click.echo(f"  {path} (skipped, already ignores {entry})")
        return
    lines.append(entry)
    path.write_text("\n".join(lines) + "\n")
    click.echo(f"  {path} (updated)")


def _detect_base_url() -> str:
    """Sniff CWD for framework files, return likely localhost URL."""
    if Path("package.json").exists():
        return "http://localhost:3000"
    if Path("pyproject.toml").exists() or Path("requirements.txt").exists():
        return "http://localhost:8000"
    if Path("go.mod").exists():
        return "http://localhost:8080"
    if Path("Gemfile").exists():
        return "http://localhost:3000"
    if Path("Cargo.toml").exists():
        return "http://localhost:8080"
    return "http://localhost:3000"


def _generate_config() -> str:
    """Return .apix.yaml content string."""
    return """\
# apix configuration
# See: apix --help

defaults:
  # env_file: .env
  timeout: 30
  requests_dir: requests
  stories_dir: stories
  # follow_redirects: true
  # proxy: ${HTTPS_PROXY}
  headers:
    Accept: application/json
  # auth:
  #   type: bearer
  #   token: ${API_TOKEN}
"""
