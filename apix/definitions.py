"""apix definitions - stored request and story files.

A request file::

    # requests/get-todos.yaml
    name: get-todos
    description: List todos
    method: GET
    url: "{{base}}/todos?_limit={{limit}}"
    headers:
      Accept: application/json
    query:
      userId: "{{user}}"
    parameters:
      - name: limit
        type: integer
        default: 10
      - name: user
        required: false
    exports:
      first_id: body[0].id
    persist: [first_id]

A story file::

    # stories/signup.yaml
    name: signup
    context:
      dev: {base: "http://localhost:3000"}
    steps:
      - name: create
        request: create-user
        params: {email: a@b.com}
        exports: {id: body.id}
      - name: fetch
        request:
          method: GET
          url: "{{base}}/users/{{id}}"
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jsonschema import Draft7Validator, FormatChecker
from jsonschema.exceptions import SchemaError

from apix import storage
from apix.errors import DefinitionError
from apix.template import referenced_names

logger = logging.getLogger(__name__)

METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

# Shorthand constraint keys accepted directly on a parameter.
_SCHEMA_KEYS = ("type", "format", "pattern", "enum", "minLength", "maxLength", "minimum", "maximum")

_FORMAT_CHECKER = FormatChecker()


@dataclass
class Parameter:
    """A declared request parameter with optional constraint."""

    name: str
    required: bool = True
    default: Any = None
    description: str | None = None
    secret: bool = False
    schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict | str) -> Parameter:
        if isinstance(data, str):
            return cls(name=data)
        if not isinstance(data, dict) or not data.get("name"):
            raise DefinitionError(f"Parameter needs a name: {data!r}")
        schema = dict(data.get("schema") or {})
        for key in _SCHEMA_KEYS:
            if key in data:
                schema[key] = data[key]
        param = cls(
            name=str(data["name"]),
            required=bool(data.get("required", True)),
            default=data.get("default"),
            description=data.get("description"),
            secret=bool(data.get("secret", False)),
            schema=schema,
        )
        try:
            Draft7Validator.check_schema(param.schema)
        except SchemaError as e:
            raise DefinitionError(f"Parameter '{param.name}' has an invalid schema: {e.message}") from e
        return param

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"name": self.name}
        if self.description:
            data["description"] = self.description
        if not self.required:
            data["required"] = False
        if self.secret:
            data["secret"] = True
        if self.default is not None:
            data["default"] = self.default
        shorthand = {k: v for k, v in self.schema.items() if k in _SCHEMA_KEYS}
        rest = {k: v for k, v in self.schema.items() if k not in _SCHEMA_KEYS}
        data.update(shorthand)
        if rest:
            data["schema"] = rest
        return data

    @property
    def json_type(self) -> str | None:
        t = self.schema.get("type")
        return t if isinstance(t, str) else None

    def coerce(self, value: Any) -> Any:
        """Turn text input into the declared JSON type when possible."""
        if not isinstance(value, str) or self.json_type in (None, "string"):
            return value
        try:
            return json.loads(value)
        except ValueError:
            return value

    def check(self, value: Any) -> str | None:
        """Return the validation failure cause, or None when value is valid."""
        if not self.schema:
            return None
        validator = Draft7Validator(self.schema, format_checker=_FORMAT_CHECKER)
        errors = sorted(validator.iter_errors(value), key=lambda e: list(e.path))
        if not errors:
            return None
        return "; ".join(e.message for e in errors)


def _pairs(value: Any, what: str) -> list[tuple[str, Any]]:
    """Accept a mapping or a list of {name, value} items, keep order."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [(str(k), v) for k, v in value.items()]
    if isinstance(value, list):
        out = []
        for item in value:
            if not isinstance(item, dict) or "name" not in item:
                raise DefinitionError(f"Each {what} entry needs name/value: {item!r}")
            out.append((str(item["name"]), item.get("value", "")))
        return out
    raise DefinitionError(f"{what} must be a mapping or a list, got {type(value).__name__}")


@dataclass
class RequestDefinition:
    name: str
    method: str = "GET"
    url: str = ""
    description: str | None = None
    headers: list[tuple[str, Any]] = field(default_factory=list)
    query: list[tuple[str, Any]] = field(default_factory=list)
    cookies: list[tuple[str, Any]] = field(default_factory=list)
    body: Any = None
    body_file: str | None = None
    render_body_file: bool = False
    parameters: list[Parameter] = field(default_factory=list)
    exports: dict[str, str] = field(default_factory=dict)
    persist: list[str] = field(default_factory=list)
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict, name: str | None = None, path: Path | None = None) -> RequestDefinition:
        if not isinstance(data, dict):
            raise DefinitionError(f"Request definition must be a mapping: {path or name}")
        method = str(data.get("method", "GET")).upper()
        if method not in METHODS:
            raise DefinitionError(f"Unsupported method '{method}' in {path or name}")
        if not data.get("url"):
            raise DefinitionError(f"Request '{data.get('name') or name}' has no url")
        if data.get("body") is not None and data.get("body_file"):
            raise DefinitionError(f"Request '{data.get('name') or name}' sets both body and body_file")
        persist = data.get("persist") or []
        if isinstance(persist, str):
            persist = [persist]
        exports = data.get("exports") or {}
        unknown = [p for p in persist if p not in exports]
        if unknown:
            raise DefinitionError(f"persist names without an export: {', '.join(unknown)}")
        return cls(
            name=str(data.get("name") or name or (path.stem if path else "request")),
            method=method,
            url=str(data["url"]),
            description=data.get("description"),
            headers=_pairs(data.get("headers"), "header"),
            query=_pairs(data.get("query"), "query"),
            cookies=_pairs(data.get("cookies"), "cookie"),
            body=copy.deepcopy(data.get("body")),
            body_file=data.get("body_file"),
            render_body_file=bool(data.get("render_body_file", False)),
            parameters=[Parameter.from_dict(p) for p in data.get("parameters") or []],
            exports={str(k): str(v) for k, v in exports.items()},
            persist=[str(p) for p in persist],
            path=path,
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"name": self.name}
        if self.description:
            data["description"] = self.description
        data["method"] = self.method
        data["url"] = self.url
        for key in ("headers", "query", "cookies"):
            pairs = getattr(self, key)
            if pairs:
                data[key] = dict(pairs)
        if self.body is not None:
            data["body"] = self.body
        if self.body_file:
            data["body_file"] = self.body_file
            if self.render_body_file:
                data["render_body_file"] = True
        if self.parameters:
            data["parameters"] = [p.to_dict() for p in self.parameters]
        if self.exports:
            data["exports"] = dict(self.exports)
        if self.persist:
            data["persist"] = list(self.persist)
        return data

    def defaults(self) -> dict[str, Any]:
        return {p.name: p.default for p in self.parameters if p.default is not None}

    def body_path(self) -> Path | None:
        if not self.body_file:
            return None
        p = Path(self.body_file)
        if not p.is_absolute() and self.path is not None:
            p = self.path.parent / p
        return p

    def referenced_names(self) -> set[str]:
        """Names the definition's templates need (body file excluded)."""
        names = referenced_names(self.url)
        for pairs in (self.headers, self.query, self.cookies):
            for _, v in pairs:
                names |= referenced_names(v)
        names |= referenced_names(self.body)
        return names


@dataclass
class StoryStep:
    name: str
    request: str | RequestDefinition
    params: dict[str, Any] = field(default_factory=dict)
    exports: dict[str, str] = field(default_factory=dict)

    @property
    def request_name(self) -> str:
        if isinstance(self.request, RequestDefinition):
            return self.request.name
        return self.request


@dataclass
class Story:
    name: str
    steps: list[StoryStep]
    description: str | None = None
    context: dict[str, dict[str, Any]] = field(default_factory=dict)
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict, name: str | None = None, path: Path | None = None) -> Story:
        if not isinstance(data, dict) or not isinstance(data.get("steps"), list) or not data["steps"]:
            raise DefinitionError(f"Story needs a non-empty steps list: {path or name}")
        story_name = str(data.get("name") or name or (path.stem if path else "story"))
        steps = []
        for i, raw in enumerate(data["steps"]):
            if not isinstance(raw, dict) or "request" not in raw:
                raise DefinitionError(f"Step {i} of story '{story_name}' has no request")
            step_name = str(raw.get("name") or f"step-{i + 1}")
            request = raw["request"]
            if isinstance(request, dict):
                request = RequestDefinition.from_dict(request, name=f"{story_name}.{step_name}", path=path)
            elif not isinstance(request, str):
                raise DefinitionError(f"Step '{step_name}' request must be a name or a mapping")
            steps.append(
                StoryStep(
                    name=step_name,
                    request=request,
                    params=dict(raw.get("params") or {}),
                    exports={str(k): str(v) for k, v in (raw.get("exports") or {}).items()},
                ),
            )
        return cls(
            name=story_name,
            steps=steps,
            description=data.get("description"),
            context={str(k): dict(v or {}) for k, v in (data.get("context") or {}).items()},
            path=path,
        )

    def variables_for(self, context_name: str) -> dict[str, Any]:
        return dict(self.context.get(context_name, {}))


# ── Loading / saving ─────────────────────────────────────────────────────


def _read_definition_file(path: Path) -> dict:
    data = storage.read_yaml(path)
    if not isinstance(data, dict):
        raise DefinitionError(f"{path} does not contain a mapping")
    return data


def find_definition(name_or_path: str, directory: Path | None) -> Path | None:
    """Locate a definition file.

    Resolution order:
      1. Exact file path or path with .yaml/.yml extension
      2. directory/name.yaml (or .yml)
    """
    p = Path(name_or_path)
    if p.is_file():
        return p
    for ext in (".yaml", ".yml"):
        candidate = Path(name_or_path + ext)
        if candidate.is_file():
            return candidate
    if directory and directory.is_dir():
        for ext in (".yaml", ".yml"):
            candidate = directory / (name_or_path + ext)
            if candidate.is_file():
                return candidate
    return None


def load_request(name_or_path: str, directory: Path | None) -> RequestDefinition:
    path = find_definition(name_or_path, directory)
    if path is None:
        raise DefinitionError(
            f"Request '{name_or_path}' not found (looked in {directory or 'the working directory'}).",
        )
    logger.debug("loading request %s from %s", name_or_path, path)
    return RequestDefinition.from_dict(_read_definition_file(path), name=path.stem, path=path.resolve())


def load_story(name_or_path: str, directory: Path | None) -> Story:
    path = find_definition(name_or_path, directory)
    if path is None:
        raise DefinitionError(
            f"Story '{name_or_path}' not found (looked in {directory or 'the working directory'}).",
        )
    logger.debug("loading story %s from %s", name_or_path, path)
    return Story.from_dict(_read_definition_file(path), name=path.stem, path=path.resolve())


def list_definitions(directory: Path | None) -> list[dict]:
    """Raw mappings of every definition file in a directory, sorted by file name."""
    if not directory or not directory.is_dir():
        return []
    out = []
    for f in sorted(directory.iterdir()):
        if f.suffix in (".yaml", ".yml") and f.is_file():
            try:
                data = _read_definition_file(f)
            except Exception as e:
                logger.warning("skipping unreadable definition %s: %s", f, e)
                continue
            data.setdefault("name", f.stem)
            out.append(data)
    return out


def save_request(definition: RequestDefinition, directory: Path, overwrite: bool = False) -> Path:
    """Write a request definition to directory/<name>.yaml."""
    path = directory / f"{definition.name}.yaml"
    if path.exists() and not overwrite:
        raise DefinitionError(f"Request '{definition.name}' already exists at {path}")
    storage.write_yaml(path, definition.to_dict())
    return path


def record_defaults(path: Path, values: dict[str, Any]) -> list[str]:
    """Rewrite a request file so the given parameters default to values.

    Only the ``default`` key of matching parameters changes; every other key
    of the file is written back in its original order.
    """
    data = _read_definition_file(path)
    changed = []
    for raw in data.get("parameters") or []:
        if isinstance(raw, dict) and raw.get("name") in values:
            if raw.get("default") != values[raw["name"]]:
                raw["default"] = values[raw["name"]]
                changed.append(raw["name"])
    if changed:
        storage.write_yaml(path, data)
    return changed
