"""Scenario tests for request and story definition files."""

import pytest
import yaml

from apix.definitions import (
    Parameter,
    RequestDefinition,
    Story,
    list_definitions,
    load_request,
    load_story,
    record_defaults,
    save_request,
)
from apix.errors import DefinitionError


def _write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data, sort_keys=False))
    return path


# ── Parameters ───────────────────────────────────────────────────────────


class TestParameter:
    def test_shorthand_keys_build_schema(self):
        p = Parameter.from_dict({"name": "limit", "type": "integer", "minimum": 1, "default": 10})
        assert p.schema == {"type": "integer", "minimum": 1}
        assert p.default == 10

    def test_bare_string(self):
        p = Parameter.from_dict("token")
        assert p.name == "token"
        assert p.required

    def test_invalid_schema_rejected(self):
        with pytest.raises(DefinitionError):
            Parameter.from_dict({"name": "x", "type": "integr"})

    def test_check_email(self):
        p = Parameter.from_dict({"name": "email", "type": "string", "format": "email"})
        assert p.check("a@b.com") is None
        assert p.check("bad\\gmail.com") is not None

    def test_check_enum_and_pattern(self):
        p = Parameter.from_dict({"name": "env", "enum": ["dev", "prod"]})
        assert p.check("dev") is None
        assert p.check("qa") is not None
        p = Parameter.from_dict({"name": "id", "pattern": "^[0-9]+$"})
        assert p.check("12") is None
        assert p.check("x1") is not None

    def test_to_dict_round_trips_shorthand(self):
        data = {"name": "limit", "required": False, "default": 5, "type": "integer"}
        assert Parameter.from_dict(data).to_dict() == data


# ── Request definitions ──────────────────────────────────────────────────


class TestRequestDefinition:
    def test_from_dict(self):
        d = RequestDefinition.from_dict(
            {
                "method": "post",
                "url": "{{base}}/users",
                "headers": {"Accept": "application/json"},
                "query": [{"name": "page", "value": "1"}],
                "body": {"email": "{{email}}"},
                "exports": {"id": "body.id"},
                "persist": "id",
            },
            name="create-user",
        )
        assert d.name == "create-user"
        assert d.method == "POST"
        assert d.headers == [("Accept", "application/json")]
        assert d.query == [("page", "1")]
        assert d.persist == ["id"]

    def test_method_checked(self):
        with pytest.raises(DefinitionError):
            RequestDefinition.from_dict({"method": "FETCH", "url": "http://x"}, name="x")

    def test_url_required(self):
        with pytest.raises(DefinitionError):
            RequestDefinition.from_dict({"method": "GET"}, name="x")

    def test_body_and_body_file_exclusive(self):
        with pytest.raises(DefinitionError):
            RequestDefinition.from_dict({"url": "http://x", "body": "a", "body_file": "b.json"}, name="x")

    def test_persist_needs_export(self):
        with pytest.raises(DefinitionError):
            RequestDefinition.from_dict({"url": "http://x", "persist": ["token"]}, name="x")

    def test_referenced_names(self):
        d = RequestDefinition.from_dict(
            {
                "url": "{{base}}/users/{{id}}",
                "headers": {"Authorization": "Bearer {{token}}"},
                "body": {"note": "{{uuid}}"},
            },
            name="x",
        )
        assert d.referenced_names() == {"base", "id", "token"}

    def test_defaults(self):
        d = RequestDefinition.from_dict(
            {"url": "http://x", "parameters": [{"name": "limit", "default": 10}, "token"]},
            name="x",
        )
        assert d.defaults() == {"limit": 10}

    def test_body_path_relative_to_file(self, tmp_path):
        d = RequestDefinition.from_dict(
            {"url": "http://x", "body_file": "payload.json"},
            name="x",
            path=tmp_path / "requests" / "x.yaml",
        )
        assert d.body_path() == tmp_path / "requests" / "payload.json"


class TestLoadAndSave:
    def test_load_by_name(self, tmp_path):
        _write_yaml(tmp_path / "requests" / "get-todos.yaml", {"url": "http://x/todos"})
        d = load_request("get-todos", tmp_path / "requests")
        assert d.name == "get-todos"
        assert d.path == (tmp_path / "requests" / "get-todos.yaml").resolve()

    def test_load_missing(self, tmp_path):
        with pytest.raises(DefinitionError, match="not found"):
            load_request("nope", tmp_path)

    def test_list_definitions_sorted(self, tmp_path):
        _write_yaml(tmp_path / "b.yaml", {"url": "http://b"})
        _write_yaml(tmp_path / "a.yml", {"url": "http://a", "name": "alpha"})
        (tmp_path / "notes.txt").write_text("skip")
        names = [d["name"] for d in list_definitions(tmp_path)]
        assert names == ["alpha", "b"]

    def test_save_refuses_overwrite(self, tmp_path):
        d = RequestDefinition(name="ping", url="http://x/ping")
        save_request(d, tmp_path)
        with pytest.raises(DefinitionError, match="already exists"):
            save_request(d, tmp_path)
        save_request(d, tmp_path, overwrite=True)

    def test_save_then_load(self, tmp_path):
        d = RequestDefinition(
            name="ping",
            method="POST",
            url="{{base}}/ping",
            headers=[("X-Trace", "{{uuid}}")],
            parameters=[Parameter("base")],
            exports={"pong": "body.pong"},
        )
        save_request(d, tmp_path)
        loaded = load_request("ping", tmp_path)
        assert loaded.to_dict() == d.to_dict()

    def test_record_defaults_keeps_other_keys(self, tmp_path):
        path = _write_yaml(
            tmp_path / "x.yaml",
            {
                "description": "keep me",
                "url": "http://x",
                "parameters": [{"name": "limit", "type": "integer"}, {"name": "q"}],
            },
        )
        changed = record_defaults(path, {"limit": 3})
        assert changed == ["limit"]
        data = yaml.safe_load(path.read_text())
        assert list(data) == ["description", "url", "parameters"]
        assert data["parameters"][0] == {"name": "limit", "type": "integer", "default": 3}
        assert record_defaults(path, {"limit": 3}) == []


# ── Stories ──────────────────────────────────────────────────────────────


class TestStory:
    def test_steps_and_inline_request(self):
        story = Story.from_dict(
            {
                "steps": [
                    {"request": "create-user", "params": {"email": "a@b.com"}, "exports": {"id": "body.id"}},
                    {"name": "fetch", "request": {"url": "{{base}}/users/{{id}}"}},
                ],
            },
            name="signup",
        )
        first, second = story.steps
        assert first.name == "step-1"
        assert first.request_name == "create-user"
        assert second.request_name == "signup.fetch"

    def test_empty_steps_rejected(self):
        with pytest.raises(DefinitionError):
            Story.from_dict({"steps": []}, name="x")

    def test_step_without_request(self):
        with pytest.raises(DefinitionError):
            Story.from_dict({"steps": [{"name": "a"}]}, name="x")

    def test_variables_for_context(self):
        story = Story.from_dict(
            {"context": {"dev": {"base": "http://localhost"}}, "steps": [{"request": "a"}]},
            name="x",
        )
        assert story.variables_for("dev") == {"base": "http://localhost"}
        assert story.variables_for("prod") == {}

    def test_load_story(self, tmp_path):
        _write_yaml(tmp_path / "stories" / "flow.yaml", {"steps": [{"request": "a"}]})
        assert load_story("flow", tmp_path / "stories").name == "flow"
