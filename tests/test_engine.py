"""Scenario tests for the execution engine: resolve, prompt, send, record."""

from unittest.mock import MagicMock, patch

import pytest

from apix.builder import Invocation
from apix.definitions import RequestDefinition
from apix.engine import Engine
from apix.errors import (
    HistoryNotFound,
    RenderError,
    ResolutionError,
    TransportError,
    UserCancelled,
    ValidationError,
)
from tests.conftest import NOW, make_transport_response


def _definition(**fields):
    data = {"method": "GET", "url": "{{base}}/todos?_limit={{limit}}"}
    data.update(fields)
    return RequestDefinition.from_dict(data, name="get-todos")


def _engine(store, history, transport=None, prompter=None, **kwargs):
    transport = transport or MagicMock(return_value=make_transport_response(body=[{"id": 1}]))
    return Engine(store, history, transport=transport, prompter=prompter, clock=lambda: NOW, **kwargs)


# ── Resolution ───────────────────────────────────────────────────────────


class TestPrepare:
    def test_context_binding_and_override(self, store, history):
        store.set_binding("base", "https://jsonplaceholder.typicode.com")
        store.set_binding("limit", "50")
        engine = _engine(store, history)
        prepared = engine.prepare(_definition(), Invocation(variables={"limit": "3"}))
        assert prepared.request.url == "https://jsonplaceholder.typicode.com/todos?_limit=3"
        assert prepared.context.name == "default"

    def test_parameter_default(self, store, history):
        store.set_binding("base", "https://x.test")
        d = _definition(parameters=[{"name": "limit", "type": "integer", "default": 10}])
        assert _engine(store, history).prepare(d).request.url == "https://x.test/todos?_limit=10"

    def test_story_defaults_over_parameter_defaults(self, store, history):
        d = _definition(parameters=[{"name": "limit", "default": 10}, {"name": "base", "default": "https://d.test"}])
        prepared = _engine(store, history).prepare(d, story_defaults={"base": "https://story.test"})
        assert prepared.request.url == "https://story.test/todos?_limit=10"

    def test_chain_below_override(self, store, history):
        d = _definition(url="https://x.test/users/{{id}}")
        prepared = _engine(store, history).prepare(
            d,
            Invocation(variables={"id": "override"}),
            chain={"id": 42},
        )
        assert prepared.request.url == "https://x.test/users/override"

    def test_jar_cookies_for_target(self, store, history):
        from apix.cookies import Cookie

        store.upsert_cookie(Cookie("sid", "abc", "x.test"))
        store.upsert_cookie(Cookie("other", "zzz", "elsewhere.test"))
        prepared = _engine(store, history).prepare(_definition(url="https://x.test/me"))
        assert prepared.request.cookies == {"sid": "abc"}

    def test_missing_without_prompter(self, store, history):
        with pytest.raises(ResolutionError) as exc:
            _engine(store, history).prepare(_definition())
        assert {p.name for p in exc.value.missing} == {"base", "limit"}

    def test_invalid_without_prompter(self, store, history):
        store.set_binding("email", "bad\\gmail.com")
        d = _definition(url="https://x.test/u", parameters=[{"name": "email", "format": "email"}])
        with pytest.raises(ValidationError):
            _engine(store, history).prepare(d)

    def test_invalid_override_never_prompted(self, store, history):
        prompter = MagicMock()
        d = _definition(url="https://x.test/u", parameters=[{"name": "limit", "type": "integer"}])
        with pytest.raises(ValidationError):
            _engine(store, history, prompter=prompter).prepare(d, Invocation(variables={"limit": "lots"}))
        prompter.assert_not_called()

    def test_render_error_propagates(self, store, history):
        d = _definition(url="https://x.test/{{base")
        with pytest.raises(RenderError):
            _engine(store, history).prepare(d)


class TestPromptLoop:
    def test_prompts_for_missing(self, store, history):
        store.set_binding("base", "https://x.test")
        prompter = MagicMock(return_value="5")
        prepared = _engine(store, history, prompter=prompter).prepare(_definition())
        assert prepared.request.url == "https://x.test/todos?_limit=5"
        (param, reason), _ = prompter.call_args
        assert param.name == "limit"
        assert reason is None

    def test_prompts_for_invalid_context_value(self, store, history):
        store.set_binding("email", "bad\\gmail.com")
        prompter = MagicMock(return_value="a@b.com")
        d = _definition(
            url="https://x.test/u",
            query={"email": "{{email}}"},
            parameters=[{"name": "email", "format": "email"}],
        )
        prepared = _engine(store, history, prompter=prompter).prepare(d)
        assert prepared.request.url == "https://x.test/u?email=a%40b.com"
        assert prompter.call_count == 1

    def test_invalid_chain_value_not_prompted(self, store, history):
        prompter = MagicMock(return_value="a@b.com")
        d = _definition(url="https://x.test/u", parameters=[{"name": "email", "format": "email"}])
        with pytest.raises(ValidationError):
            _engine(store, history, prompter=prompter).prepare(d, chain={"email": "nope"})
        assert prompter.call_count == 0

    def test_prompts_for_invalid_default(self, store, history):
        prompter = MagicMock(return_value="a@b.com")
        d = _definition(
            url="https://x.test/u",
            query={"email": "{{email}}"},
            parameters=[{"name": "email", "format": "email", "default": "nobody"}],
        )
        prepared = _engine(store, history, prompter=prompter).prepare(d)
        assert prepared.request.url == "https://x.test/u?email=a%40b.com"

    def test_cancel_writes_nothing(self, store, history, state_dir):
        store.set_binding("base", "https://x.test")
        before = store.active().to_dict()
        transport = MagicMock()
        engine = _engine(store, history, transport=transport, prompter=MagicMock(side_effect=UserCancelled()))
        with pytest.raises(UserCancelled):
            engine.run(_definition())
        transport.assert_not_called()
        assert store.active().to_dict() == before
        assert not (state_dir / "history").exists()


# ── Execution ────────────────────────────────────────────────────────────


class TestExecute:
    def test_records_history_and_exports(self, store, history):
        store.set_binding("base", "https://x.test")
        transport = MagicMock(
            return_value=make_transport_response(
                status_code=201,
                body={"id": 42, "token": "t"},
                headers={"Location": "/users/42"},
            ),
        )
        d = _definition(
            url="{{base}}/users",
            method="POST",
            exports={"user_id": "body.id", "where": "headers.location"},
        )
        _, result = _engine(store, history, transport=transport).run(d)
        assert result.status_code == 201
        assert result.exports == {"user_id": 42, "where": "/users/42"}
        assert history.latest("get-todos").exports == result.exports
        kwargs = transport.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://x.test/users"

    def test_persist_writes_binding(self, store, history):
        transport = MagicMock(return_value=make_transport_response(body={"access_token": "tok"}))
        d = _definition(
            url="https://x.test/login",
            exports={"token": "body.access_token", "unused": "body.missing"},
            persist=["token"],
        )
        _, result = _engine(store, history, transport=transport).run(d)
        assert store.get_binding("token") == "tok"
        assert "unused" not in result.exports

    def test_set_cookie_applied(self, store, history):
        transport = MagicMock(
            return_value=make_transport_response(set_cookies=["sid=abc; Path=/", "old=; Max-Age=0"]),
        )
        from apix.cookies import Cookie

        store.upsert_cookie(Cookie("old", "1", "x.test"))
        _engine(store, history, transport=transport).run(_definition(url="https://x.test/login"))
        assert store.active().cookies_for("https://x.test/") == {"sid": "abc"}

    def test_extra_exports(self, store, history):
        transport = MagicMock(return_value=make_transport_response(body={"a": 1}))
        _, result = _engine(store, history, transport=transport).run(
            _definition(url="https://x.test/"),
            exports={"first": "body.a"},
        )
        assert result.exports == {"first": 1}

    def test_error_status_is_completed(self, store, history):
        transport = MagicMock(return_value=make_transport_response(status_code=500, body="boom"))
        _, result = _engine(store, history, transport=transport).run(_definition(url="https://x.test/"))
        assert result.outcome == "completed"
        assert result.status_code == 500

    def test_transport_error_leaves_state(self, store, history):
        store.set_binding("base", "https://x.test")
        before = store.active().to_dict()
        transport = MagicMock(side_effect=TransportError("timeout", "read timed out"))
        d = _definition(url="{{base}}/", exports={"x": "body.x"}, persist=["x"])
        with pytest.raises(TransportError):
            _engine(store, history, transport=transport).run(d)
        assert store.active().to_dict() == before
        with pytest.raises(HistoryNotFound):
            history.latest("get-todos")

    def test_timeout_and_verify_passed(self, store, history):
        transport = MagicMock(return_value=make_transport_response())
        _engine(store, history, transport=transport, timeout=5, verify=False).run(_definition(url="https://x.test/"))
        assert transport.call_args.kwargs["timeout"] == 5
        assert transport.call_args.kwargs["verify"] is False

    def test_transport_options_passed(self, store, history):
        transport = MagicMock(return_value=make_transport_response())
        options = {"follow_redirects": False, "max_redirects": 3, "proxy": "http://p:8080", "user_agent": "ua"}
        _engine(store, history, transport=transport, transport_options=options).run(_definition(url="https://x.test/"))
        kwargs = transport.call_args.kwargs
        assert {k: kwargs[k] for k in options} == options

    def test_redirect_hop_cookie_scoped_to_its_host(self, store, history):
        transport = MagicMock(
            return_value=make_transport_response(
                set_cookies=[("sso=1; Path=/", "https://auth.test/login"), ("sid=2", "https://x.test/home")],
            ),
        )
        _engine(store, history, transport=transport).run(_definition(url="https://x.test/start"))
        ctx = store.active()
        assert ctx.cookies_for("https://auth.test/") == {"sso": "1"}
        assert ctx.cookies_for("https://x.test/") == {"sid": "2"}

    @patch("apix.executor.send_request")
    def test_default_transport_looked_up_at_call_time(self, mock_send, store, history):
        mock_send.return_value = make_transport_response(body={"ok": True})
        engine = Engine(store, history, clock=lambda: NOW)
        _, result = engine.run(_definition(url="https://x.test/"))
        assert result.body == {"ok": True}
        mock_send.assert_called_once()
