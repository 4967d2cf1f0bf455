"""Scenario tests for story (chain) runs."""

from unittest.mock import MagicMock

import yaml

from apix.builder import Invocation
from apix.definitions import Story
from apix.engine import Engine
from apix.errors import DefinitionError, TransportError, UserCancelled
from apix.story import StoryRunner, StoryState
from tests.conftest import NOW, make_transport_response


def _write_request(directory, name, **fields):
    data = {"method": "GET", "url": "https://api.test/x"}
    data.update(fields)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.yaml").write_text(yaml.dump(data))


def _runner(store, history, transport, requests_dir=None, prompter=None):
    engine = Engine(store, history, transport=transport, prompter=prompter, clock=lambda: NOW)
    return StoryRunner(engine, requests_dir)


def _story(*steps, **extra):
    return Story.from_dict({"steps": list(steps), **extra}, name="flow")


# ── Chaining ─────────────────────────────────────────────────────────────


class TestChaining:
    def test_export_reaches_next_step(self, store, history):
        transport = MagicMock(
            side_effect=[
                make_transport_response(status_code=201, body={"id": 42}),
                make_transport_response(body={"id": 42, "name": "Ada"}),
            ],
        )
        story = _story(
            {"name": "create", "request": {"method": "POST", "url": "https://api.test/users"}, "exports": {"id": "body.id"}},
            {"name": "fetch", "request": {"url": "https://api.test/users/{{id}}"}},
        )
        run = _runner(store, history, transport).run(story)
        assert run.state is StoryState.COMPLETED
        assert transport.call_args_list[1].kwargs["url"] == "https://api.test/users/42"
        assert run.bindings == {"id": 42}
        assert [o.step for o in run.outcomes] == ["create", "fetch"]

    def test_exports_not_visible_to_earlier_steps(self, store, history):
        transport = MagicMock(return_value=make_transport_response(body={"id": 1}))
        story = _story(
            {"name": "first", "request": {"url": "https://api.test/{{id}}"}},
            {"name": "second", "request": {"url": "https://api.test/x"}, "exports": {"id": "body.id"}},
        )
        run = _runner(store, history, transport).run(story)
        assert run.state is StoryState.ABORTED
        assert run.failed_step == "first"
        transport.assert_not_called()

    def test_later_exports_overwrite(self, store, history):
        transport = MagicMock(
            side_effect=[
                make_transport_response(body={"v": 1}),
                make_transport_response(body={"v": 2}),
                make_transport_response(body={}),
            ],
        )
        story = _story(
            {"request": {"url": "https://api.test/a"}, "exports": {"v": "body.v"}},
            {"request": {"url": "https://api.test/b"}, "exports": {"v": "body.v"}},
            {"request": {"url": "https://api.test/c/{{v}}"}},
        )
        run = _runner(store, history, transport).run(story)
        assert transport.call_args_list[2].kwargs["url"] == "https://api.test/c/2"
        assert run.ok

    def test_cli_override_beats_chain(self, store, history):
        transport = MagicMock(return_value=make_transport_response(body={"id": 1}))
        story = _story(
            {"request": {"url": "https://api.test/a"}, "exports": {"id": "body.id"}},
            {"request": {"url": "https://api.test/b/{{id}}"}},
        )
        _runner(store, history, transport).run(story, Invocation(variables={"id": "cli"}))
        assert transport.call_args_list[1].kwargs["url"] == "https://api.test/b/cli"

    def test_step_params_and_story_context(self, store, history):
        transport = MagicMock(return_value=make_transport_response())
        story = _story(
            {"request": {"url": "{{base}}/search?q={{q}}"}, "params": {"q": "cats"}},
            context={"default": {"base": "https://story.test"}},
        )
        _runner(store, history, transport).run(story)
        assert transport.call_args.kwargs["url"] == "https://story.test/search?q=cats"

    def test_stored_request_with_definition_exports(self, store, history, tmp_path):
        requests_dir = tmp_path / "requests"
        _write_request(requests_dir, "login", url="https://api.test/login", exports={"token": "body.token"})
        _write_request(requests_dir, "me", url="https://api.test/me", headers={"Authorization": "Bearer {{token}}"})
        transport = MagicMock(return_value=make_transport_response(body={"token": "t1"}))
        story = _story({"request": "login"}, {"request": "me"})
        run = _runner(store, history, transport, requests_dir).run(story)
        assert run.ok
        assert transport.call_args.kwargs["headers"]["Authorization"] == "Bearer t1"


# ── Aborting ─────────────────────────────────────────────────────────────


class TestAbort:
    def test_transport_error_stops_run(self, store, history):
        transport = MagicMock(
            side_effect=[
                make_transport_response(body={"ok": True}),
                TransportError("connection", "refused"),
                make_transport_response(),
            ],
        )
        story = _story(
            {"name": "one", "request": {"url": "https://api.test/1"}},
            {"name": "two", "request": {"url": "https://api.test/2"}},
            {"name": "three", "request": {"url": "https://api.test/3"}},
        )
        run = _runner(store, history, transport).run(story)
        assert run.state is StoryState.ABORTED
        assert run.step_index == 1
        assert run.failed_step == "two"
        assert isinstance(run.error, TransportError)
        assert transport.call_count == 2
        assert len(history.list("flow.one")) == 1
        assert history.list("flow.three") == []

    def test_cancel_aborts_chain(self, store, history):
        transport = MagicMock(return_value=make_transport_response())
        story = _story(
            {"request": {"url": "https://api.test/{{missing}}"}},
            {"request": {"url": "https://api.test/2"}},
        )
        run = _runner(store, history, transport, prompter=MagicMock(side_effect=UserCancelled())).run(story)
        assert run.state is StoryState.ABORTED
        assert isinstance(run.error, UserCancelled)
        transport.assert_not_called()

    def test_unknown_request(self, store, history, tmp_path):
        run = _runner(store, history, MagicMock(), tmp_path).run(_story({"request": "ghost"}))
        assert run.state is StoryState.ABORTED
        assert isinstance(run.error, DefinitionError)

    def test_each_run_starts_fresh(self, store, history):
        transport = MagicMock(side_effect=[TransportError("timeout", "slow"), make_transport_response()])
        story = _story({"request": {"url": "https://api.test/1"}})
        runner = _runner(store, history, transport)
        assert runner.run(story).state is StoryState.ABORTED
        assert runner.run(story).state is StoryState.COMPLETED


class TestStepCallback:
    def test_called_per_completed_step(self, store, history):
        seen = []
        engine = Engine(store, history, transport=MagicMock(return_value=make_transport_response()), clock=lambda: NOW)
        runner = StoryRunner(engine, on_step=lambda step, result: seen.append((step.name, result.status_code)))
        runner.run(_story({"name": "a", "request": {"url": "https://api.test/a"}}))
        assert seen == [("a", 200)]
