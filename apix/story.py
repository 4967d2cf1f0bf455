"""apix story - run an ordered chain of requests.

Each completed step's exports become chain bindings for the steps after
it. The first failure aborts the run; nothing is retried or resumed.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from apix.builder import Invocation
from apix.definitions import RequestDefinition, Story, StoryStep, load_request
from apix.engine import Engine
from apix.errors import ApixError
from apix.history import ExecutionResult

logger = logging.getLogger(__name__)


class StoryState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class StepOutcome:
    step: str
    request: str
    result: ExecutionResult


@dataclass
class StoryRun:
    story: str
    state: StoryState = StoryState.PENDING
    step_index: int = 0
    outcomes: list[StepOutcome] = field(default_factory=list)
    bindings: dict[str, Any] = field(default_factory=dict)
    error: ApixError | None = None
    failed_step: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is StoryState.COMPLETED


class StoryRunner:
    def __init__(
        self,
        engine: Engine,
        requests_dir: Path | None = None,
        on_step: Callable[[StoryStep, ExecutionResult], None] | None = None,
    ):
        self.engine = engine
        self.requests_dir = requests_dir
        self.on_step = on_step

    def _definition(self, step: StoryStep) -> RequestDefinition:
        if isinstance(step.request, RequestDefinition):
            return step.request
        return load_request(step.request, self.requests_dir)

    def run(self, story: Story, invocation: Invocation | None = None) -> StoryRun:
        """Run every step of story in order.

        Errors raised by a step are kept on the returned run instead of
        propagating, so callers see which steps completed.
        """
        invocation = invocation or Invocation()
        run = StoryRun(story=story.name, state=StoryState.RUNNING)
        story_defaults = story.variables_for(self.engine.store.active_name())

        for index, step in enumerate(story.steps):
            run.step_index = index
            logger.debug("story %s: step %d (%s)", story.name, index, step.name)
            try:
                definition = self._definition(step)
                _, result = self.engine.run(
                    definition,
                    invocation.with_variables(step.params),
                    chain=run.bindings,
                    story_defaults=story_defaults,
                    exports=step.exports,
                )
            except ApixError as e:
                logger.debug("story %s aborted at %s: %s", story.name, step.name, e)
                run.state = StoryState.ABORTED
                run.error = e
                run.failed_step = step.name
                return run

            run.outcomes.append(StepOutcome(step=step.name, request=definition.name, result=result))
            run.bindings.update(result.exports)
            if self.on_step:
                self.on_step(step, result)

        run.state = StoryState.COMPLETED
        return run
