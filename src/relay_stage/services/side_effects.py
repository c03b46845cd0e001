"""Fire-and-forget execution of best-effort side effects.

Broadcast publishes, counter updates and push notifications run as
independent asyncio tasks. Each task reports a ``StepResult`` instead of
raising, so a slow or failing step can never reach the code that persisted
the message.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from relay_stage.core.settings import settings

logger = logging.getLogger(__name__)

STEP_BROADCAST = "broadcast"
STEP_COUNTER = "counter"
STEP_PUSH = "push"
STEP_ALERT = "alert"


@dataclass(frozen=True)
class StepResult:
    """Outcome of a single side effect."""

    step: str
    target: str | None
    ok: bool
    value: Any = None
    error: str | None = None


class SideEffectRunner:
    """Dispatch side effects as tracked background tasks."""

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else float(settings.side_effect_timeout_seconds)
        )
        self._tasks: set[asyncio.Task[StepResult]] = set()

    @property
    def pending(self) -> int:
        """Return the number of side effects still running."""
        return len(self._tasks)

    def dispatch(
        self,
        step: str,
        target: str | None,
        operation: Callable[[], Awaitable[Any]],
        *,
        succeeded: Callable[[Any], bool] | None = None,
    ) -> asyncio.Task[StepResult]:
        """Start ``operation`` in the background and return its task.

        ``succeeded`` inspects the operation's return value for steps that
        report failure without raising (the push gateway does this).
        """
        task = asyncio.create_task(self._run(step, target, operation, succeeded))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def dispatch_sync(
        self,
        step: str,
        target: str | None,
        func: Callable[..., Any],
        *args: Any,
    ) -> asyncio.Task[StepResult]:
        """Run a blocking ``func`` on a worker thread as a side effect."""
        return self.dispatch(step, target, lambda: asyncio.to_thread(func, *args))

    async def _run(
        self,
        step: str,
        target: str | None,
        operation: Callable[[], Awaitable[Any]],
        succeeded: Callable[[Any], bool] | None,
    ) -> StepResult:
        try:
            value = await asyncio.wait_for(operation(), timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning("Side effect %s for %s timed out", step, target)
            return StepResult(step, target, ok=False, error="timeout")
        except Exception as exc:
            logger.warning("Side effect %s for %s failed: %s", step, target, exc)
            return StepResult(step, target, ok=False, error=str(exc))

        ok = succeeded(value) if succeeded is not None else True
        return StepResult(step, target, ok=ok, value=value)

    async def drain(self) -> None:
        """Wait for every in-flight side effect to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class _SideEffectRunnerSingleton:
    _instance: SideEffectRunner | None = None

    @classmethod
    def get_instance(cls) -> SideEffectRunner:
        if cls._instance is None:
            cls._instance = SideEffectRunner()
        return cls._instance


def get_side_effect_runner() -> SideEffectRunner:
    """Return the process-wide side effect runner."""
    return _SideEffectRunnerSingleton.get_instance()
