from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[None]]


class _CrashedAfterHealthyRun(Exception):
    """A run that stayed up long enough crashed; the restart budget starts over."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


def _describe(exc: BaseException | None) -> str:
    if exc is None:
        return "no exception"
    if isinstance(exc, _CrashedAfterHealthyRun):
        exc = exc.cause
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


async def supervise(
    name: str,
    factory: TaskFactory,
    *,
    attempts: int = 3,
    wait_min: float = 1.0,
    wait_max: float = 30.0,
    healthy_after: float = 300.0,
) -> None:
    """Run factory(), restarting it after a crash.

    Only crashes in quick succession count: `attempts` runs that each die within
    `healthy_after` seconds end supervision and re-raise the last exception. A
    run that stayed up longer than that resets the budget. A normal return ends
    supervision.
    """
    loop = asyncio.get_running_loop()

    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
        logger.warning(
            "Task %s crashed (%s), restarting in %.0f sec. (run %d/%d)",
            name,
            _describe(exc),
            getattr(retry_state.next_action, "sleep", 0.0),
            retry_state.attempt_number + 1,
            attempts,
        )

    async def _run_once() -> None:
        started = loop.time()
        try:
            await factory()
        except Exception as e:
            if loop.time() - started >= healthy_after:
                raise _CrashedAfterHealthyRun(e) from e
            raise

    while True:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=wait_min, min=wait_min, max=wait_max),
                retry=retry_if_exception(lambda e: not isinstance(e, _CrashedAfterHealthyRun)),
                before_sleep=_before_sleep,
                reraise=True,
            ):
                with attempt:
                    await _run_once()
            return
        except _CrashedAfterHealthyRun as e:
            logger.warning("Task %s crashed after a healthy run (%s), restarting", name, _describe(e))
            await asyncio.sleep(wait_min)


async def run_until_first_exit(tasks: Iterable[asyncio.Task[None]]) -> asyncio.Task[None]:
    """Wait for the first task to finish, cancel the others, return the finished one."""
    pending = set(tasks)
    done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    finished = next(iter(done))
    if finished.cancelled():
        logger.warning("Task %s was cancelled", finished.get_name())
    elif finished.exception() is not None:
        logger.error("Task %s failed: %r", finished.get_name(), finished.exception())
    else:
        logger.info("Task %s finished", finished.get_name())
    return finished
