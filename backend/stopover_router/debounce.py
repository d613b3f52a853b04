from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")

SearchFn = Callable[[str], Awaitable[T]]
CommitFn = Callable[[str, T], None]


async def wait_task(task: asyncio.Task | None) -> None:
    """Wait for `task` without cancelling it if the waiter is cancelled.

    A task that ended by cancellation counts as done; any other failure is re-raised.
    """
    if task is None:
        return
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        raise task.exception()  # type: ignore[misc]


class QueryDebouncer(Generic[T]):
    """Coalesces rapid text updates for one input field into a single search.

    Every `update` restarts the quiet period and supersedes whatever was pending or
    in flight. When the period elapses, the text is searched unless it equals the
    last committed text; results are committed only if no newer update arrived.
    """

    def __init__(
        self,
        name: str,
        *,
        delay_s: float,
        search: SearchFn[T],
        commit: CommitFn[T],
    ) -> None:
        self.name = name
        self._delay_s = max(0.0, float(delay_s))
        self._search = search
        self._commit = commit
        self._task: asyncio.Task | None = None
        self._generation = 0
        self.latest_text = ""
        self.last_emitted: str | None = None

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def update(self, text: str) -> None:
        self.latest_text = text
        self.cancel()
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, text), name=f"debounce:{self.name}"
        )

    def cancel(self) -> None:
        """Drop pending or in-flight work; its result will never be committed."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def reset(self) -> None:
        self.cancel()
        self.last_emitted = None

    async def _run(self, generation: int, text: str) -> None:
        await asyncio.sleep(self._delay_s)
        if generation != self._generation or text == self.last_emitted:
            return
        result = await self._search(text)
        if generation != self._generation:
            return
        self.last_emitted = text
        self._commit(text, result)

    async def wait(self) -> None:
        await wait_task(self._task)

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        await wait_task(task)
