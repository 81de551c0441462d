"""
Cancellable delayed callbacks keyed by a generation counter.

Every state transition of the real-time connection calls `advance()`. That
cancels whatever is pending and bumps the generation, so a callback scheduled
under an older state can never act on a newer one, even if its task was
already past the sleep when the cancel arrived.
"""
import asyncio
import inspect
from typing import Any, Callable, Set


class GenerationScheduler:
    def __init__(self):
        self.generation = 0
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, delay_s: float, callback: Callable[[], Any]) -> asyncio.Task:
        generation = self.generation

        async def fire():
            await asyncio.sleep(delay_s)
            if generation != self.generation:
                return
            result = callback()
            if inspect.isawaitable(result):
                await result

        task = asyncio.create_task(fire())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def advance(self) -> int:
        self.generation += 1
        current = asyncio.current_task()
        for task in list(self._tasks):
            # A callback may itself trigger a transition; it must finish its own work.
            if task is not current:
                task.cancel()
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done() and t is not asyncio.current_task())
