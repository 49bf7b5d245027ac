"""
Best-effort collaborator calls.

Cache invalidation, search indexing and notifications run after the
lifecycle write has committed. Their failures are logged and never reach
the caller.
"""

import asyncio
from typing import Any, Awaitable, Callable, Set

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class BestEffortRunner:
    """
    Runs side-effecting collaborator calls without letting them fail the caller.

    ``fire_and_forget`` schedules the call on the running loop and returns
    immediately; ``run`` awaits it in place. Both log and drop exceptions.
    """

    def __init__(self) -> None:
        self._pending: Set[asyncio.Task] = set()

    async def run(
        self,
        name: str,
        call: Callable[[], Awaitable[Any]],
        **context: Any
    ) -> bool:
        """
        Await a collaborator call, logging any failure.

        Returns:
            True if the call completed, False if it raised
        """
        try:
            await call()
            return True
        except Exception as e:
            logger.warning(
                "Collaborator call failed",
                extra={
                    "collaborator": name,
                    "error_type": type(e).__name__,
                    "error": str(e),
                    **context,
                },
            )
            return False

    def fire_and_forget(
        self,
        name: str,
        call: Callable[[], Awaitable[Any]],
        **context: Any
    ) -> asyncio.Task:
        """Schedule a collaborator call on the running loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(
            self.run(name, call, **context),
            name=f"best-effort:{name}",
        )
        # The loop only keeps weak references to tasks
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled call to finish (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
