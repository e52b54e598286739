"""
In-process queue for fire-and-forget side effects.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """
    Run side effects (reference URL refresh, access counters) as tracked
    asyncio tasks.

    Failures never reach the caller that submitted the job; they are logged
    from the task's done callback. Jobs open their own database session from
    ``session_factory`` because the request session is gone by the time
    they run.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, name: str, coro: Awaitable) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def submit_with_session(self, name: str, job: Callable[[AsyncSession], Awaitable]) -> Optional[asyncio.Task]:
        """Submit ``job(session)`` to run in a fresh session that is committed on success."""
        if self.session_factory is None:
            logger.warning(f"Background job {name} dropped: no session factory configured")
            return None

        async def _run():
            async with self.session_factory() as session:
                try:
                    await job(session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        return self.submit(name, _run())

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info(f"Background job {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background job {task.get_name()} failed: {error}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every submitted job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_dispatcher: Optional[BackgroundDispatcher] = None


def get_dispatcher() -> BackgroundDispatcher:
    """Dependency returning the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        from asset_admin.core.database import AsyncSessionLocal
        _dispatcher = BackgroundDispatcher(AsyncSessionLocal)
    return _dispatcher
