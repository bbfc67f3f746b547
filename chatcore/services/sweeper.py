import asyncio
import logging

from chatcore.config import settings
from chatcore.services import ephemeral_service
from chatcore.store.sql import SqlRelationshipStore

logger = logging.getLogger(__name__)


class Sweeper:
    """Runs the disappearing-message and typing sweeps on their own intervals.

    Each iteration opens its own session so one bad run cannot leave a
    broken transaction behind for the next.
    """

    def __init__(
        self,
        session_factory,
        disappearing_interval: float | None = None,
        typing_interval: float | None = None,
    ):
        self.session_factory = session_factory
        self.disappearing_interval = (
            disappearing_interval or settings.DISAPPEARING_SWEEP_INTERVAL_SECONDS
        )
        self.typing_interval = typing_interval or settings.TYPING_SWEEP_INTERVAL_SECONDS
        self.sweeper_id = ephemeral_service.sweeper_id()
        self._tasks: list[asyncio.Task] = []

    async def run_disappearing_once(self) -> ephemeral_service.SweepResult:
        async with self.session_factory() as session:
            store = SqlRelationshipStore(session)
            result = await ephemeral_service.sweep_disappearing_messages(
                store, claimed_by=self.sweeper_id
            )
            await session.commit()
            return result

    async def run_typing_once(self) -> int:
        async with self.session_factory() as session:
            store = SqlRelationshipStore(session)
            removed = await ephemeral_service.sweep_typing_indicators(store)
            await session.commit()
            return removed

    async def _loop(self, name: str, run_once, interval: float):
        while True:
            try:
                await run_once()
            except Exception:
                logger.exception("%s sweep iteration failed", name)
            await asyncio.sleep(interval)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._loop("Disappearing", self.run_disappearing_once, self.disappearing_interval)
            ),
            asyncio.create_task(
                self._loop("Typing", self.run_typing_once, self.typing_interval)
            ),
        ]
        logger.info(
            "Sweeper %s started (disappearing every %.0fs, typing every %.0fs)",
            self.sweeper_id,
            self.disappearing_interval,
            self.typing_interval,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Sweeper %s stopped", self.sweeper_id)
