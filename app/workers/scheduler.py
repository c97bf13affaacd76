"""Fixed-interval tick scheduler for the chain polling jobs."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Sequence, Tuple

logger = logging.getLogger(__name__)

ChainJob = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class TickTask:
    """One job run against one chain within a tick."""
    name: str
    chain_id: str
    job: ChainJob


class TickScheduler:
    """
    Runs named per-chain jobs every ``interval`` seconds.

    Each tick is planned up front as a bounded list of tasks (chains x jobs,
    in chain order, then job order) and executed sequentially. A failing
    task is logged and the rest of the tick still runs.
    """

    def __init__(
        self,
        jobs: Sequence[Tuple[str, ChainJob]],
        chain_ids: Sequence[str],
        interval: float = 10,
    ):
        self.jobs = list(jobs)
        self.chain_ids = list(chain_ids)
        self.interval = interval
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def plan(self) -> List[TickTask]:
        return [
            TickTask(name=name, chain_id=chain_id, job=job)
            for chain_id in self.chain_ids
            for name, job in self.jobs
        ]

    async def run_tick(self) -> int:
        """Run one tick. Returns the number of tasks that failed."""
        failures = 0
        for task in self.plan():
            try:
                await task.job(task.chain_id)
            except Exception as e:
                failures += 1
                logger.error(f"Task {task.name} failed on chain {task.chain_id}: {e}", exc_info=True)
        return failures

    async def start(self):
        self._running = True
        logger.info(
            f"Scheduler started: jobs={[name for name, _ in self.jobs]} chains={self.chain_ids} "
            f"interval={self.interval}s"
        )
        while self._running:
            logger.info("Polling for pending transaction statuses...")
            await self.run_tick()
            await asyncio.sleep(self.interval)

    async def stop(self):
        self._running = False
        logger.info("Scheduler stopped")
