"""
Execution hand-off: bounded queue, worker pool, one execution per pair at a time.
"""
import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional, Set

from solders.keypair import Keypair

from .executor import ExecutionMode, ExecutionOutcome, ExecutionResult, ExecutionRequest
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


class PairLockRegistry:
    """In-flight markers keyed by pair id, guarded by a single lock."""

    def __init__(self):
        self._in_flight: Dict[str, bool] = {}
        self._lock = asyncio.Lock()

    async def try_acquire(self, pair_id: str) -> bool:
        """Mark pair_id busy. Returns False if it already was."""
        async with self._lock:
            if self._in_flight.get(pair_id):
                return False
            self._in_flight[pair_id] = True
            return True

    async def release(self, pair_id: str):
        async with self._lock:
            self._in_flight.pop(pair_id, None)

    def is_busy(self, pair_id: str) -> bool:
        return bool(self._in_flight.get(pair_id))

    def __len__(self):
        return len(self._in_flight)


class ExecutionDispatcher:
    """
    Consumes ArbitrageCandidates on a worker pool.

    submit() never blocks the scanner: a full queue, or a pair that is already
    queued or executing, is refused and reported back as False.
    """

    def __init__(
        self,
        executor,
        wallet: Keypair,
        mode: ExecutionMode = ExecutionMode.SIMULATE_ONLY,
        queue_size: int = 16,
        workers: int = 2
    ):
        self.executor = executor
        self.wallet = wallet
        self.mode = mode
        self.worker_count = workers
        self.locks = PairLockRegistry()
        self.outcomes: Counter = Counter()
        self.last_result: Optional[ExecutionResult] = None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._queued_pairs: Set[str] = set()
        self._workers: List[asyncio.Task] = []

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    @property
    def in_flight(self) -> int:
        return len(self.locks)

    def submit(self, candidate) -> bool:
        """
        Enqueue a verified candidate for execution.

        Returns:
            True if accepted, False if refused
        """
        pair_id = candidate.pair_id
        if pair_id in self._queued_pairs or self.locks.is_busy(pair_id):
            logger.info(f"{candidate.pair.label}: execution already pending, skipping")
            self.outcomes["skipped_busy"] += 1
            return False
        try:
            self._queue.put_nowait(candidate)
        except asyncio.QueueFull:
            logger.warning(
                f"{colors['YELLOW']}Execution queue full ({self._queue.maxsize}), "
                f"dropping {candidate.pair.label}{colors['RESET']}"
            )
            self.outcomes["dropped_queue_full"] += 1
            return False
        self._queued_pairs.add(pair_id)
        return True

    async def _run(self, candidate):
        pair_id = candidate.pair_id
        if not await self.locks.try_acquire(pair_id):
            logger.info(f"{candidate.pair.label}: execution already in flight, skipping")
            self.outcomes["skipped_busy"] += 1
            return
        try:
            request = ExecutionRequest.from_candidate(candidate, self.wallet, self.mode)
            result = await self.executor.execute(request)
            self.last_result = result
            self.outcomes[result.outcome.value] += 1
        finally:
            await self.locks.release(pair_id)

    async def _worker(self, worker_id: int):
        while True:
            candidate = await self._queue.get()
            self._queued_pairs.discard(candidate.pair_id)
            try:
                await self._run(candidate)
            except Exception as e:
                self.outcomes[ExecutionOutcome.FAILED.value] += 1
                logger.error(f"Execution worker {worker_id} error for {candidate.pair.label}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def start(self):
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"execution-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(
            f"{colors['DIM']}Execution workers started: {self.worker_count}, "
            f"queue size {self._queue.maxsize}, mode {self.mode.value}{colors['RESET']}"
        )

    async def join(self):
        """Wait until every queued candidate has been executed."""
        await self._queue.join()

    async def stop(self, drain_timeout: float = 30.0):
        """Let queued work finish (up to drain_timeout), then stop the workers."""
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Execution queue not drained after {drain_timeout}s, {self.queued} left")
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
