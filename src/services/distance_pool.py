"""Worker pool that fans station distance work out across executor lanes."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Callable, Dict, List, Literal, Optional, Protocol, Sequence

from config import settings
from nowcast.geo import distances_for_points
from nowcast.state import Location, Station

logger = logging.getLogger("rainornot.hub.distance_pool")

PointRecord = tuple[str, float, float]
Reference = tuple[float, float]
WorkerBackend = Literal["process", "thread"]


class DistanceDispatchError(RuntimeError):
    """Raised when a shard cannot be computed by the worker pool."""


def default_pool_size(cap: int) -> int:
    return max(1, min(os.cpu_count() or 4, cap))


def shard_points(points: Sequence[PointRecord], workers: int) -> List[List[PointRecord]]:
    """Split ``points`` into at most ``workers`` contiguous shards of near equal size."""

    if not points:
        return []
    shard_count = max(1, min(workers, len(points)))
    chunk = math.ceil(len(points) / shard_count)
    return [list(points[i : i + chunk]) for i in range(0, len(points), chunk)]


def _lane_factory(backend: WorkerBackend) -> Callable[[], Executor]:
    if backend == "thread":
        return lambda: ThreadPoolExecutor(max_workers=1, thread_name_prefix="distance-lane")
    return lambda: ProcessPoolExecutor(max_workers=1)


class DistanceWorkerPool:
    """Fixed set of single-worker lanes fed round-robin.

    Every dispatch gets a request id; its response is matched back through the
    pending map and must arrive within ``timeout`` seconds.
    """

    def __init__(
        self,
        *,
        max_workers: int | None = None,
        timeout: float | None = None,
        backend: WorkerBackend | None = None,
        lane_factory: Callable[[], Executor] | None = None,
    ) -> None:
        self._max_workers = max_workers or settings.distance_pool_max_workers
        self._timeout = timeout or settings.distance_request_timeout
        self._backend: WorkerBackend = backend or settings.distance_worker_backend
        self._lane_factory = lane_factory or _lane_factory(self._backend)
        self._lanes: List[Executor] = []
        self._pending: Dict[str, asyncio.Future[list[tuple[str, float]]]] = {}
        self._inflight: Dict[str, Future] = {}
        self._message_id = 0
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def size(self) -> int:
        return len(self._lanes)

    @property
    def backend(self) -> WorkerBackend:
        return self._backend

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def initialize(self) -> None:
        if self._initialized:
            return
        pool_size = default_pool_size(self._max_workers)
        lanes: List[Executor] = []
        try:
            for _ in range(pool_size):
                lanes.append(self._lane_factory())
        except (OSError, NotImplementedError, RuntimeError) as exc:
            logger.warning("Failed to initialize distance pool, using inline calculation: %s", exc)
            for lane in lanes:
                lane.shutdown(wait=False, cancel_futures=True)
            return
        self._lanes = lanes
        self._initialized = True
        logger.info("Distance pool initialized with %s %s workers", pool_size, self._backend)

    async def dispatch(self, points: Sequence[PointRecord], reference: Reference) -> list[tuple[str, float]]:
        if not self._initialized or not self._lanes:
            raise DistanceDispatchError("Workers not initialized")

        loop = asyncio.get_running_loop()
        lane = self._lanes[self._message_id % len(self._lanes)]
        request_id = f"req-{self._message_id}"
        self._message_id += 1

        future: asyncio.Future[list[tuple[str, float]]] = loop.create_future()
        self._pending[request_id] = future
        try:
            work = lane.submit(distances_for_points, reference, list(points))
        except RuntimeError as exc:
            self._pending.pop(request_id, None)
            raise DistanceDispatchError(f"Dispatch of {request_id} failed: {exc}") from exc
        self._inflight[request_id] = work
        work.add_done_callback(lambda done: self._notify(loop, request_id, done))

        try:
            return await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            work.cancel()
            raise DistanceDispatchError(f"Worker timeout for {request_id}") from exc
        finally:
            self._pending.pop(request_id, None)
            self._inflight.pop(request_id, None)

    def _notify(self, loop: asyncio.AbstractEventLoop, request_id: str, done: Future) -> None:
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(self._resolve, request_id, done)

    def _resolve(self, request_id: str, done: Future) -> None:
        future = self._pending.get(request_id)
        if future is None or future.done():
            return
        if done.cancelled():
            future.set_exception(DistanceDispatchError(f"{request_id} was cancelled"))
            return
        error = done.exception()
        if error is not None:
            future.set_exception(DistanceDispatchError(f"{request_id} failed: {error}"))
            return
        future.set_result(done.result())

    async def shutdown(self) -> None:
        if not self._lanes and not self._pending:
            self._initialized = False
            return
        lanes, self._lanes = self._lanes, []
        self._initialized = False
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(DistanceDispatchError(f"Distance pool shut down before {request_id} completed"))
        self._pending.clear()
        for work in self._inflight.values():
            work.cancel()
        self._inflight.clear()
        for lane in lanes:
            lane.shutdown(wait=False, cancel_futures=True)
        logger.info("Distance pool terminated")


class DistanceStrategy(Protocol):
    name: str

    async def compute(self, points: Sequence[PointRecord], reference: Reference) -> Optional[dict[str, float]]:
        """Return distances keyed by id, or ``None`` when the batch could not be completed."""
        ...


class SequentialDistanceStrategy:
    name = "sequential"

    async def compute(self, points: Sequence[PointRecord], reference: Reference) -> Optional[dict[str, float]]:
        return dict(distances_for_points(reference, points))


class ParallelDistanceStrategy:
    name = "parallel"

    def __init__(self, pool: DistanceWorkerPool) -> None:
        self._pool = pool

    async def compute(self, points: Sequence[PointRecord], reference: Reference) -> Optional[dict[str, float]]:
        shards = shard_points(points, self._pool.size)
        results = await asyncio.gather(
            *(self._pool.dispatch(shard, reference) for shard in shards),
            return_exceptions=True,
        )
        merged: dict[str, float] = {}
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("Distance pool calculation failed, falling back to inline: %s", result)
                return None
            merged.update(result)
        return merged


class DistanceEngine:
    """Computes station distances, in parallel when the input is large enough."""

    def __init__(
        self,
        pool: DistanceWorkerPool | None = None,
        *,
        parallel_threshold: int | None = None,
    ) -> None:
        self._pool = pool
        self._threshold = settings.distance_parallel_threshold if parallel_threshold is None else parallel_threshold
        self._sequential = SequentialDistanceStrategy()
        self._parallel = ParallelDistanceStrategy(pool) if pool is not None else None
        self.last_strategy: str | None = None

    @property
    def pool(self) -> DistanceWorkerPool | None:
        return self._pool

    async def initialize(self) -> None:
        if self._pool is not None:
            await self._pool.initialize()

    async def shutdown(self) -> None:
        if self._pool is not None:
            await self._pool.shutdown()

    def select_strategy(self, count: int) -> DistanceStrategy:
        if self._parallel is None or self._pool is None or not self._pool.initialized:
            return self._sequential
        if count <= self._threshold:
            return self._sequential
        return self._parallel

    async def distances(self, stations: Sequence[Station], reference: Location) -> dict[str, float]:
        points: list[PointRecord] = [
            (station.id, station.location.latitude, station.location.longitude)
            for station in stations
            if station.location is not None
        ]
        if not points:
            return {}

        start = time.perf_counter()
        ref: Reference = (reference.latitude, reference.longitude)
        strategy = self.select_strategy(len(points))
        result = await strategy.compute(points, ref)
        if result is None:
            strategy = self._sequential
            result = await strategy.compute(points, ref)
        assert result is not None
        self.last_strategy = strategy.name
        logger.debug(
            "Calculated %s distances in %.1f ms (%s)",
            len(points),
            (time.perf_counter() - start) * 1000.0,
            strategy.name,
        )
        return result


__all__ = [
    "DistanceDispatchError",
    "DistanceWorkerPool",
    "DistanceStrategy",
    "SequentialDistanceStrategy",
    "ParallelDistanceStrategy",
    "DistanceEngine",
    "shard_points",
    "default_pool_size",
]
