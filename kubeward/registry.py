"""In-process registry of clusters this process manages.

Each cluster id has one asyncio.Lock; every operation that mutates a
cluster (create, update, delete, backup, restore, addons) holds it, so
a cluster has a single writer at a time. Background creation runs as a
supervised task owned by the registry rather than a detached coroutine.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from kubeward.api.model import Addon, Backup, Cluster, ClusterId, ClusterInfrastructure
from kubeward.api.spec import ClusterSpec
from kubeward.tracker import ResourceTracker


@dataclass
class ClusterRecord:
    cluster: Cluster
    spec: ClusterSpec
    tracker: ResourceTracker
    infrastructure: ClusterInfrastructure = field(default_factory=ClusterInfrastructure)
    kubeconfig: str = ""
    backups: dict[str, Backup] = field(default_factory=dict)
    addons: dict[str, Addon] = field(default_factory=dict)
    task: asyncio.Task[Any] | None = field(default=None, repr=False)
    error: BaseException | None = field(default=None, repr=False)

    @property
    def id(self) -> ClusterId:
        return self.cluster.id

    @property
    def busy(self) -> bool:
        return self.task is not None and not self.task.done()


class ClusterRegistry:
    def __init__(self) -> None:
        self._records: dict[ClusterId, ClusterRecord] = {}
        self._locks: dict[ClusterId, asyncio.Lock] = {}
        self._guard = asyncio.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    async def _lock_for(self, cluster_id: ClusterId) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(cluster_id)
            if lock is None:
                lock = self._locks[cluster_id] = asyncio.Lock()
            return lock

    @asynccontextmanager
    async def lock(self, cluster_id: ClusterId) -> AsyncIterator[None]:
        """Hold the single-writer lock of one cluster."""
        lock = await self._lock_for(cluster_id)
        async with lock:
            yield

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def get(self, cluster_id: ClusterId) -> ClusterRecord | None:
        return self._records.get(cluster_id)

    def put(self, record: ClusterRecord) -> None:
        self._records[record.id] = record

    def remove(self, cluster_id: ClusterId) -> ClusterRecord | None:
        return self._records.pop(cluster_id, None)

    def records(self) -> list[ClusterRecord]:
        return list(self._records.values())

    def find_backup(self, backup_id: str) -> tuple[ClusterRecord, Backup] | None:
        for record in self._records.values():
            if backup_id in record.backups:
                return record, record.backups[backup_id]
        return None

    def __contains__(self, cluster_id: object) -> bool:
        return cluster_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    # -------------------------------------------------------------------------
    # Supervised background work
    # -------------------------------------------------------------------------

    def supervise[T](
        self,
        cluster_id: ClusterId,
        coro: Coroutine[Any, Any, T],
    ) -> asyncio.Task[T]:
        """Run ``coro`` as a task the registry keeps a reference to.

        The task's outcome is logged and, once the record exists, stored on
        it. The returned task can be awaited or cancelled by the caller.
        """
        task = asyncio.create_task(coro, name=f"kubeward:{cluster_id}")
        self._tasks.add(task)

        def _done(t: asyncio.Task[T]) -> None:
            self._tasks.discard(t)
            record = self._records.get(cluster_id)
            log = logger.bind(cluster_id=str(cluster_id))
            if t.cancelled():
                log.warning("Background operation cancelled")
                return
            error = t.exception()
            if record is not None:
                record.error = error
            if error is not None:
                log.error(f"Background operation failed: {error}")
            else:
                log.info("Background operation finished")

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait for every supervised task, ignoring their outcomes."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
