"""Per-cluster record of every backend resource created.

The tracker is the source of truth for teardown: anything recorded
here is deleted, anything missing is leaked. Ids are appended as soon
as the backend returns them and are never removed, so a partially
torn-down cluster can be torn down again.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from kubeward.constants import STATE_DIR_NAME, ResourceClass

TRACKER_DIR = Path.home() / STATE_DIR_NAME / "trackers"
TRACKER_VERSION = 1


class ResourceTracker:
    """Append-only, per-class list of resource ids for one cluster.

    Example:
        >>> tracker = ResourceTracker("dev", "us-east-1")
        >>> tracker.record(ResourceClass.NETWORK, "vpc-123")
        >>> tracker.record(ResourceClass.NETWORK, "vpc-123")  # no-op
        >>> tracker.ids(ResourceClass.NETWORK)
        ('vpc-123',)
    """

    def __init__(
        self,
        cluster_name: str,
        region: str = "",
        *,
        created_at: datetime | None = None,
    ) -> None:
        self.cluster_name = cluster_name
        self.region = region
        self.created_at = created_at or datetime.now(UTC)
        self.updated_at = self.created_at
        self._ids: dict[ResourceClass, list[str]] = {rc: [] for rc in ResourceClass}
        self._owner: dict[str, ResourceClass] = {}

    def record(self, resource_class: ResourceClass, resource_id: str) -> bool:
        """Record a resource id under its class.

        Returns:
            True if the id was new, False if it was already recorded.

        Raises:
            ValueError: If the id is empty or already recorded under a
                different class.
        """
        if not resource_id:
            raise ValueError(f"Refusing to record empty {resource_class} id")

        owner = self._owner.get(resource_id)
        if owner is not None:
            if owner is not resource_class:
                raise ValueError(
                    f"{resource_id} is already tracked as {owner}, not {resource_class}"
                )
            return False

        self._ids[resource_class].append(resource_id)
        self._owner[resource_id] = resource_class
        self.updated_at = datetime.now(UTC)
        return True

    def ids(self, resource_class: ResourceClass) -> tuple[str, ...]:
        return tuple(self._ids[resource_class])

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._owner

    def __iter__(self) -> Iterator[tuple[ResourceClass, str]]:
        for rc, ids in self._ids.items():
            for rid in ids:
                yield rc, rid

    def __len__(self) -> int:
        return len(self._owner)

    @property
    def is_empty(self) -> bool:
        return not self._owner

    def merge(self, other: ResourceTracker) -> None:
        """Record every id from ``other`` that is not already tracked."""
        for rc, rid in other:
            self.record(rc, rid)

    def snapshot(self) -> ResourceTracker:
        copy = ResourceTracker(self.cluster_name, self.region, created_at=self.created_at)
        copy.merge(self)
        copy.updated_at = self.updated_at
        return copy

    def summary(self) -> dict[str, int]:
        return {str(rc): len(ids) for rc, ids in self._ids.items() if ids}

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_name": self.cluster_name,
            "region": self.region,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "resources": {str(rc): list(ids) for rc, ids in self._ids.items() if ids},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceTracker:
        tracker = cls(
            str(data["cluster_name"]),
            str(data.get("region", "")),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
        for rc_name, ids in data.get("resources", {}).items():
            rc = ResourceClass(rc_name)
            for rid in ids:
                tracker.record(rc, rid)
        tracker.updated_at = datetime.fromisoformat(data.get("updated_at", data["created_at"]))
        return tracker

    def __repr__(self) -> str:
        return f"ResourceTracker({self.cluster_name!r}, {self.summary()})"


class TrackerStore:
    """JSON persistence for trackers, one file per cluster id.

    Lets a later process tear down what an earlier one created.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or TRACKER_DIR

    def _path(self, cluster_id: str) -> Path:
        return self.root / f"{cluster_id}.json"

    def save(self, cluster_id: str, tracker: ResourceTracker) -> None:
        path = self._path(cluster_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps({"version": TRACKER_VERSION, "tracker": tracker.to_dict()}, indent=2)
        )
        tmp.replace(path)

    def load(self, cluster_id: str) -> ResourceTracker | None:
        path = self._path(cluster_id)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt tracker file {path}: {e}")
            return None
        if raw.get("version") != TRACKER_VERSION:
            logger.warning(f"Ignoring tracker file {path} with version {raw.get('version')}")
            return None
        return ResourceTracker.from_dict(raw["tracker"])

    def discard(self, cluster_id: str) -> None:
        self._path(cluster_id).unlink(missing_ok=True)

    def list_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))
