"""Tag-based recovery of a cluster's resources.

Used when no persisted tracker exists for a cluster (another machine
created it, or the state file was lost). Three strategies are tried
per resource class, most specific first:

1. ownership tags (managed-by + cluster-name)
2. the legacy ``Cluster=<name>`` tag
3. the deterministic ``Name`` tag for singleton resources

The first strategy that finds anything wins for that class.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from loguru import logger

from kubeward.api.backend import Backend, TagFilters
from kubeward.constants import MANAGED_BY_VALUE, ClusterTag, LegacyTag, ResourceClass
from kubeward.tags import NAME_SUFFIX, resource_name
from kubeward.tracker import ResourceTracker

type Strategy = Callable[[str, ResourceClass], TagFilters | None]


def _ownership(cluster_name: str, resource_class: ResourceClass) -> TagFilters:
    return {
        ClusterTag.MANAGED_BY: [MANAGED_BY_VALUE],
        ClusterTag.CLUSTER_NAME: [cluster_name],
    }


def _legacy(cluster_name: str, resource_class: ResourceClass) -> TagFilters:
    return {LegacyTag.CLUSTER: [cluster_name]}


def _by_name(cluster_name: str, resource_class: ResourceClass) -> TagFilters | None:
    if resource_class not in NAME_SUFFIX:
        return None
    return {LegacyTag.NAME: [resource_name(cluster_name, resource_class)]}


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("ownership tags", _ownership),
    ("legacy cluster tag", _legacy),
    ("name tag", _by_name),
)


async def discover_class(
    backend: Backend,
    cluster_name: str,
    resource_class: ResourceClass,
    strategies: Sequence[tuple[str, Strategy]] = STRATEGIES,
) -> list[str]:
    """Ids of one resource class, de-duplicated, in discovery order."""
    log = logger.bind(cluster=cluster_name, backend=backend.name)
    found: list[str] = []

    for label, strategy in strategies:
        filters = strategy(cluster_name, resource_class)
        if filters is None:
            continue
        try:
            ids = await backend.find_resources(resource_class, filters)
        except Exception as e:
            log.warning(f"Discovery of {resource_class} by {label} failed: {e}")
            continue

        for rid in ids:
            if rid not in found:
                found.append(rid)
        if found:
            log.debug(f"Discovered {len(found)} {resource_class} by {label}")
            break

    return found


async def discover(backend: Backend, cluster_name: str, region: str = "") -> ResourceTracker:
    """Rebuild a tracker for ``cluster_name`` from backend tags."""
    tracker = ResourceTracker(cluster_name, region or backend.region)
    for rc in ResourceClass:
        for rid in await discover_class(backend, cluster_name, rc):
            if rid in tracker:
                logger.warning(f"{rid} matched more than one resource class, keeping the first")
                continue
            tracker.record(rc, rid)

    logger.bind(cluster=cluster_name).info(f"Discovered resources: {tracker.summary() or 'none'}")
    return tracker
