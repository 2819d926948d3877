"""Dependency-ordered deletion of everything a tracker recorded.

Backends refuse to delete a resource while something still references
it, so the order below runs from leaves to roots:

    nodes -> (load balancers, volumes) -> addresses -> NAT gateways
    -> interfaces -> security groups -> route tables -> subnets
    -> gateways -> networks

Teardown never stops early. Each resource that cannot be removed is
reported as a ResourceDeletionError in the returned list; a resource
that is already gone counts as removed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from kubeward.api.backend import Backend
from kubeward.constants import NodeState, ResourceClass
from kubeward.core.exceptions import (
    ResourceDeletionError,
    ResourceNotFoundError,
    TimeoutError,
)
from kubeward.retry import is_transient, with_retry
from kubeward.timeouts import TimeoutConfig
from kubeward.tracker import ResourceTracker
from kubeward.wait import wait_for_ready

_GONE = frozenset({NodeState.TERMINATED})


class TeardownOrchestrator:
    """Deletes a cluster's tracked resources in dependency order.

    Example:
        >>> errors = await TeardownOrchestrator(backend).teardown(tracker)
        >>> for err in errors:
        ...     print(err.resource_class, err.resource_id, err.reason)
    """

    def __init__(self, backend: Backend, timeouts: TimeoutConfig | None = None) -> None:
        self.backend = backend
        self.timeouts = timeouts or TimeoutConfig()

    async def teardown(self, tracker: ResourceTracker) -> list[ResourceDeletionError]:
        log = logger.bind(cluster=tracker.cluster_name, backend=self.backend.name)
        log.info(f"Tearing down {tracker.summary() or 'nothing'}")

        errors: list[ResourceDeletionError] = []

        await self._nodes(tracker, errors)
        await self._each(tracker, ResourceClass.LOAD_BALANCER, self.backend.delete_load_balancer, errors)
        await self._each(tracker, ResourceClass.VOLUME, self.backend.delete_volume, errors)
        await self._each(tracker, ResourceClass.ADDRESS, self.backend.release_address, errors)
        await self._each(tracker, ResourceClass.NAT_GATEWAY, self.backend.delete_nat_gateway, errors)
        await self._interfaces(tracker, errors)
        await self._security_groups(tracker, errors)
        await self._route_tables(tracker, errors)
        await self._each(tracker, ResourceClass.SUBNET, self.backend.delete_subnet, errors)
        await self._gateways(tracker, errors)
        await self._networks(tracker, errors)

        if errors:
            log.warning(f"Teardown finished with {len(errors)} resources left behind")
        else:
            log.info("Teardown complete")
        return errors

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _attempt(
        self,
        resource_class: ResourceClass,
        resource_id: str,
        op: Callable[[], Awaitable[None]],
        errors: list[ResourceDeletionError],
    ) -> bool:
        """Run one deletion, recording a failure instead of raising it."""
        try:
            await op()
        except ResourceNotFoundError:
            logger.debug(f"{resource_class} {resource_id} already gone")
        except Exception as e:
            logger.warning(f"Failed to delete {resource_class} {resource_id}: {e}")
            errors.append(ResourceDeletionError(resource_class, resource_id, str(e)))
            return False
        return True

    async def _each(
        self,
        tracker: ResourceTracker,
        resource_class: ResourceClass,
        delete: Callable[[str], Awaitable[None]],
        errors: list[ResourceDeletionError],
    ) -> None:
        for rid in tracker.ids(resource_class):
            await self._attempt(resource_class, rid, lambda rid=rid: delete(rid), errors)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _nodes(self, tracker: ResourceTracker, errors: list[ResourceDeletionError]) -> None:
        terminating: list[str] = []
        for node_id in tracker.ids(ResourceClass.NODE):
            if await self._attempt(
                ResourceClass.NODE, node_id, lambda n=node_id: self.backend.terminate_node(n), errors,
            ):
                terminating.append(node_id)

        if terminating:
            await asyncio.gather(*(self.wait_terminated(n) for n in terminating))

    async def wait_terminated(self, node_id: str) -> None:
        """Wait for a node to report terminated. A timeout is logged, not raised."""

        async def poll() -> NodeState:
            try:
                return await self.backend.describe_node_state(node_id)
            except ResourceNotFoundError:
                return NodeState.TERMINATED

        try:
            await wait_for_ready(
                poll,
                lambda s: s in _GONE,
                timeout=self.timeouts.node_termination,
                interval=self.timeouts.node_termination_poll_interval,
                description=f"termination of node {node_id}",
            )
        except TimeoutError as e:
            # Dependent deletes below will retry or report what is still attached.
            logger.warning(str(e))

    async def _interfaces(self, tracker: ResourceTracker, errors: list[ResourceDeletionError]) -> None:
        for iface_id in tracker.ids(ResourceClass.INTERFACE):
            try:
                info = await self.backend.describe_interface(iface_id)
            except Exception as e:
                errors.append(ResourceDeletionError(ResourceClass.INTERFACE, iface_id, str(e)))
                continue
            if info is None:
                continue
            if info.attached_node_id and await self._node_alive(info.attached_node_id):
                logger.debug(f"Skipping interface {iface_id} attached to live node {info.attached_node_id}")
                continue
            await self._attempt(
                ResourceClass.INTERFACE, iface_id,
                lambda i=iface_id: self.backend.delete_interface(i), errors,
            )

    async def _node_alive(self, node_id: str) -> bool:
        try:
            state = await self.backend.describe_node_state(node_id)
        except ResourceNotFoundError:
            return False
        return state not in (NodeState.TERMINATED, NodeState.SHUTTING_DOWN)

    async def _security_groups(
        self, tracker: ResourceTracker, errors: list[ResourceDeletionError],
    ) -> None:
        groups: list[str] = []
        for sg_id in tracker.ids(ResourceClass.SECURITY_GROUP):
            try:
                info = await self.backend.describe_security_group(sg_id)
            except Exception as e:
                errors.append(ResourceDeletionError(ResourceClass.SECURITY_GROUP, sg_id, str(e)))
                continue
            if info is None:
                continue
            if info.is_default:
                logger.debug(f"Skipping default security group {sg_id}")
                continue
            groups.append(sg_id)

        if not groups:
            return

        # Groups can reference each other, so every rule goes before any group.
        for sg_id in groups:
            try:
                await self.backend.revoke_rules(sg_id)
            except ResourceNotFoundError:
                continue
            except Exception as e:
                logger.warning(f"Failed to revoke rules of {sg_id}: {e}")

        if self.timeouts.security_group_propagation > 0:
            await asyncio.sleep(self.timeouts.security_group_propagation)

        for sg_id in groups:
            await self._attempt(
                ResourceClass.SECURITY_GROUP,
                sg_id,
                lambda s=sg_id: with_retry(
                    lambda: self.backend.delete_security_group(s),
                    max_attempts=self.timeouts.security_group_delete_attempts,
                    base_delay=self.timeouts.security_group_delete_base_delay,
                    is_retryable=is_transient,
                    operation=f"delete security group {s}",
                ),
                errors,
            )

    async def _route_tables(
        self, tracker: ResourceTracker, errors: list[ResourceDeletionError],
    ) -> None:
        for rt_id in tracker.ids(ResourceClass.ROUTE_TABLE):
            try:
                info = await self.backend.describe_route_table(rt_id)
            except Exception as e:
                errors.append(ResourceDeletionError(ResourceClass.ROUTE_TABLE, rt_id, str(e)))
                continue
            if info is None:
                continue
            if info.is_main:
                logger.debug(f"Skipping main route table {rt_id}")
                continue
            await self._attempt(
                ResourceClass.ROUTE_TABLE, rt_id,
                lambda r=rt_id: self.backend.delete_route_table(r), errors,
            )

    async def _gateways(self, tracker: ResourceTracker, errors: list[ResourceDeletionError]) -> None:
        for gw_id in tracker.ids(ResourceClass.GATEWAY):
            async def detach_and_delete(g: str = gw_id) -> None:
                try:
                    await self.backend.detach_gateway(g)
                except ResourceNotFoundError:
                    pass
                await self.backend.delete_gateway(g)

            await self._attempt(ResourceClass.GATEWAY, gw_id, detach_and_delete, errors)

    async def _networks(self, tracker: ResourceTracker, errors: list[ResourceDeletionError]) -> None:
        for net_id in tracker.ids(ResourceClass.NETWORK):
            await self._attempt(
                ResourceClass.NETWORK,
                net_id,
                lambda n=net_id: with_retry(
                    lambda: self.backend.delete_network(n),
                    max_attempts=self.timeouts.network_delete_attempts,
                    base_delay=self.timeouts.network_delete_base_delay,
                    is_retryable=is_transient,
                    operation=f"delete network {n}",
                ),
                errors,
            )
