"""Drives nodes through bootstrap and cluster formation.

Every wait here is bounded by a TimeoutConfig value. Joins run once:
a failed join is a pipeline failure, not something to retry blindly.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from kubeward.api.backend import Backend
from kubeward.api.model import JoinCredentials, NodeInfo
from kubeward.api.spec import ClusterSpec, NetworkingSpec
from kubeward.bootstrap import scripts
from kubeward.bootstrap.state import BootstrapState, NodeBootstrap
from kubeward.constants import API_SERVER_PORT
from kubeward.core.exceptions import (
    BootstrapFailedError,
    CommandError,
    KubewardError,
    TimeoutError,
)
from kubeward.timeouts import TimeoutConfig
from kubeward.wait import wait_for_ready


class BootstrapNotReadyError(Exception):
    """Raised when bootstrap check should be retried."""


def parse_columns(output: str) -> dict[str, str]:
    """Parse two-column ``kubectl`` custom-columns output into a dict."""
    result: dict[str, str] = {}
    for line in output.strip().splitlines():
        parts = line.split()
        if len(parts) >= 2:
            result[parts[0]] = parts[1]
    return result


def parse_node_status(output: str) -> dict[str, bool]:
    """Parse ``kubectl get nodes`` custom columns into ``{name: ready}``."""
    return {name: ready == "True" for name, ready in parse_columns(output).items()}


class NodeBootstrapper:
    """Bootstrap and cluster-formation operations for one backend.

    Args:
        backend: Backend used for node descriptions and remote commands.
        timeouts: Bounds for every wait.
    """

    def __init__(self, backend: Backend, timeouts: TimeoutConfig | None = None) -> None:
        self.backend = backend
        self.timeouts = timeouts or TimeoutConfig()

    async def _run(self, node: NodeInfo, command: str, timeout: float | None = None) -> str:
        return await self.backend.run_command(node, command, timeout or self.timeouts.command)

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------

    async def wait_infrastructure_ready(self, node: NodeInfo) -> NodeInfo:
        """Wait until the backend reports an address for the node.

        Raises:
            TimeoutError: If no address appears within ``infra_ready``.
        """
        ready = await wait_for_ready(
            lambda: self.backend.describe_node(node.id),
            lambda n: n.has_address,
            timeout=self.timeouts.infra_ready,
            interval=self.timeouts.infra_poll_interval,
            description=f"node {node.id} address",
        )
        if ready.credential is None and node.credential is not None:
            ready = replace(ready, credential=node.credential)
        return ready

    async def wait_bootstrap_complete(self, node: NodeInfo) -> None:
        """Poll the completion marker until present.

        Connection failures while the node is still booting count as
        "not ready yet".

        Raises:
            BootstrapFailedError: If the node wrote the error marker.
            TimeoutError: If the marker does not appear within ``bootstrap``.
        """
        log = logger.bind(node_id=node.id)

        async def poll() -> None:
            try:
                output = await self._run(node, scripts.marker_check_command())
            except (KubewardError, OSError) as e:
                log.debug(f"Bootstrap marker check failed: {e}")
                raise BootstrapNotReadyError() from e

            status, _, detail = output.strip().partition("\n")
            match status.strip():
                case "complete":
                    return
                case "error":
                    raise BootstrapFailedError(node.id, detail.strip() or "unknown error")
                case _:
                    raise BootstrapNotReadyError()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(self.timeouts.bootstrap),
                wait=wait_fixed(self.timeouts.bootstrap_poll_interval),
                retry=retry_if_exception_type(BootstrapNotReadyError),
                reraise=True,
            ):
                with attempt:
                    await poll()
        except (RetryError, BootstrapNotReadyError) as e:
            raise TimeoutError(f"bootstrap of node {node.id}", self.timeouts.bootstrap) from e

        log.info("Bootstrap complete")

    async def bootstrap(self, state: NodeBootstrap) -> NodeBootstrap:
        """Take a freshly created node to ``bootstrap_complete``.

        On failure ``state`` is left ``failed`` with the error attached.

        Raises:
            TimeoutError: If either wait runs out of time.
            BootstrapFailedError: If the node reported a bootstrap error.
        """
        try:
            ready = await self.wait_infrastructure_ready(state.node)
            state.advance(BootstrapState.INFRASTRUCTURE_READY, ready)
            await self.wait_bootstrap_complete(state.node)
            state.advance(BootstrapState.BOOTSTRAP_COMPLETE)
        except KubewardError as e:
            state.fail(str(e))
            raise
        return state

    # -------------------------------------------------------------------------
    # Cluster formation
    # -------------------------------------------------------------------------

    async def initialize_primary(self, node: NodeInfo, spec: ClusterSpec) -> JoinCredentials:
        """Run the control-plane init on the primary and collect join material."""
        advertise = node.private_ip or node.address
        endpoint_host = node.address
        if advertise is None or endpoint_host is None:
            raise BootstrapFailedError(node.id, "node has no address")

        logger.bind(node_id=node.id).info("Initializing control plane")
        await self._run(node, scripts.init_command(spec, advertise, endpoint_host))
        return await self.join_credentials(node)

    async def join_credentials(self, primary: NodeInfo) -> JoinCredentials:
        """Fresh join token, certificate key and CA hash from the primary."""
        token = (await self._run(primary, scripts.token_create_command())).strip()
        cert_key = (await self._run(primary, scripts.certificate_key_command())).strip()
        ca_hash = (await self._run(primary, scripts.ca_hash_command())).strip()
        if not token or not ca_hash:
            raise BootstrapFailedError(primary.id, "control plane returned empty join credentials")

        host = primary.private_ip or primary.address
        return JoinCredentials(
            endpoint=f"{host}:{API_SERVER_PORT}",
            token=token,
            ca_cert_hash=ca_hash,
            certificate_key=cert_key,
        )

    async def join_control_plane(self, state: NodeBootstrap, join: JoinCredentials) -> None:
        await self._join(state, join, control_plane=True)

    async def join_worker(self, state: NodeBootstrap, join: JoinCredentials) -> None:
        await self._join(state, join, control_plane=False)

    async def _join(self, state: NodeBootstrap, join: JoinCredentials, *, control_plane: bool) -> None:
        logger.bind(node_id=state.node.id).info(
            f"Joining as {'control plane' if control_plane else 'worker'}"
        )
        try:
            await self._run(state.node, scripts.join_command(join, control_plane=control_plane))
        except KubewardError as e:
            state.fail(str(e))
            raise
        state.advance(BootstrapState.ROLE_READY)

    async def install_cni(self, node: NodeInfo, networking: NetworkingSpec) -> None:
        logger.bind(node_id=node.id).info(f"Installing CNI {networking.cni}")
        await self._run(node, scripts.cni_command(networking))

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def node_status(self, primary: NodeInfo) -> dict[str, bool]:
        return parse_node_status(await self._run(primary, scripts.node_status_command()))

    async def verify_health(
        self,
        primary: NodeInfo,
        expected_nodes: int,
        *,
        timeout: float | None = None,
    ) -> dict[str, bool]:
        """Wait until ``expected_nodes`` nodes are registered and Ready.

        Raises:
            TimeoutError: If the cluster does not converge in time.
        """

        async def poll() -> dict[str, bool] | None:
            try:
                return await self.node_status(primary)
            except CommandError as e:
                logger.bind(node_id=primary.id).debug(f"Node status check failed: {e}")
                return None

        return await wait_for_ready(
            poll,
            lambda status: len(status) >= expected_nodes and all(status.values()),
            timeout=self.timeouts.health if timeout is None else timeout,
            interval=self.timeouts.health_poll_interval,
            description=f"{expected_nodes} ready nodes",
        )

    async def fetch_admin_kubeconfig(self, primary: NodeInfo) -> str:
        return await self._run(primary, scripts.read_admin_kubeconfig_command())

    async def reset(self, nodes: Sequence[NodeInfo]) -> None:
        """Best-effort ``kubeadm reset`` on nodes being returned to a pool."""
        for node in nodes:
            try:
                await self._run(node, scripts.reset_command())
            except KubewardError as e:
                logger.bind(node_id=node.id).warning(f"kubeadm reset failed: {e}")
