"""Shell payloads run on cluster nodes.

``generate_user_data`` produces the first-boot script every node runs:
container runtime, kubelet and kubeadm at the requested version, then
the completion marker. Any failing command writes the error marker
instead, which the bootstrapper treats as fatal.

The remaining functions build the one-shot commands the pipeline runs
over ``Backend.run_command`` once a node reports bootstrap complete.
"""

from __future__ import annotations

import shlex
from typing import Final

from kubeward.api.model import JoinCredentials, NodeRole
from kubeward.api.spec import ClusterSpec, NetworkingSpec
from kubeward.constants import (
    ADMIN_KUBECONFIG_PATH,
    API_SERVER_PORT,
    BOOTSTRAP_COMPLETE_MARKER,
    BOOTSTRAP_ERROR_MARKER,
    BOOTSTRAP_LOG,
    KUBEWARD_DIR,
)

KUBECTL: Final = f"sudo kubectl --kubeconfig {ADMIN_KUBECONFIG_PATH}"

CNI_MANIFESTS: Final[dict[str, str]] = {
    "calico": "https://raw.githubusercontent.com/projectcalico/calico/v3.27.3/manifests/calico.yaml",
    "flannel": "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml",
}


# =============================================================================
# User Data Script Generation
# =============================================================================


def generate_user_data(
    version: str,
    role: NodeRole,
    *,
    env: dict[str, str] | None = None,
    preamble: str = "",
    postamble: str = "",
) -> str:
    """Generate the first-boot script for a node.

    Args:
        version: Kubernetes minor version, e.g. "1.30".
        role: Node role. Control-plane nodes also get kubectl.
        env: Environment variables exported at the top of the script.
        preamble: Shell to run before the standard bootstrap.
        postamble: Shell to run after it, before the completion marker.

    Returns:
        Complete bash script as string.
    """
    env_exports = "\n".join(f"export {k}={shlex.quote(v)}" for k, v in (env or {}).items())
    packages = "kubelet kubeadm kubectl" if role is NodeRole.CONTROL_PLANE else "kubelet kubeadm"

    return f"""#!/bin/bash
set -e

mkdir -p {KUBEWARD_DIR}
rm -f {BOOTSTRAP_COMPLETE_MARKER} {BOOTSTRAP_ERROR_MARKER}

exec > {BOOTSTRAP_LOG} 2>&1

trap 'echo "Command failed: $BASH_COMMAND" > {BOOTSTRAP_ERROR_MARKER}; echo "Exit code: $?" >> {BOOTSTRAP_ERROR_MARKER}; tail -50 {BOOTSTRAP_LOG} >> {BOOTSTRAP_ERROR_MARKER}' ERR

export DEBIAN_FRONTEND=noninteractive
{env_exports}

{preamble}

# Kernel prerequisites
cat > /etc/modules-load.d/k8s.conf << 'EOF'
overlay
br_netfilter
EOF
modprobe overlay
modprobe br_netfilter
cat > /etc/sysctl.d/k8s.conf << 'EOF'
net.bridge.bridge-nf-call-iptables  = 1
net.bridge.bridge-nf-call-ip6tables = 1
net.ipv4.ip_forward                 = 1
EOF
sysctl --system
swapoff -a
sed -i '/ swap / s/^/#/' /etc/fstab

# Container runtime
apt-get update -qq
apt-get install -y -qq apt-transport-https ca-certificates curl gpg containerd
mkdir -p /etc/containerd
containerd config default > /etc/containerd/config.toml
sed -i 's/SystemdCgroup = false/SystemdCgroup = true/' /etc/containerd/config.toml
systemctl restart containerd
systemctl enable containerd

# Kubernetes packages
mkdir -p /etc/apt/keyrings
curl -fsSL https://pkgs.k8s.io/core:/stable:/v{version}/deb/Release.key | gpg --dearmor --yes -o /etc/apt/keyrings/kubernetes-apt-keyring.gpg
echo 'deb [signed-by=/etc/apt/keyrings/kubernetes-apt-keyring.gpg] https://pkgs.k8s.io/core:/stable:/v{version}/deb/ /' > /etc/apt/sources.list.d/kubernetes.list
apt-get update -qq
apt-get install -y -qq {packages}
apt-mark hold {packages}
systemctl enable kubelet

{postamble}

touch {BOOTSTRAP_COMPLETE_MARKER}
"""


# =============================================================================
# Bootstrap checks
# =============================================================================


def marker_check_command() -> str:
    """Prints ``complete``, ``error`` followed by the error text, or ``pending``."""
    return (
        f"if [ -f {BOOTSTRAP_ERROR_MARKER} ]; then echo error; cat {BOOTSTRAP_ERROR_MARKER}; "
        f"elif [ -f {BOOTSTRAP_COMPLETE_MARKER} ]; then echo complete; "
        "else echo pending; fi"
    )


# =============================================================================
# Cluster formation
# =============================================================================


def init_command(spec: ClusterSpec, advertise_address: str, endpoint_host: str) -> str:
    return " ".join([
        "sudo kubeadm init",
        f"--kubernetes-version=stable-{spec.version}",
        f"--pod-network-cidr={spec.networking.pod_cidr}",
        f"--service-cidr={spec.networking.service_cidr}",
        f"--apiserver-advertise-address={advertise_address}",
        f"--control-plane-endpoint={endpoint_host}:{API_SERVER_PORT}",
        f"--apiserver-cert-extra-sans={endpoint_host}",
        "--upload-certs",
    ])


def token_create_command() -> str:
    return "sudo kubeadm token create --ttl 2h"


def certificate_key_command() -> str:
    return "sudo kubeadm init phase upload-certs --upload-certs 2>/dev/null | tail -1"


def ca_hash_command() -> str:
    return (
        "openssl x509 -pubkey -in /etc/kubernetes/pki/ca.crt "
        "| openssl rsa -pubin -outform der 2>/dev/null "
        "| openssl dgst -sha256 -hex | sed 's/^.* //'"
    )


def join_command(join: JoinCredentials, *, control_plane: bool) -> str:
    parts = [
        "sudo kubeadm join",
        join.endpoint,
        f"--token {shlex.quote(join.token)}",
        f"--discovery-token-ca-cert-hash sha256:{join.ca_cert_hash}",
    ]
    if control_plane:
        if not join.certificate_key:
            raise ValueError("Joining a control-plane node requires a certificate key")
        parts += ["--control-plane", f"--certificate-key {shlex.quote(join.certificate_key)}"]
    return " ".join(parts)


def cni_command(networking: NetworkingSpec) -> str:
    manifest = CNI_MANIFESTS.get(networking.cni, networking.cni)
    return f"{KUBECTL} apply -f {shlex.quote(manifest)}"


INGRESS_MANIFESTS: Final[dict[str, str]] = {
    "nginx": "https://raw.githubusercontent.com/kubernetes/ingress-nginx/controller-v1.10.1/deploy/static/provider/cloud/deploy.yaml",
    "traefik": "https://raw.githubusercontent.com/traefik/traefik/v2.11/docs/content/reference/dynamic-configuration/kubernetes-crd-definition-v1.yml",
}


def ingress_command(provider: str) -> str:
    manifest = INGRESS_MANIFESTS.get(provider, provider)
    return f"{KUBECTL} apply -f {shlex.quote(manifest)}"


def reset_command() -> str:
    return "sudo kubeadm reset -f && sudo rm -rf /etc/cni/net.d " + KUBEWARD_DIR


# =============================================================================
# Inspection
# =============================================================================


def node_status_command() -> str:
    """One line per node: ``<name> <Ready condition status>``."""
    return (
        f"{KUBECTL} get nodes --no-headers "
        "-o custom-columns=NAME:.metadata.name,"
        "READY:.status.conditions[?(@.type==\"Ready\")].status"
    )


def component_status_command() -> str:
    """One line per kube-system pod: ``<name> <phase>``."""
    return (
        f"{KUBECTL} get pods -n kube-system --no-headers "
        "-o custom-columns=NAME:.metadata.name,PHASE:.status.phase"
    )


def drain_command(node_name: str) -> str:
    name = shlex.quote(node_name)
    return (
        f"{KUBECTL} drain {name} --ignore-daemonsets --delete-emptydir-data --force --timeout=120s"
        f" && {KUBECTL} delete node {name}"
    )


def read_admin_kubeconfig_command() -> str:
    return f"sudo cat {ADMIN_KUBECONFIG_PATH}"


def etcd_snapshot_command(path: str) -> str:
    return (
        "sudo ETCDCTL_API=3 etcdctl snapshot save " + shlex.quote(path) + " "
        "--endpoints=https://127.0.0.1:2379 "
        "--cacert=/etc/kubernetes/pki/etcd/ca.crt "
        "--cert=/etc/kubernetes/pki/etcd/server.crt "
        "--key=/etc/kubernetes/pki/etcd/server.key"
    )


def etcd_restore_command(path: str) -> str:
    quoted = shlex.quote(path)
    return (
        "sudo systemctl stop kubelet && "
        "sudo mv /var/lib/etcd /var/lib/etcd.bak-$(date +%s) && "
        f"sudo ETCDCTL_API=3 etcdctl snapshot restore {quoted} --data-dir /var/lib/etcd && "
        "sudo systemctl start kubelet"
    )


def node_metrics_command() -> str:
    """``<cpu millicores used> <cpu capacity millicores> <mem used Mi> <mem capacity Mi>``."""
    return (
        "echo $(awk '{print int($1 * 1000)}' /proc/loadavg) "
        "$(( $(nproc) * 1000 )) "
        "$(free -m | awk '/Mem:/ {print $3, $2}')"
    )


def node_addresses_command() -> str:
    """One line per node: ``<name> <InternalIP>``."""
    return (
        f"{KUBECTL} get nodes --no-headers "
        "-o custom-columns=NAME:.metadata.name,"
        "IP:.status.addresses[?(@.type==\"InternalIP\")].address"
    )


# =============================================================================
# Addons
# =============================================================================


def helm_install_command(
    release: str,
    chart: str,
    *,
    namespace: str,
    repo: str = "",
    version: str = "",
    values_file: str = "",
) -> str:
    helm = f"sudo helm --kubeconfig {ADMIN_KUBECONFIG_PATH}"
    parts = [
        f"{helm} upgrade --install {shlex.quote(release)} {shlex.quote(chart)}",
        f"--namespace {shlex.quote(namespace)} --create-namespace --wait",
    ]
    if repo:
        parts.append(f"--repo {shlex.quote(repo)}")
    if version:
        parts.append(f"--version {shlex.quote(version)}")
    if values_file:
        parts.append(f"--values {shlex.quote(values_file)}")
    return " ".join(parts)


def helm_uninstall_command(release: str, namespace: str) -> str:
    return (
        f"sudo helm --kubeconfig {ADMIN_KUBECONFIG_PATH} uninstall "
        f"{shlex.quote(release)} --namespace {shlex.quote(namespace)}"
    )


def write_file_command(path: str, content: str) -> str:
    marker = "KUBEWARD_EOF"
    return f"sudo mkdir -p $(dirname {shlex.quote(path)}) && sudo tee {shlex.quote(path)} > /dev/null << '{marker}'\n{content}\n{marker}"
