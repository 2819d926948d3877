"""Client-access descriptors for provisioned clusters.

``build_kubeconfig`` always succeeds: when no admin credentials could be
fetched from the primary the user entry is emitted with empty fields,
which callers must read as "needs manual authentication".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import yaml
from loguru import logger

from kubeward.api.model import Cluster

_LOCAL_HOSTS = frozenset({"127.0.0.1", "localhost", "0.0.0.0"})


@dataclass(frozen=True, slots=True)
class AdminCredentials:
    certificate_authority_data: str = ""
    client_certificate_data: str = ""
    client_key_data: str = ""
    token: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.client_certificate_data or self.client_key_data or self.token)


def context_name(cluster_name: str) -> str:
    return f"{cluster_name}-context"


def user_name(cluster_name: str) -> str:
    return f"{cluster_name}-admin"


def parse_admin_kubeconfig(text: str) -> AdminCredentials:
    """Pull the CA and the first user's credentials out of ``admin.conf``.

    Raises:
        ValueError: If the document is not a kubeconfig.
    """
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid kubeconfig YAML: {e}") from e
    if not isinstance(doc, dict) or doc.get("kind") != "Config":
        raise ValueError("Document is not a kubeconfig")

    clusters = doc.get("clusters") or [{}]
    users = doc.get("users") or [{}]
    cluster = (clusters[0] or {}).get("cluster") or {}
    user = (users[0] or {}).get("user") or {}
    return AdminCredentials(
        certificate_authority_data=cluster.get("certificate-authority-data", ""),
        client_certificate_data=user.get("client-certificate-data", ""),
        client_key_data=user.get("client-key-data", ""),
        token=user.get("token", ""),
    )


def rewrite_server(server: str, endpoint: str) -> str:
    """Replace loopback API servers with the cluster's public endpoint."""
    host = urlsplit(server).hostname or ""
    return endpoint if host in _LOCAL_HOSTS or not host else server


def merge_admin_kubeconfig(admin_conf: str, endpoint: str) -> str:
    """Return ``admin.conf`` with loopback or empty API servers pointed at ``endpoint``.

    Raises:
        ValueError: If ``admin_conf`` is not a kubeconfig.
    """
    parse_admin_kubeconfig(admin_conf)
    doc = yaml.safe_load(admin_conf)
    for entry in doc.get("clusters") or []:
        cluster = (entry or {}).get("cluster")
        if isinstance(cluster, dict):
            cluster["server"] = rewrite_server(cluster.get("server", ""), endpoint)
    return yaml.safe_dump(doc, sort_keys=False)


def kubeconfig_dict(cluster: Cluster, credentials: AdminCredentials | None = None) -> dict[str, Any]:
    creds = credentials or AdminCredentials()
    cluster_entry: dict[str, Any] = {"server": cluster.endpoint}
    if creds.certificate_authority_data:
        cluster_entry["certificate-authority-data"] = creds.certificate_authority_data
    else:
        cluster_entry["insecure-skip-tls-verify"] = True

    ctx = context_name(cluster.name)
    user = user_name(cluster.name)
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": ctx, "cluster": cluster_entry}],
        "users": [{
            "name": user,
            "user": {
                "client-certificate-data": creds.client_certificate_data,
                "client-key-data": creds.client_key_data,
                "token": creds.token,
            },
        }],
        "contexts": [{"name": ctx, "context": {"cluster": ctx, "user": user}}],
        "current-context": ctx,
        "preferences": {},
    }


def build_kubeconfig(cluster: Cluster, admin_conf: str | None = None) -> str:
    """Render the kubeconfig for ``cluster`` as YAML.

    Args:
        cluster: Cluster with its endpoint set.
        admin_conf: Raw ``admin.conf`` read from the primary, if available.
    """
    credentials: AdminCredentials | None = None
    if admin_conf:
        try:
            credentials = parse_admin_kubeconfig(admin_conf)
        except ValueError as e:
            logger.bind(cluster=cluster.name).warning(
                f"Falling back to a kubeconfig without credentials: {e}"
            )
    return yaml.safe_dump(kubeconfig_dict(cluster, credentials), sort_keys=False)


def needs_manual_auth(kubeconfig: str) -> bool:
    creds = parse_admin_kubeconfig(kubeconfig)
    return creds.is_empty
