"""TOML-based backend and cluster configuration.

Loads ~/.kubeward/defaults.toml (global) and kubeward.toml (project),
merges them, and resolves named clusters into a ClusterSpec plus the
config of the backend they run on.

Example kubeward.toml:

    [backends.prod]
    type = "aws"
    region = "us-east-1"
    ami = "ami-0123456789abcdef0"
    key_name = "ops"
    key_path = "~/.ssh/ops.pem"

    [clusters.web]
    backend = "prod"
    version = "1.30"

    [clusters.web.control_plane]
    replicas = 3

    [[clusters.web.node_groups]]
    name = "default"
    replicas = 2
    machine_class = "t3.large"

    [timeouts]
    bootstrap = 1200
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kubeward.core.exceptions import ConfigurationError
from kubeward.timeouts import TimeoutConfig

if TYPE_CHECKING:
    from kubeward.api.spec import ClusterSpec
    from kubeward.backends.registry import BackendConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".kubeward" / "defaults.toml"
PROJECT_CONFIG_NAME = "kubeward.toml"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("backends", {})
    merged.setdefault("clusters", {})
    merged.setdefault("timeouts", {})
    return merged


def _build_backend(name: str, raw: RawConfig) -> BackendConfig:
    from kubeward.backends.registry import BACKENDS

    raw = dict(raw)
    backend_type = raw.pop("type", None)
    if backend_type is None:
        raise ConfigurationError(f"Backend '{name}' missing 'type' field")

    cls = BACKENDS.get(backend_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown backend type '{backend_type}'. Valid: {', '.join(BACKENDS)}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid backend '{name}': {e}") from e


def load_backends(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> dict[str, BackendConfig]:
    """Every configured backend, keyed by its name in the config."""
    config = load_config(project_dir=project_dir, global_path=global_path)
    return {name: _build_backend(name, raw) for name, raw in config["backends"].items()}


def resolve_cluster(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> tuple[ClusterSpec, BackendConfig]:
    from kubeward.api.spec import ClusterSpec

    config = load_config(project_dir=project_dir, global_path=global_path)

    clusters = config["clusters"]
    if name not in clusters:
        raise ConfigurationError(
            f"Cluster '{name}' not found. Available: {', '.join(clusters) or 'none'}"
        )

    raw_cluster = dict(clusters[name])
    backend_ref = raw_cluster.get("backend")
    if backend_ref is None:
        raise ConfigurationError(f"Cluster '{name}' missing 'backend' field")

    backends = config["backends"]
    if backend_ref not in backends:
        raise ConfigurationError(
            f"Backend '{backend_ref}' not found. Available: {', '.join(backends) or 'none'}"
        )

    backend = _build_backend(backend_ref, backends[backend_ref])
    spec = ClusterSpec.from_dict(name, raw_cluster)
    spec.validate()
    return spec, backend


def load_timeouts(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> TimeoutConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return TimeoutConfig.from_dict(config["timeouts"])
