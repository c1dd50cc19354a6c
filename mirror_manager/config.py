# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Configuration classes and config models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from mirror_manager.constants import (
    DEFAULT_CLUSTER_CREATE_MAX_RETRIES,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_LOCAL_REGISTRY_PORT,
    DEFAULT_MIRRORS_DIR,
    DEFAULT_NETWORK_MTU,
    DEFAULT_READY_POLL_INTERVAL_SECONDS,
    DEFAULT_READY_TIMEOUT_SECONDS,
    DEFAULT_TALOS_NETWORK_CIDR,
    DOCKER_PROVIDERS,
    REGISTRY_IMAGE,
)


class Distribution(str, Enum):
    """Kubernetes distributions that can run on the local Docker daemon."""

    KIND = "Kind"
    K3D = "K3d"
    TALOS = "Talos"
    VCLUSTER = "VCluster"


class Provider(str, Enum):
    """Where cluster nodes run."""

    DOCKER = "Docker"
    HETZNER = "Hetzner"

    @property
    def supports_local_mirrors(self) -> bool:
        """Whether nodes on this provider can reach containers on the local daemon."""
        return self.value in DOCKER_PROVIDERS


# ============================================================================
# Configuration classes
# ============================================================================

class MirrorSettings(BaseSettings):
    """Mirror registry settings, auto-loaded from MIRROR_* env vars.

    Attributes:
        cluster_name: Name of the cluster the mirrors belong to.
        distribution: Kubernetes distribution of the cluster.
        provider: Node provider of the cluster.
        local_registry: Whether to run a local (non-proxy) registry.
        local_registry_port: Host port of the local registry.
        mirrors_dir: Directory holding per-host hosts.toml files for Kind.
        kind_mirror_mode: ``inject`` writes hosts.toml into booted nodes,
            ``mount`` bind-mounts the mirrors directory into nodes.
        talos_network_cidr: Subnet of the Talos Docker network.
        network_mtu: MTU applied to created Docker networks.
        registry_image: Image used for registry containers.
        ready_timeout: Seconds to wait for each registry to become healthy.
        poll_interval: Seconds between readiness probes.
        http_timeout: Timeout of a single readiness probe.
        max_retries: Maximum cluster creation attempts.
    """

    model_config = SettingsConfigDict(env_prefix="MIRROR_", extra="ignore")

    cluster_name: str = Field(default=DEFAULT_CLUSTER_NAME, pattern=r"^[a-z0-9][a-z0-9.-]*$")
    distribution: Distribution = Distribution.KIND
    provider: Provider = Provider.DOCKER
    local_registry: bool = False
    local_registry_port: int = Field(default=DEFAULT_LOCAL_REGISTRY_PORT, ge=1, le=65535)
    mirrors_dir: str = DEFAULT_MIRRORS_DIR
    kind_mirror_mode: str = Field(default="inject", pattern=r"^(inject|mount)$")
    talos_network_cidr: str = DEFAULT_TALOS_NETWORK_CIDR
    network_mtu: int = Field(default=DEFAULT_NETWORK_MTU, ge=576, le=9000)
    registry_image: str = REGISTRY_IMAGE
    ready_timeout: float = Field(default=DEFAULT_READY_TIMEOUT_SECONDS, gt=0)
    poll_interval: float = Field(default=DEFAULT_READY_POLL_INTERVAL_SECONDS, gt=0)
    http_timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_CLUSTER_CREATE_MAX_RETRIES, ge=1, le=10)


# ============================================================================
# Cluster configuration value objects
# ============================================================================

@dataclass(frozen=True)
class LocalRegistryOptions:
    """Local registry settings of a cluster.

    Attributes:
        enabled: Whether a local registry is part of the cluster.
        port: Host port the local registry is published on.
    """

    enabled: bool = False
    port: int = DEFAULT_LOCAL_REGISTRY_PORT


@dataclass(frozen=True)
class ClusterConfig:
    """Read-only description of the cluster being provisioned.

    Attributes:
        name: Cluster name.
        distribution: Kubernetes distribution.
        provider: Node provider.
        local_registry: Local registry settings.
    """

    name: str
    distribution: Distribution = Distribution.KIND
    provider: Provider = Provider.DOCKER
    local_registry: LocalRegistryOptions = field(default_factory=LocalRegistryOptions)

    @classmethod
    def from_settings(cls, settings: MirrorSettings) -> ClusterConfig:
        return cls(
            name=settings.cluster_name,
            distribution=settings.distribution,
            provider=settings.provider,
            local_registry=LocalRegistryOptions(
                enabled=settings.local_registry,
                port=settings.local_registry_port,
            ),
        )
