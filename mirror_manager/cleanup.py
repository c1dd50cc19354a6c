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

"""Registry cleanup at cluster-delete time.

Kind, K3d and VCluster networks outlive cluster deletion long enough for
registries to be found on them afterwards. Talos destroys its network while
tearing the cluster down, so its registries are captured and disconnected
before deletion and removed from that capture afterwards.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from mirror_manager import logger
from mirror_manager.config import ClusterConfig, Distribution
from mirror_manager.constants import K3D_LOCAL_REGISTRY_NAME
from mirror_manager.errors import NoRegistriesFoundError
from mirror_manager.naming import local_registry_name
from mirror_manager.network import cluster_network_name
from mirror_manager.notify import Notifier, NullNotifier
from mirror_manager.registry import DeletionResult, DiscoveredRegistry, RegistryManager

PRE_DISCOVERY_DISTRIBUTIONS = (Distribution.TALOS,)


@dataclass(frozen=True)
class DiscoveredRegistries:
    """Registries captured before a cluster deletion destroys their network."""

    network: str
    registries: tuple[DiscoveredRegistry, ...] = ()


def needs_pre_discovery(distribution: Distribution) -> bool:
    return distribution in PRE_DISCOVERY_DISTRIBUTIONS


def _belongs_to(cluster_name: str) -> Callable[[DiscoveredRegistry], bool]:
    """Match registries by their cluster label; unlabelled ones by name prefix."""
    prefix = f"{cluster_name}-"

    def belongs(registry: DiscoveredRegistry) -> bool:
        if registry.cluster:
            return registry.cluster == cluster_name
        return registry.name.startswith(prefix)

    return belongs


def discover_registries(manager: RegistryManager, cluster: ClusterConfig) -> DiscoveredRegistries:
    """Capture the cluster's registries on its network."""
    network = cluster_network_name(cluster.distribution, cluster.name)
    belongs = _belongs_to(cluster.name)
    found = tuple(r for r in manager.list_registries_on_network(network) if belongs(r))
    logger.info("discovered %d registries on %s", len(found), network)
    return DiscoveredRegistries(network=network, registries=found)


def disconnect_before_deletion(
    manager: RegistryManager,
    discovered: DiscoveredRegistries,
    notifier: Notifier | None = None,
) -> list[str]:
    """Detach captured registries so the network can be removed.

    With nothing captured, every registry-image container on the network is
    detached, including ones this tool did not create. Those containers are
    only disconnected, never deleted.

    Returns:
        Names of the detached containers.
    """
    notifier = notifier or NullNotifier()
    if discovered.registries:
        for registry in discovered.registries:
            manager.disconnect_from_network(registry.name, discovered.network)
        return [r.name for r in discovered.registries]

    disconnected = manager.disconnect_all_from_network(discovered.network)
    if disconnected:
        notifier.warning(
            f"no cluster registries resolved, disconnected all registry containers from "
            f"'{discovered.network}': {', '.join(disconnected)}"
        )
    return disconnected


def cleanup_registries_by_network(
    manager: RegistryManager,
    cluster: ClusterConfig,
    delete_volumes: bool = False,
    notifier: Notifier | None = None,
) -> DeletionResult:
    """Delete the cluster's registries found live on its network.

    Only registries labelled with the cluster are touched, or for unlabelled
    containers those named ``<cluster>-*``, so registries of other clusters
    sharing the network are left alone.

    Raises:
        NoRegistriesFoundError: If no registry of the cluster is on the network.
    """
    network = cluster_network_name(cluster.distribution, cluster.name)
    result = manager.delete_registries_on_network(
        network, delete_volumes, registry_filter=_belongs_to(cluster.name), notifier=notifier
    )
    if not (result.deleted or result.skipped or result.failures):
        raise NoRegistriesFoundError(network)
    return result


def _is_local_registry(name: str, cluster: ClusterConfig) -> bool:
    return name in (local_registry_name(cluster.name), K3D_LOCAL_REGISTRY_NAME)


def cleanup_registries(
    manager: RegistryManager,
    cluster: ClusterConfig,
    delete_volumes: bool = False,
    discovered: DiscoveredRegistries | None = None,
    notifier: Notifier | None = None,
) -> DeletionResult:
    """Delete a cluster's registries after the cluster itself is gone.

    Uses the pre-discovered list when it holds anything and falls back to live
    discovery otherwise. Per-registry failures are reported, not raised:
    mirror failures as warnings, local-registry failures as errors.

    Args:
        manager: Registry manager.
        cluster: Deleted cluster.
        delete_volumes: Also remove registry volumes.
        discovered: Registries captured before deletion, if any.
        notifier: Progress sink.

    Returns:
        Per-registry outcome; empty when nothing was found.
    """
    notifier = notifier or NullNotifier()
    notifier.title("Delete registries...")
    start = time.monotonic()

    if discovered is not None and discovered.registries:
        result = manager.delete_registries_by_info(
            discovered.registries, delete_volumes, notifier=notifier
        )
    else:
        try:
            result = cleanup_registries_by_network(manager, cluster, delete_volumes, notifier)
        except NoRegistriesFoundError:
            notifier.activity("no registries found")
            return DeletionResult()

    for name, err in sorted(result.failures.items()):
        message = f"failed to delete registry '{name}': {err}"
        if _is_local_registry(name, cluster):
            notifier.error(message)
        else:
            notifier.warning(message)

    if result.deleted or not result.failures:
        notifier.success("registries deleted", time.monotonic() - start)
    return result
