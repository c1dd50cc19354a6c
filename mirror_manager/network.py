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

"""Docker network creation and static IP assignment."""

from __future__ import annotations

import ipaddress

import docker
from docker.types import IPAMConfig, IPAMPool

from mirror_manager import logger
from mirror_manager.config import Distribution
from mirror_manager.constants import (
    DEFAULT_NETWORK_MTU,
    KIND_NETWORK_NAME,
    LABEL_NETWORK_CLUSTER,
    NETWORK_DRIVER,
    NETWORK_OPT_ENABLE_ICC,
    NETWORK_OPT_ENABLE_IP_MASQUERADE,
    NETWORK_OPT_MTU,
    STATIC_IP_OFFSET_FROM_BROADCAST,
    TALOS_LABEL_CLUSTER_NAME,
    TALOS_LABEL_OWNED,
    VCLUSTER_NETWORK_PREFIX,
)
from mirror_manager.notify import Notifier, NullNotifier


def cluster_network_name(distribution: Distribution, cluster_name: str) -> str:
    """Name of the Docker network a distribution attaches cluster nodes to."""
    if distribution is Distribution.KIND:
        return KIND_NETWORK_NAME
    if distribution is Distribution.K3D:
        return f"k3d-{cluster_name}"
    if distribution is Distribution.VCLUSTER:
        return f"{VCLUSTER_NETWORK_PREFIX}{cluster_name}"
    return cluster_name


def cluster_network_labels(distribution: Distribution, cluster_name: str) -> dict[str, str]:
    """Ownership labels that let the cluster provisioner adopt a pre-created network."""
    if distribution is Distribution.TALOS:
        return {TALOS_LABEL_OWNED: "true", TALOS_LABEL_CLUSTER_NAME: cluster_name}
    return {LABEL_NETWORK_CLUSTER: cluster_name}


def find_network(docker_client: docker.DockerClient, name: str):
    """Return the network with exactly *name*, or None.

    The Docker name filter matches substrings, so results are compared exactly.
    """
    for network in docker_client.networks.list(names=[name]):
        if network.name == name:
            return network
    return None


def ensure_network_exists(
    docker_client: docker.DockerClient,
    name: str,
    cidr: str | None = None,
    labels: dict[str, str] | None = None,
    mtu: int = DEFAULT_NETWORK_MTU,
    notifier: Notifier | None = None,
) -> bool:
    """Create a bridge network unless one with the same name exists.

    Args:
        docker_client: Docker client instance.
        name: Network name.
        cidr: Subnet for the sole IPAM pool, or None to let Docker choose.
        labels: Ownership labels attached on creation.
        mtu: MTU recorded in the driver options.
        notifier: Progress sink.

    Returns:
        True if the network was created, False if it already existed.
    """
    notifier = notifier or NullNotifier()

    if find_network(docker_client, name) is not None:
        notifier.activity(f"network '{name}' already exists")
        return False

    options = {
        NETWORK_OPT_ENABLE_ICC: "true",
        NETWORK_OPT_ENABLE_IP_MASQUERADE: "true",
        NETWORK_OPT_MTU: str(mtu),
    }
    ipam = None
    if cidr:
        ipam = IPAMConfig(pool_configs=[IPAMPool(subnet=cidr)])

    docker_client.networks.create(
        name,
        driver=NETWORK_DRIVER,
        options=options,
        ipam=ipam,
        labels=dict(labels or {}),
    )
    logger.info("created docker network %s (cidr=%s)", name, cidr or "auto")
    notifier.activity(f"created network '{name}'")
    return True


def static_ip_for(cidr: str, index: int) -> str:
    """Deterministic static IP for the *index*-th registry on a subnet.

    Addresses are taken from the top of the subnet downward, starting five
    below the broadcast address (``.250`` in a /24).

    Args:
        cidr: Network subnet.
        index: Zero-based registry position.

    Returns:
        The IPv4 address as a string.

    Raises:
        ValueError: If the subnet has no address left for *index*.
    """
    network = ipaddress.ip_network(cidr, strict=False)
    candidate = int(network.broadcast_address) - STATIC_IP_OFFSET_FROM_BROADCAST - index
    # .0 is the network address and .1 the gateway
    if index < 0 or candidate <= int(network.network_address) + 1:
        raise ValueError(f"no static IP available in {cidr} for registry #{index}")
    return str(ipaddress.ip_address(candidate))
