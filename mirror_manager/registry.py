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

"""Registry container lifecycle: create, wait-ready, connect, disconnect, delete.

A registry must be healthy before it joins a cluster network. Once attached,
Docker's embedded DNS resolves names on that network, and a mirror container
named after its upstream (``ghcr.io``) would resolve its own upstream to
itself. :meth:`RegistryManager.connect_registries_to_network` therefore only
accepts :class:`ReadyRegistry` handles, which are issued exclusively by
:meth:`RegistryManager.wait_for_registries_ready`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

import docker
import requests

from mirror_manager import logger
from mirror_manager.constants import (
    ENV_PROXY_PASSWORD,
    ENV_PROXY_REMOTE_URL,
    ENV_PROXY_USERNAME,
    KIND_NETWORK_NAME,
    LABEL_CLUSTER,
    LABEL_REGISTRY,
    REGISTRY_DATA_PATH,
    REGISTRY_HOST_IP,
    REGISTRY_IMAGE,
    REGISTRY_PORT_KEY,
    REGISTRY_RESTART_POLICY,
    VCLUSTER_NETWORK_PREFIX,
)
from mirror_manager.errors import (
    RegistryAlreadyExistsError,
    RegistryNotFoundError,
    RegistryPortNotFoundError,
)
from mirror_manager.health import (
    RegistryHealthChecker,
    health_url_for_host_port,
    health_url_for_ip,
)
from mirror_manager.naming import RegistryInfo
from mirror_manager.network import static_ip_for
from mirror_manager.notify import Notifier, NullNotifier

_READY_TOKEN = object()


# ============================================================================
# Value types
# ============================================================================

@dataclass(frozen=True)
class ReadyRegistry:
    """Proof that a registry passed its readiness check.

    Only :meth:`RegistryManager.wait_for_registries_ready` can build one.
    """

    name: str
    container_id: str
    _token: object = field(repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._token is not _READY_TOKEN:
            raise TypeError("ReadyRegistry is issued by RegistryManager.wait_for_registries_ready")


@dataclass(frozen=True)
class DiscoveredRegistry:
    """A registry-image container found on a network.

    Attributes:
        name: Container name.
        container_id: Container ID, stable even after the network is gone.
        managed: Whether the container carries this tool's registry label.
        cluster: Cluster recorded in the container's cluster label, if any.
    """

    name: str
    container_id: str
    managed: bool = True
    cluster: str = ""


@dataclass
class DeletionResult:
    """Outcome of a batch deletion; every registry lands in exactly one bucket."""

    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


def is_cluster_network_name(network: str) -> bool:
    """Whether a network name belongs to a Kind, K3d or VCluster cluster."""
    name = network.strip().lower()
    if not name:
        return False
    return (
        name in (KIND_NETWORK_NAME, "k3d")
        or name.startswith(("kind-", "k3d-", VCLUSTER_NETWORK_PREFIX))
    )


def _attached_networks(container) -> dict:
    return container.attrs.get("NetworkSettings", {}).get("Networks") or {}


def _attached_to_other_clusters(container, ignored_network: str) -> bool:
    ignored = ignored_network.strip().lower()
    for network in _attached_networks(container):
        if ignored and network.lower() == ignored:
            continue
        if is_cluster_network_name(network):
            return True
    return False


def _registry_volume(container) -> str:
    for mount in container.attrs.get("Mounts") or []:
        if mount.get("Destination") == REGISTRY_DATA_PATH and mount.get("Name"):
            return mount["Name"]
    return ""


# ============================================================================
# Registry manager
# ============================================================================

class RegistryManager:
    """Manage registry containers on one Docker daemon.

    Args:
        docker_client: Docker client instance.
        health_checker: Readiness poller; a default HTTP poller when None.
        image: Registry image.
    """

    def __init__(
        self,
        docker_client: docker.DockerClient,
        health_checker: RegistryHealthChecker | None = None,
        image: str = REGISTRY_IMAGE,
    ) -> None:
        self.docker_client = docker_client
        self.health_checker = health_checker or RegistryHealthChecker()
        self.image = image

    # -- queries --

    def get_container(self, name: str):
        """Return the container named *name*, or None."""
        try:
            return self.docker_client.containers.get(name)
        except docker.errors.NotFound:
            return None

    def registry_exists(self, name: str) -> bool:
        return self.get_container(name) is not None

    def get_used_host_ports(self) -> set[int]:
        """Host ports published by all running containers."""
        used: set[int] = set()
        for container in self.docker_client.containers.list():
            for bindings in (container.ports or {}).values():
                for binding in bindings or []:
                    host_port = binding.get("HostPort")
                    if host_port and str(host_port).isdigit():
                        used.add(int(host_port))
        return used

    def get_registry_port(self, name: str) -> int:
        """Host port a registry is published on.

        Raises:
            RegistryNotFoundError: If the container does not exist.
            RegistryPortNotFoundError: If it has no host port binding.
        """
        container = self.get_container(name)
        if container is None:
            raise RegistryNotFoundError(f"registry not found: {name}")
        for binding in (container.ports or {}).get(REGISTRY_PORT_KEY) or []:
            host_port = binding.get("HostPort")
            if host_port and str(host_port).isdigit() and int(host_port) > 0:
                return int(host_port)
        raise RegistryPortNotFoundError(f"registry port not found: {name}")

    def is_container_running(self, name: str) -> bool:
        container = self.get_container(name)
        return container is not None and container.status == "running"

    def is_registry_in_use(self, name: str, ignore_network: str = "") -> bool:
        """Whether a registry is running and still serves another cluster.

        Args:
            name: Registry container name.
            ignore_network: Network of the cluster being torn down.

        Returns:
            True if the container runs and is attached to a cluster network
            other than *ignore_network*.
        """
        container = self.get_container(name)
        if container is None or container.status != "running":
            return False
        return _attached_to_other_clusters(container, ignore_network)

    # -- creation --

    def _ensure_image(self) -> None:
        try:
            self.docker_client.images.get(self.image)
        except docker.errors.ImageNotFound:
            logger.info("pulling %s", self.image)
            self.docker_client.images.pull(self.image)

    def _ensure_volume(self, name: str) -> None:
        try:
            self.docker_client.volumes.get(name)
        except docker.errors.NotFound:
            self.docker_client.volumes.create(name=name, labels={LABEL_REGISTRY: name})

    def _environment(self, info: RegistryInfo) -> list[str]:
        if not info.upstream:
            return []
        env = [f"{ENV_PROXY_REMOTE_URL}={info.upstream}"]
        if info.spec is not None and info.spec.has_credentials:
            username, password = info.spec.resolve_credentials()
            if username:
                env.append(f"{ENV_PROXY_USERNAME}={username}")
            if password:
                env.append(f"{ENV_PROXY_PASSWORD}={password}")
        return env

    def create_registry(self, info: RegistryInfo, cluster_name: str) -> None:
        """Create and start one registry container.

        Args:
            info: Registry identity.
            cluster_name: Cluster that requested the registry, stored as a label.

        Raises:
            RegistryAlreadyExistsError: If Docker reports a name conflict.
        """
        self._ensure_image()
        self._ensure_volume(info.volume)
        ports = {REGISTRY_PORT_KEY: (REGISTRY_HOST_IP, info.port)} if info.port else {}
        try:
            container = self.docker_client.containers.create(
                self.image,
                name=info.name,
                detach=True,
                environment=self._environment(info),
                labels={LABEL_REGISTRY: info.name, LABEL_CLUSTER: cluster_name},
                ports=ports,
                volumes={info.volume: {"bind": REGISTRY_DATA_PATH, "mode": "rw"}},
                restart_policy={"Name": REGISTRY_RESTART_POLICY},
            )
        except docker.errors.APIError as err:
            if err.status_code == 409:
                raise RegistryAlreadyExistsError(f"registry already exists: {info.name}") from err
            raise
        container.start()

    def setup_registries(
        self,
        infos: Sequence[RegistryInfo],
        cluster_name: str,
        notifier: Notifier | None = None,
    ) -> list[str]:
        """Create every registry that does not exist yet.

        Existing containers are reused. When a creation fails, the registries
        created by this call are removed in reverse order and the error is
        re-raised; pre-existing registries are left alone.

        Args:
            infos: Registries to set up.
            cluster_name: Cluster that requested them.
            notifier: Progress sink.

        Returns:
            Names of the registries created by this call.
        """
        notifier = notifier or NullNotifier()
        created: list[str] = []
        try:
            for info in infos:
                if self.registry_exists(info.name):
                    notifier.activity(f"skipping '{info.name}' as it already exists")
                    continue
                notifier.activity(f"creating '{info.name}' for '{info.host or 'local images'}'")
                self.create_registry(info, cluster_name)
                created.append(info.name)
        except Exception:
            for name in reversed(created):
                container = self.get_container(name)
                if container is None:
                    continue
                try:
                    container.remove(force=True)
                except docker.errors.APIError as err:
                    logger.warning("rollback of registry %s failed: %s", name, err)
            raise
        return created

    # -- readiness --

    def _health_url(self, name: str, ip: str) -> str | None:
        if ip:
            return health_url_for_ip(ip)
        try:
            return health_url_for_host_port(self.get_registry_port(name))
        except RegistryPortNotFoundError:
            return None

    def wait_for_registries_ready(self, name_to_ip: Mapping[str, str]) -> list[ReadyRegistry]:
        """Wait for each registry in turn and issue ReadyRegistry handles.

        Args:
            name_to_ip: Registry names mapped to their network IP; an empty IP
                falls back to the published host port, and a registry with
                neither is ready once its container runs.

        Returns:
            Handles in the order of *name_to_ip*.

        Raises:
            RegistryNotFoundError: If a registry container does not exist.
            RegistryNotReadyError: If a registry never became healthy.
            RegistryHealthCheckCancelledError: If polling was cancelled.
        """
        ready: list[ReadyRegistry] = []
        for name, ip in name_to_ip.items():
            container = self.get_container(name)
            if container is None:
                raise RegistryNotFoundError(f"registry not found: {name}")
            url = self._health_url(name, ip)
            self.health_checker.wait_until_ready(name, url, lambda n=name: self.is_container_running(n))
            ready.append(ReadyRegistry(name=name, container_id=container.id, _token=_READY_TOKEN))
        return ready

    # -- networking --

    def connect_registries_to_network(
        self,
        registries: Sequence[ReadyRegistry],
        network_name: str,
        cidr: str | None = None,
        notifier: Notifier | None = None,
    ) -> dict[str, str]:
        """Attach ready registries to a network.

        Args:
            registries: Handles from :meth:`wait_for_registries_ready`.
            network_name: Target network.
            cidr: Network subnet; when set, each registry gets a static IP.
            notifier: Progress sink.

        Returns:
            Registry names mapped to their assigned IP (empty when Docker chose).
        """
        notifier = notifier or NullNotifier()
        network = self.docker_client.networks.get(network_name)
        ips: dict[str, str] = {}
        for index, registry in enumerate(registries):
            if not isinstance(registry, ReadyRegistry):
                raise TypeError(f"expected ReadyRegistry, got {type(registry).__name__}")
            container = self.docker_client.containers.get(registry.container_id)
            attached = _attached_networks(container)
            if network_name in attached:
                logger.debug("%s already attached to %s", registry.name, network_name)
                ips[registry.name] = (attached[network_name] or {}).get("IPAddress", "")
                continue
            ip = static_ip_for(cidr, index) if cidr else None
            if ip:
                network.connect(container, ipv4_address=ip)
            else:
                network.connect(container)
            notifier.activity(f"connected '{registry.name}' to '{network_name}'")
            ips[registry.name] = ip or ""
        return ips

    def disconnect_from_network(self, name: str, network_name: str) -> None:
        """Detach a registry from a network; missing container or network is fine."""
        if not network_name.strip():
            return
        container = self.get_container(name)
        if container is None or network_name not in _attached_networks(container):
            return
        try:
            self.docker_client.networks.get(network_name).disconnect(container, force=True)
        except docker.errors.NotFound:
            logger.debug("network %s or registry %s already gone", network_name, name)

    def _registry_image_containers(self) -> list:
        return self.docker_client.containers.list(all=True, filters={"ancestor": self.image})

    def disconnect_all_from_network(self, network_name: str) -> list[str]:
        """Detach every registry-image container from a network.

        This includes registry containers this tool did not create; each of
        those is logged as a warning.

        Returns:
            Names of the containers that were disconnected.
        """
        if not network_name.strip():
            return []
        disconnected: list[str] = []
        for container in self._registry_image_containers():
            if network_name not in _attached_networks(container):
                continue
            if LABEL_REGISTRY not in (container.labels or {}):
                logger.warning("disconnecting unmanaged registry %s from %s", container.name, network_name)
            try:
                self.docker_client.networks.get(network_name).disconnect(container, force=True)
            except docker.errors.NotFound:
                continue
            disconnected.append(container.name)
        return disconnected

    def list_registries_on_network(self, network_name: str) -> list[DiscoveredRegistry]:
        """Registry-image containers attached to a network, managed or not."""
        if not network_name.strip():
            return []
        return [
            DiscoveredRegistry(
                name=container.name,
                container_id=container.id,
                managed=LABEL_REGISTRY in (container.labels or {}),
                cluster=(container.labels or {}).get(LABEL_CLUSTER, ""),
            )
            for container in self._registry_image_containers()
            if network_name in _attached_networks(container)
        ]

    # -- deletion --

    def _stop_and_remove(self, container, delete_volume: bool) -> None:
        volume = _registry_volume(container) if delete_volume else ""
        if container.status == "running":
            container.stop()
        container.remove()
        if not volume:
            return
        try:
            self.docker_client.volumes.get(volume).remove()
        except docker.errors.NotFound:
            pass
        except docker.errors.APIError as err:
            # shared volumes stay while another registry mounts them
            if err.status_code != 409:
                raise
            logger.info("volume %s is still in use", volume)

    def delete_registry(self, name: str, network_name: str = "", delete_volume: bool = False) -> bool:
        """Delete one registry unless another cluster still uses it.

        Args:
            name: Registry container name.
            network_name: Network of the cluster being torn down, detached first.
            delete_volume: Also remove the registry's data volume.

        Returns:
            True if the container was removed, False if it was kept.

        Raises:
            RegistryNotFoundError: If the container does not exist.
        """
        container = self.get_container(name)
        if container is None:
            raise RegistryNotFoundError(f"registry not found: {name}")
        if network_name:
            self.disconnect_from_network(name, network_name)
            container.reload()
        if _attached_to_other_clusters(container, network_name):
            logger.info("keeping %s, it is attached to another cluster network", name)
            return False
        self._stop_and_remove(container, delete_volume)
        return True

    def delete_registries_by_info(
        self,
        registries: Iterable[DiscoveredRegistry],
        delete_volumes: bool = False,
        network_name: str = "",
        notifier: Notifier | None = None,
    ) -> DeletionResult:
        """Delete discovered registries, attempting every one independently.

        Args:
            registries: Registries captured by discovery.
            delete_volumes: Also remove data volumes.
            network_name: Network of the cluster being torn down; detached
                first and ignored by the in-use check.
            notifier: Progress sink.

        Returns:
            Per-registry outcome.
        """
        notifier = notifier or NullNotifier()
        result = DeletionResult()
        for registry in registries:
            try:
                if network_name:
                    self.disconnect_from_network(registry.name, network_name)
                if self.is_registry_in_use(registry.name, network_name):
                    notifier.activity(f"skipping '{registry.name}' as it is in use")
                    result.skipped.append(registry.name)
                    continue
                notifier.activity(f"deleting '{registry.name}'")
                container = self.docker_client.containers.get(registry.container_id)
                self._stop_and_remove(container, delete_volumes)
                result.deleted.append(registry.name)
            except docker.errors.NotFound:
                logger.debug("registry %s already removed", registry.name)
                result.deleted.append(registry.name)
            except (docker.errors.DockerException, requests.exceptions.RequestException) as err:
                result.failures[registry.name] = err
        return result

    def delete_registries_on_network(
        self,
        network_name: str,
        delete_volumes: bool = False,
        registry_filter: Callable[[DiscoveredRegistry], bool] | None = None,
        notifier: Notifier | None = None,
    ) -> DeletionResult:
        """Discover registries on a network and delete the ones *registry_filter* accepts."""
        registries = self.list_registries_on_network(network_name)
        if registry_filter is not None:
            registries = [r for r in registries if registry_filter(r)]
        return self.delete_registries_by_info(
            registries, delete_volumes, network_name=network_name, notifier=notifier
        )


RegistryManagerFactory = Callable[[docker.DockerClient], RegistryManager]
