"""
Pytest configuration and shared fixtures: an in-memory Docker client.
"""

from __future__ import annotations

import itertools
import os
from collections import namedtuple

import docker
import pytest

from mirror_manager.config import ClusterConfig, Distribution, LocalRegistryOptions, MirrorSettings
from mirror_manager.constants import REGISTRY_IMAGE
from mirror_manager.notify import Notifier
from mirror_manager.registry import RegistryManager

ExecResult = namedtuple("ExecResult", "exit_code output")

_ids = itertools.count(1)


class FakeContainer:
    """Container double holding the attrs shape docker-py exposes after inspect."""

    def __init__(self, client, name, image=REGISTRY_IMAGE, labels=None, status="running",
                 ports=None, volumes=None, environment=None):
        self.client = client
        self.name = name
        self.id = f"id-{next(_ids)}-{name}"
        self.image = image
        self.labels = dict(labels or {})
        self.status = status
        self.environment = list(environment or [])
        self.exec_commands: list = []
        self.exec_exit_code = 0
        self.host_ports = dict(ports or {})
        self.networks: dict[str, dict] = {}
        self.mounts = [
            {"Type": "volume", "Name": vol, "Destination": spec["bind"]}
            for vol, spec in (volumes or {}).items()
        ]

    @property
    def ports(self):
        result = {}
        for key, binding in self.host_ports.items():
            host_ip, host_port = binding
            result[key] = [{"HostIp": host_ip, "HostPort": str(host_port)}]
        return result

    @property
    def attrs(self):
        return {
            "NetworkSettings": {"Networks": {k: dict(v) for k, v in self.networks.items()}},
            "Mounts": list(self.mounts),
        }

    def start(self):
        self.client.calls.append(("start", self.name))
        self.status = "running"

    def stop(self):
        self.client.calls.append(("stop", self.name))
        self.status = "exited"

    def remove(self, force=False):
        self.client.calls.append(("remove", self.name))
        for network in list(self.networks):
            if network in self.client._networks:
                self.client._networks[network].members.discard(self.name)
        del self.client._containers[self.name]

    def reload(self):
        pass

    def exec_run(self, cmd):
        self.client.calls.append(("exec", self.name))
        self.exec_commands.append(cmd)
        output = b"" if self.exec_exit_code == 0 else b"permission denied"
        return ExecResult(self.exec_exit_code, output)


class FakeNetwork:
    def __init__(self, client, name, driver="bridge", options=None, ipam=None, labels=None):
        self.client = client
        self.name = name
        self.id = f"net-{name}"
        self.driver = driver
        self.options = dict(options or {})
        self.ipam = ipam
        self.labels = dict(labels or {})
        self.members: set[str] = set()

    def connect(self, container, ipv4_address=None):
        self.client.calls.append(("connect", container.name, self.name))
        container.networks[self.name] = {"IPAddress": ipv4_address or "172.18.0.100"}
        self.members.add(container.name)

    def disconnect(self, container, force=False):
        self.client.calls.append(("disconnect", container.name, self.name))
        container.networks.pop(self.name, None)
        self.members.discard(container.name)


class _Containers:
    def __init__(self, client):
        self.client = client

    def get(self, name_or_id):
        for container in self.client._containers.values():
            if container.name == name_or_id or container.id == name_or_id:
                return container
        raise docker.errors.NotFound(f"No such container: {name_or_id}")

    def list(self, all=False, filters=None):
        result = []
        for container in self.client._containers.values():
            if not all and container.status != "running":
                continue
            if filters and not _matches(container, filters):
                continue
            result.append(container)
        return result

    def create(self, image, name=None, detach=False, environment=None, labels=None,
               ports=None, volumes=None, restart_policy=None):
        if self.client.fail_create_for == name:
            raise docker.errors.APIError(f"create failed for {name}")
        self.client.calls.append(("create", name))
        container = FakeContainer(self.client, name, image=image, labels=labels, status="created",
                                  ports=ports, volumes=volumes, environment=environment)
        container.restart_policy = restart_policy
        self.client._containers[name] = container
        return container


def _matches(container, filters):
    label = filters.get("label")
    if label:
        key, _, value = label.partition("=")
        if key not in container.labels or (value and container.labels[key] != value):
            return False
    ancestor = filters.get("ancestor")
    if ancestor and container.image != ancestor:
        return False
    name = filters.get("name")
    if name and name not in container.name:
        return False
    return True


class _Networks:
    def __init__(self, client):
        self.client = client

    def list(self, names=None):
        networks = list(self.client._networks.values())
        if names:
            networks = [n for n in networks if any(want in n.name for want in names)]
        return networks

    def get(self, name):
        if name not in self.client._networks:
            raise docker.errors.NotFound(f"network {name} not found")
        return self.client._networks[name]

    def create(self, name, driver=None, options=None, ipam=None, labels=None):
        self.client.calls.append(("network_create", name))
        network = FakeNetwork(self.client, name, driver, options, ipam, labels)
        self.client._networks[name] = network
        return network


class _Images:
    def __init__(self, client):
        self.client = client
        self.present: set[str] = set()

    def get(self, name):
        if name not in self.present:
            raise docker.errors.ImageNotFound(f"image {name} not found")
        return name

    def pull(self, name, tag=None):
        self.client.calls.append(("pull", name))
        self.present.add(name)


class FakeVolume:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def remove(self):
        self.client.calls.append(("volume_remove", self.name))
        self.client._volumes.pop(self.name, None)


class _Volumes:
    def __init__(self, client):
        self.client = client

    def get(self, name):
        if name not in self.client._volumes:
            raise docker.errors.NotFound(f"volume {name} not found")
        return self.client._volumes[name]

    def create(self, name=None, labels=None):
        volume = FakeVolume(self.client, name)
        self.client._volumes[name] = volume
        return volume


class FakeDockerClient:
    """In-memory stand-in for docker.DockerClient that records call order."""

    def __init__(self):
        self.calls: list[tuple] = []
        self._containers: dict[str, FakeContainer] = {}
        self._networks: dict[str, FakeNetwork] = {}
        self._volumes: dict[str, FakeVolume] = {}
        self.fail_create_for: str | None = None
        self.containers = _Containers(self)
        self.networks = _Networks(self)
        self.images = _Images(self)
        self.volumes = _Volumes(self)

    def add_network(self, name):
        network = FakeNetwork(self, name)
        self._networks[name] = network
        return network

    def add_container(self, name, networks=(), image=REGISTRY_IMAGE, labels=None, status="running",
                      ports=None, volume=None):
        volumes = {volume: {"bind": "/var/lib/registry", "mode": "rw"}} if volume else None
        container = FakeContainer(self, name, image=image, labels=labels, status=status,
                                  ports=ports, volumes=volumes)
        self._containers[name] = container
        for network in networks:
            if network not in self._networks:
                self.add_network(network)
            self._networks[network].members.add(name)
            container.networks[network] = {"IPAddress": "172.18.0.50"}
        if volume:
            self._volumes.setdefault(volume, FakeVolume(self, volume))
        return container

    def close(self):
        pass


class FakeHealthChecker:
    """Readiness checker that records each wait in the client's call log."""

    def __init__(self, calls, fail_for=()):
        self.calls = calls
        self.fail_for = set(fail_for)
        self.urls: dict[str, str | None] = {}

    def wait_until_ready(self, name, url, is_running):
        self.calls.append(("wait", name))
        self.urls[name] = url
        if name in self.fail_for:
            from mirror_manager.errors import RegistryNotReadyError
            raise RegistryNotReadyError(name)


class RecordingNotifier(Notifier):
    """Notifier that keeps every message as (kind, text)."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def title(self, message):
        self.messages.append(("title", message))

    def activity(self, message):
        self.messages.append(("activity", message))

    def success(self, message, elapsed=None):
        self.messages.append(("success", message))

    def warning(self, message):
        self.messages.append(("warning", message))

    def error(self, message):
        self.messages.append(("error", message))

    def of(self, kind):
        return [text for k, text in self.messages if k == kind]


@pytest.fixture
def docker_client():
    """Fresh in-memory Docker client."""
    return FakeDockerClient()


@pytest.fixture
def health_checker(docker_client):
    """Readiness checker sharing the client's call log."""
    return FakeHealthChecker(docker_client.calls)


@pytest.fixture
def manager(docker_client, health_checker):
    """RegistryManager over the fake client."""
    return RegistryManager(docker_client, health_checker)


@pytest.fixture
def notifier():
    """Notifier that records messages."""
    return RecordingNotifier()


@pytest.fixture
def settings(monkeypatch):
    """Settings independent of MIRROR_* variables in the environment."""
    for key in [k for k in os.environ if k.startswith("MIRROR_")]:
        monkeypatch.delenv(key)
    return MirrorSettings(cluster_name="dev")


def make_cluster(distribution=Distribution.KIND, name="dev", local_registry=False, port=5111):
    """ClusterConfig shortcut."""
    return ClusterConfig(
        name=name,
        distribution=distribution,
        local_registry=LocalRegistryOptions(enabled=local_registry, port=port),
    )
