"""
Tests for the registry container manager.
"""

from unittest.mock import Mock

import docker
import pytest
import requests

from mirror_manager.constants import LABEL_CLUSTER, LABEL_REGISTRY
from mirror_manager.errors import RegistryAlreadyExistsError, RegistryNotFoundError, RegistryNotReadyError
from mirror_manager.naming import build_local_registry_info, build_registry_infos
from mirror_manager.registry import DiscoveredRegistry, ReadyRegistry
from mirror_manager.specs import MirrorSpec, specs_from_hosts


def _infos(*hosts, prefix="dev"):
    return build_registry_infos(specs_from_hosts(hosts), prefix)


class TestSetup:
    """Registry creation."""

    def test_creates_pull_through_cache(self, manager, docker_client, notifier):
        """Container is labelled, published on loopback and proxies its upstream."""
        (info,) = _infos("ghcr.io")
        created = manager.setup_registries([info], "dev", notifier)
        container = docker_client.containers.get("dev-ghcr.io")

        assert created == ["dev-ghcr.io"]
        assert container.status == "running"
        assert container.labels == {LABEL_REGISTRY: "dev-ghcr.io", LABEL_CLUSTER: "dev"}
        assert "REGISTRY_PROXY_REMOTEURL=https://ghcr.io" in container.environment
        assert container.ports["5000/tcp"][0] == {"HostIp": "127.0.0.1", "HostPort": "5000"}
        assert container.restart_policy == {"Name": "unless-stopped"}
        assert ("pull", "registry:3") in docker_client.calls
        assert "creating 'dev-ghcr.io' for 'ghcr.io'" in notifier.of("activity")

    def test_credentials_resolved_at_creation(self, manager, docker_client, monkeypatch):
        """Placeholders are expanded into the container env only."""
        monkeypatch.setenv("GH_USER", "alice")
        monkeypatch.setenv("GH_TOKEN", "tok")
        spec = MirrorSpec("ghcr.io", "https://ghcr.io", "${GH_USER}", "${GH_TOKEN}")
        manager.setup_registries(build_registry_infos([spec], "dev"), "dev")
        env = docker_client.containers.get("dev-ghcr.io").environment
        assert "REGISTRY_PROXY_USERNAME=alice" in env
        assert "REGISTRY_PROXY_PASSWORD=tok" in env

    def test_local_registry_is_not_a_proxy(self, manager, docker_client):
        """The local registry has no upstream env."""
        manager.setup_registries([build_local_registry_info("dev", 5111)], "dev")
        assert docker_client.containers.get("dev-local-registry").environment == []

    def test_existing_registry_reused(self, manager, docker_client, notifier):
        """Existing containers are skipped, not duplicated."""
        docker_client.add_container("dev-ghcr.io")
        created = manager.setup_registries(_infos("ghcr.io"), "dev", notifier)
        assert created == []
        assert ("create", "dev-ghcr.io") not in docker_client.calls
        assert "skipping 'dev-ghcr.io' as it already exists" in notifier.of("activity")

    def test_rollback_on_failure(self, manager, docker_client):
        """Registries created by the failing batch are removed; reused ones stay."""
        docker_client.add_container("dev-docker.io")
        docker_client.fail_create_for = "dev-quay.io"
        with pytest.raises(docker.errors.APIError):
            manager.setup_registries(_infos("docker.io", "ghcr.io", "quay.io"), "dev")
        assert manager.get_container("dev-ghcr.io") is None
        assert manager.get_container("dev-docker.io") is not None

    def test_name_conflict(self, manager, docker_client):
        """A conflicting name from Docker is a distinct error."""
        docker_client.containers.create = Mock(
            side_effect=docker.errors.APIError("conflict", response=Mock(status_code=409))
        )
        (info,) = _infos("ghcr.io")
        with pytest.raises(RegistryAlreadyExistsError):
            manager.create_registry(info, "dev")


class TestReadiness:
    """Wait-ready issues handles."""

    def test_ready_handles(self, manager, docker_client, health_checker):
        """Each registry is waited on and gets a handle."""
        manager.setup_registries(_infos("ghcr.io"), "dev")
        ready = manager.wait_for_registries_ready({"dev-ghcr.io": ""})
        assert [r.name for r in ready] == ["dev-ghcr.io"]
        assert health_checker.urls["dev-ghcr.io"] == "http://127.0.0.1:5000/v2/"

    def test_ip_preferred_for_health_url(self, manager, docker_client, health_checker):
        """A known IP is probed on the container port."""
        docker_client.add_container("dev-ghcr.io")
        manager.wait_for_registries_ready({"dev-ghcr.io": "10.5.0.250"})
        assert health_checker.urls["dev-ghcr.io"] == "http://10.5.0.250:5000/v2/"

    def test_no_port_no_ip_falls_back_to_running_check(self, manager, docker_client, health_checker):
        """Without address the checker gets no URL."""
        docker_client.add_container("dev-ghcr.io")
        manager.wait_for_registries_ready({"dev-ghcr.io": ""})
        assert health_checker.urls["dev-ghcr.io"] is None

    def test_missing_registry(self, manager):
        """Waiting on an unknown registry fails."""
        with pytest.raises(RegistryNotFoundError):
            manager.wait_for_registries_ready({"ghost": ""})

    def test_not_ready_propagates(self, manager, docker_client, health_checker):
        """A readiness failure is a distinct error."""
        docker_client.add_container("dev-ghcr.io")
        health_checker.fail_for.add("dev-ghcr.io")
        with pytest.raises(RegistryNotReadyError):
            manager.wait_for_registries_ready({"dev-ghcr.io": ""})

    def test_handles_cannot_be_forged(self):
        """ReadyRegistry cannot be built outside the manager."""
        with pytest.raises(TypeError):
            ReadyRegistry(name="x", container_id="id", _token=object())


class TestConnect:
    """Network attachment."""

    def test_connect_after_wait(self, manager, docker_client):
        """Connect is only reachable after wait-ready, in that order."""
        docker_client.add_network("kind")
        manager.setup_registries(_infos("ghcr.io"), "dev")
        ready = manager.wait_for_registries_ready({"dev-ghcr.io": ""})
        manager.connect_registries_to_network(ready, "kind")
        order = [c[0] for c in docker_client.calls if c[0] in ("create", "wait", "connect")]
        assert order == ["create", "wait", "connect"]

    def test_static_ips(self, manager, docker_client):
        """With a CIDR each registry gets a deterministic address."""
        docker_client.add_network("dev")
        docker_client.add_container("dev-docker.io")
        docker_client.add_container("dev-ghcr.io")
        ready = manager.wait_for_registries_ready({"dev-docker.io": "", "dev-ghcr.io": ""})
        ips = manager.connect_registries_to_network(ready, "dev", cidr="10.5.0.0/24")
        assert ips == {"dev-docker.io": "10.5.0.250", "dev-ghcr.io": "10.5.0.249"}

    def test_already_connected_is_noop(self, manager, docker_client):
        """An attached registry is not connected again."""
        docker_client.add_container("dev-ghcr.io", networks=["kind"])
        ready = manager.wait_for_registries_ready({"dev-ghcr.io": ""})
        manager.connect_registries_to_network(ready, "kind")
        assert not [c for c in docker_client.calls if c[0] == "connect"]

    def test_rejects_plain_names(self, manager, docker_client):
        """Unverified registries cannot be connected."""
        docker_client.add_network("kind")
        with pytest.raises(TypeError):
            manager.connect_registries_to_network(["dev-ghcr.io"], "kind")


class TestDiscoveryAndInUse:
    """Listing and in-use detection."""

    def test_list_on_network(self, manager, docker_client):
        """Only registry-image containers attached to the network are listed."""
        docker_client.add_container("dev-ghcr.io", networks=["kind"], labels={LABEL_REGISTRY: "dev-ghcr.io"})
        docker_client.add_container("manual-registry", networks=["kind"])
        docker_client.add_container("dev-control-plane", networks=["kind"], image="kindest/node")
        docker_client.add_container("other", networks=["k3d-x"])
        found = manager.list_registries_on_network("kind")
        assert sorted((r.name, r.managed) for r in found) == [
            ("dev-ghcr.io", True),
            ("manual-registry", False),
        ]

    def test_in_use_by_other_cluster(self, manager, docker_client):
        """A running registry on another cluster network is in use."""
        docker_client.add_container("shared", networks=["kind", "k3d-other"])
        assert manager.is_registry_in_use("shared", ignore_network="kind")
        assert manager.is_registry_in_use("shared", ignore_network="k3d-other")

    def test_stopped_registry_not_in_use(self, manager, docker_client):
        """Stopped containers are never in use."""
        docker_client.add_container("shared", networks=["k3d-other"], status="exited")
        assert not manager.is_registry_in_use("shared")

    def test_used_host_ports(self, manager, docker_client):
        """Only running containers contribute ports."""
        docker_client.add_container("a", ports={"5000/tcp": ("127.0.0.1", 5003)})
        docker_client.add_container("b", ports={"5000/tcp": ("127.0.0.1", 5004)}, status="exited")
        assert manager.get_used_host_ports() == {5003}


class TestDeletion:
    """Deleting registries."""

    def test_delete_registry_with_volume(self, manager, docker_client):
        """Container and volume are removed."""
        docker_client.add_container("dev-ghcr.io", networks=["kind"], volume="ghcr.io")
        assert manager.delete_registry("dev-ghcr.io", "kind", delete_volume=True)
        assert manager.get_container("dev-ghcr.io") is None
        assert ("volume_remove", "ghcr.io") in docker_client.calls

    def test_delete_registry_kept_when_shared(self, manager, docker_client):
        """A registry still attached to another cluster network survives."""
        docker_client.add_container("dev-ghcr.io", networks=["kind", "k3d-other"])
        assert not manager.delete_registry("dev-ghcr.io", "kind")
        container = manager.get_container("dev-ghcr.io")
        assert "kind" not in container.networks

    def test_delete_missing_registry(self, manager):
        """Deleting an unknown registry raises."""
        with pytest.raises(RegistryNotFoundError):
            manager.delete_registry("ghost")

    def test_disconnect_tolerates_missing(self, manager, docker_client):
        """Disconnecting a missing container or network is a no-op."""
        manager.disconnect_from_network("ghost", "kind")
        docker_client.add_container("dev-ghcr.io")
        manager.disconnect_from_network("dev-ghcr.io", "kind")
        assert not [c for c in docker_client.calls if c[0] == "disconnect"]

    def test_batch_continues_after_failure(self, manager, docker_client):
        """One failed removal does not stop the others."""
        bad = docker_client.add_container("dev-a.io")
        docker_client.add_container("dev-b.io")
        bad.remove = Mock(side_effect=docker.errors.APIError("boom"))
        result = manager.delete_registries_by_info([
            DiscoveredRegistry("dev-a.io", bad.id),
            DiscoveredRegistry("dev-b.io", "dev-b.io"),
        ])
        assert result.deleted == ["dev-b.io"]
        assert list(result.failures) == ["dev-a.io"]
        assert not result.ok

    def test_batch_continues_after_transport_error(self, manager, docker_client):
        """A timeout while stopping one registry is recorded and the rest are deleted."""
        slow = docker_client.add_container("dev-a.io")
        docker_client.add_container("dev-b.io")
        slow.stop = Mock(side_effect=requests.exceptions.ReadTimeout("read timed out"))
        result = manager.delete_registries_by_info([
            DiscoveredRegistry("dev-a.io", slow.id),
            DiscoveredRegistry("dev-b.io", "dev-b.io"),
        ])
        assert result.deleted == ["dev-b.io"]
        assert isinstance(result.failures["dev-a.io"], requests.exceptions.ReadTimeout)
        assert manager.get_container("dev-a.io") is not None

    def test_delete_on_network_applies_filter(self, manager, docker_client, notifier):
        """Only accepted registries on the network are deleted; others stay attached."""
        docker_client.add_container("dev-ghcr.io", networks=["kind"], labels={LABEL_REGISTRY: "dev-ghcr.io", LABEL_CLUSTER: "dev"})
        docker_client.add_container("lab-ghcr.io", networks=["kind"], labels={LABEL_REGISTRY: "lab-ghcr.io", LABEL_CLUSTER: "lab"})
        docker_client.add_container("dev-quay.io", networks=["k3d-dev"])
        result = manager.delete_registries_on_network(
            "kind", registry_filter=lambda r: r.cluster == "dev", notifier=notifier,
        )
        assert result.deleted == ["dev-ghcr.io"]
        assert "kind" in manager.get_container("lab-ghcr.io").networks
        assert manager.get_container("dev-quay.io") is not None
        assert notifier.of("activity") == ["deleting 'dev-ghcr.io'"]

    def test_volume_in_use_is_kept(self, manager, docker_client):
        """A volume still mounted elsewhere is left alone."""
        docker_client.add_container("dev-ghcr.io", volume="ghcr.io")
        volume = docker_client.volumes.get("ghcr.io")
        volume.remove = Mock(side_effect=docker.errors.APIError("in use", response=Mock(status_code=409)))
        assert manager.delete_registry("dev-ghcr.io", delete_volume=True)
        assert "ghcr.io" in docker_client._volumes

    def test_disconnect_all_includes_unmanaged(self, manager, docker_client, caplog):
        """Every registry-image container is detached, unmanaged ones with a warning."""
        docker_client.add_container("dev-ghcr.io", networks=["dev"], labels={LABEL_REGISTRY: "dev-ghcr.io"})
        docker_client.add_container("manual", networks=["dev"])
        docker_client.add_container("node", networks=["dev"], image="talos")
        with caplog.at_level("WARNING", logger="mirror_manager"):
            names = manager.disconnect_all_from_network("dev")
        assert sorted(names) == ["dev-ghcr.io", "manual"]
        assert "manual" in caplog.text
        assert "dev" in docker_client.containers.get("node").networks
