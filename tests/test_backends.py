"""
Tests for the distribution backends.
"""

import pytest
import yaml

from mirror_manager.backends import StageContext, build_backends
from mirror_manager.backends.k3d import K3dBackend, default_k3d_config, extract_mirror_specs, render_registries_config
from mirror_manager.backends.kind import (
    CONTAINERD_CONFIG_PATH_PATCH,
    KindBackend,
    default_kind_config,
    ensure_config_path_patch,
    mounted_hosts,
)
from mirror_manager.backends.talos import TalosBackend, TalosConfigBundle
from mirror_manager.backends.vcluster import VClusterBackend
from mirror_manager.config import Distribution
from mirror_manager.constants import KIND_CLUSTER_LABEL
from mirror_manager.errors import NoClusterNodesError
from mirror_manager.naming import build_registry_infos
from mirror_manager.specs import MirrorSpec, specs_from_hosts

from conftest import make_cluster


def _ctx(distribution, settings, notifier, hosts=("ghcr.io",), local_registry=False, **kwargs):
    return StageContext(
        cluster=make_cluster(distribution, local_registry=local_registry),
        specs=tuple(specs_from_hosts(hosts)),
        settings=settings,
        notifier=notifier,
        **kwargs,
    )


def test_build_backends():
    """Every distribution has a backend."""
    backends = build_backends()
    assert set(backends) == set(Distribution)
    assert all(backend.distribution is key for key, backend in backends.items())


class TestKind:
    """Kind: hosts.toml through exec or bind mounts."""

    def test_config_path_patch_added_once(self):
        """The containerd patch is idempotent."""
        config = default_kind_config()
        assert ensure_config_path_patch(config)
        assert not ensure_config_path_patch(config)
        assert config["containerdConfigPatches"] == [CONTAINERD_CONFIG_PATH_PATCH]

    def test_mount_mode(self, tmp_path, settings, notifier):
        """Mount mode writes hosts.toml and mounts it; nothing is left to inject."""
        settings = settings.model_copy(update={"kind_mirror_mode": "mount", "mirrors_dir": str(tmp_path)})
        kind_config = default_kind_config()
        ctx = _ctx(Distribution.KIND, settings, notifier, kind_config=kind_config)
        backend = KindBackend()

        assert backend.prepare_registry(ctx)
        assert (tmp_path / "ghcr.io" / "hosts.toml").is_file()
        (mount,) = kind_config["nodes"][0]["extraMounts"]
        assert mount["containerPath"] == "/etc/containerd/certs.d/ghcr.io"
        assert mount["readOnly"] is True
        assert mounted_hosts(kind_config) == {"ghcr.io"}
        assert not backend.prepare_post_connect(ctx)

    def test_mounted_hosts_requires_every_node(self):
        """A host counts as mounted only if each node mounts it."""
        config = {"nodes": [
            {"extraMounts": [{"containerPath": "/etc/containerd/certs.d/ghcr.io"}]},
            {},
        ]}
        assert mounted_hosts(config) == set()

    def test_inject_into_nodes(self, manager, docker_client, settings, notifier):
        """Inject mode writes one hosts.toml per mirror per node."""
        labels = {KIND_CLUSTER_LABEL: "dev"}
        cp = docker_client.add_container("dev-control-plane", image="kindest/node", labels=labels)
        worker = docker_client.add_container("dev-worker", image="kindest/node", labels=labels)
        other = docker_client.add_container("x-control-plane", image="kindest/node", labels={KIND_CLUSTER_LABEL: "x"})
        ctx = _ctx(Distribution.KIND, settings, notifier, hosts=("ghcr.io", "quay.io"))
        backend = KindBackend()

        assert backend.prepare_post_connect(ctx)
        backend.post_connect_action(ctx, manager)
        assert len(cp.exec_commands) == 2
        assert len(worker.exec_commands) == 2
        assert other.exec_commands == []
        script = cp.exec_commands[0][2]
        assert "/etc/containerd/certs.d/ghcr.io" in script
        assert 'server = "https://ghcr.io"' in script
        assert "configured 2 mirror(s) on 2 node(s)" in notifier.of("activity")

    def test_inject_without_nodes(self, manager, settings, notifier):
        """No nodes is an error."""
        with pytest.raises(NoClusterNodesError, match="no Kind nodes found for cluster 'dev'"):
            KindBackend().post_connect_action(_ctx(Distribution.KIND, settings, notifier), manager)


class TestK3d:
    """K3d: mirrors rendered into the SimpleConfig."""

    def test_prepare_renders_registries(self, settings, notifier):
        """Mirrors and the native local registry land in the config."""
        k3d_config = default_k3d_config("dev")
        ctx = _ctx(Distribution.K3D, settings, notifier, local_registry=True, k3d_config=k3d_config)
        backend = K3dBackend()

        assert backend.prepare_registry(ctx)
        assert backend.prepare_network(ctx)
        rendered = yaml.safe_load(k3d_config["registries"]["config"])
        assert list(rendered["mirrors"]) == ["ghcr.io", "local-registry:5000"]
        assert rendered["mirrors"]["ghcr.io"]["endpoint"] == ["http://dev-ghcr.io:5000", "https://ghcr.io"]
        assert k3d_config["registries"]["create"] == {
            "name": "local-registry", "host": "0.0.0.0", "hostPort": "5111",
        }
        assert k3d_config["network"] == "k3d-dev"

    def test_local_registry_is_not_a_container(self, manager, settings, notifier):
        """k3d creates the local registry itself."""
        ctx = _ctx(Distribution.K3D, settings, notifier, local_registry=True)
        names = [info.name for info in K3dBackend().registry_infos(ctx, manager)]
        assert names == ["dev-ghcr.io"]

    def test_nothing_to_do(self, settings, notifier):
        """Without mirrors every stage is skipped and the config is untouched."""
        k3d_config = default_k3d_config("dev")
        ctx = _ctx(Distribution.K3D, settings, notifier, hosts=(), k3d_config=k3d_config)
        backend = K3dBackend()
        assert not backend.prepare_registry(ctx)
        assert not backend.prepare_network(ctx)
        assert "registries" not in k3d_config

    def test_existing_endpoints_kept(self):
        """Extra endpoints of an existing entry follow the mirror and upstream."""
        existing = yaml.safe_dump({"mirrors": {"docker.io": {"endpoint": ["https://mirror.example"]}}})
        infos = build_registry_infos(specs_from_hosts(["docker.io"]), "dev")
        rendered = yaml.safe_load(render_registries_config(infos, existing))
        assert rendered["mirrors"]["docker.io"]["endpoint"] == [
            "http://dev-docker.io:5000",
            "https://registry-1.docker.io",
            "https://mirror.example",
        ]

    def test_extract_specs(self):
        """Specs are recovered with their upstream; the local registry is skipped."""
        infos = build_registry_infos([MirrorSpec("quay.io", "https://quay.example")], "dev")
        text = render_registries_config(infos, local_registry=True)
        assert extract_mirror_specs(text, "dev") == [MirrorSpec("quay.io", "https://quay.example")]


class TestTalos:
    """Talos: machine-config patches and static IPs."""

    def test_apply_mirrors(self, monkeypatch):
        """Each host points at its cluster mirror; other config is kept."""
        monkeypatch.setenv("GH_TOKEN", "tok")
        bundle = TalosConfigBundle.from_yaml("machine:\n  install:\n    disk: /dev/sda\n")
        specs = [MirrorSpec("ghcr.io", "https://ghcr.io", "bot", "${GH_TOKEN}")]

        assert bundle.apply_mirror_registries(specs, "dev")
        assert not bundle.apply_mirror_registries(specs, "dev")
        machine = bundle.documents[0]["machine"]
        assert machine["install"] == {"disk": "/dev/sda"}
        assert machine["registries"]["mirrors"]["ghcr.io"] == {"endpoints": ["http://dev-ghcr.io:5000"]}
        assert machine["registries"]["config"]["ghcr.io"]["auth"] == {"username": "bot", "password": "tok"}
        assert bundle.extract_mirror_hosts() == ["ghcr.io"]

    def test_empty_bundle_gets_a_document(self):
        """Applying to an empty bundle creates a patch document."""
        bundle = TalosConfigBundle()
        bundle.apply_mirror_registries(specs_from_hosts(["quay.io"]), "dev")
        assert yaml.safe_load(bundle.to_yaml())["machine"]["registries"]["mirrors"]["quay.io"]

    def test_prepare_uses_cidr(self, settings, notifier):
        """The Talos network uses the configured subnet."""
        bundle = TalosConfigBundle()
        ctx = _ctx(Distribution.TALOS, settings, notifier, talos_config=bundle)
        backend = TalosBackend()
        assert backend.prepare_registry(ctx)
        assert backend.network_cidr(ctx) == "10.5.0.0/24"
        assert bundle.extract_mirror_hosts() == ["ghcr.io"]


class TestVCluster:
    """VCluster: connect and inject after the cluster is up."""

    def test_pre_cluster_stages_skipped(self, settings, notifier):
        """Network and Connect are left to vcluster."""
        ctx = _ctx(Distribution.VCLUSTER, settings, notifier)
        backend = VClusterBackend()
        assert backend.prepare_registry(ctx)
        assert not backend.prepare_network(ctx)
        assert not backend.prepare_connect(ctx)
        assert backend.prepare_post_connect(ctx)

    def test_post_connect(self, manager, docker_client, settings, notifier):
        """Registries join vcluster.<name> and every node receives hosts.toml."""
        docker_client.add_network("vcluster.dev")
        docker_client.add_container("dev-ghcr.io")
        cp = docker_client.add_container("vcluster.cp.dev", image="vcluster")
        node = docker_client.add_container("vcluster.node.dev.worker-1", image="vcluster")
        other = docker_client.add_container("vcluster.cp.dev2", image="vcluster")

        VClusterBackend().post_connect_action(_ctx(Distribution.VCLUSTER, settings, notifier), manager)

        assert ("connect", "dev-ghcr.io", "vcluster.dev") in docker_client.calls
        assert len(cp.exec_commands) == 1
        assert len(node.exec_commands) == 1
        assert other.exec_commands == []
