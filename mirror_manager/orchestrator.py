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

"""Orchestration functions that compose domain modules into workflows."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import docker

from mirror_manager.backends import StageContext
from mirror_manager.backends.k3d import default_k3d_config
from mirror_manager.backends.kind import default_kind_config
from mirror_manager.backends.talos import TalosConfigBundle
from mirror_manager.cleanup import (
    DiscoveredRegistries,
    cleanup_registries,
    disconnect_before_deletion,
    discover_registries,
    needs_pre_discovery,
)
from mirror_manager.cluster import create_cluster, delete_cluster
from mirror_manager.config import ClusterConfig, Distribution, MirrorSettings
from mirror_manager.errors import MirrorRegistryError, RegistryCleanupError
from mirror_manager.health import RegistryHealthChecker
from mirror_manager.hosts_toml import HostsDirectory
from mirror_manager.notify import ConsoleNotifier, Notifier
from mirror_manager.pipeline import (
    PRE_CLUSTER_ROLES,
    DockerInvoker,
    Role,
    StageOrchestrator,
    docker_client_invoker,
)
from mirror_manager.registry import DeletionResult, RegistryManager, RegistryManagerFactory
from mirror_manager.specs import MirrorSpec, resolve_mirror_specs
from mirror_manager.utils import load_yaml_file, require_command, required_commands

# ============================================================================
# Internal helpers
# ============================================================================


@dataclass
class NativeConfigs:
    """Backend-native configs loaded for one invocation."""

    kind: dict | None = None
    k3d: dict | None = None
    talos: TalosConfigBundle | None = None


def make_manager_factory(
    settings: MirrorSettings,
    cancel: threading.Event | None = None,
) -> RegistryManagerFactory:
    """Factory building a RegistryManager configured from *settings*."""

    def _factory(docker_client: docker.DockerClient) -> RegistryManager:
        checker = RegistryHealthChecker(
            timeout=settings.ready_timeout,
            interval=settings.poll_interval,
            http_timeout=settings.http_timeout,
            cancel=cancel,
        )
        return RegistryManager(docker_client, checker, image=settings.registry_image)

    return _factory


@contextmanager
def deadline(timeout: float | None) -> Iterator[threading.Event]:
    """Yield an event that is set once *timeout* seconds have elapsed."""
    cancel = threading.Event()
    timer = None
    if timeout:
        timer = threading.Timer(timeout, cancel.set)
        timer.daemon = True
        timer.start()
    try:
        yield cancel
    finally:
        if timer is not None:
            timer.cancel()


def _check_prerequisites(distribution: Distribution, provision: bool, notifier: Notifier) -> None:
    notifier.title("Checking prerequisites")
    for cmd in required_commands(distribution, provision):
        require_command(cmd)
    notifier.success("All required tools are available")


def load_native_configs(
    cluster: ClusterConfig,
    kind_config_path: Path | None = None,
    k3d_config_path: Path | None = None,
    talos_patch_path: Path | None = None,
) -> NativeConfigs:
    """Load the native config of the cluster's distribution, or a default one."""
    if cluster.distribution is Distribution.KIND:
        return NativeConfigs(kind=load_yaml_file(kind_config_path) or default_kind_config())
    if cluster.distribution is Distribution.K3D:
        return NativeConfigs(k3d=load_yaml_file(k3d_config_path) or default_k3d_config(cluster.name))
    if cluster.distribution is Distribution.TALOS:
        talos = TalosConfigBundle.load(talos_patch_path) if talos_patch_path else TalosConfigBundle()
        return NativeConfigs(talos=talos)
    return NativeConfigs()


def resolve_cluster_mirrors(
    settings: MirrorSettings,
    cluster: ClusterConfig,
    mirror_flag: Sequence[str] | None,
    native: NativeConfigs,
) -> list[MirrorSpec]:
    """Resolve mirror specs from the flag, persisted config, and provider defaults.

    Raises:
        HostsConfigReadError: If a persisted hosts.toml cannot be parsed.
        InvalidMirrorSpecError: If a flag entry is malformed.
    """
    existing: list[MirrorSpec] = []
    if cluster.distribution is Distribution.KIND:
        existing = HostsDirectory(settings.mirrors_dir).read_existing()
    talos_hosts = native.talos.extract_mirror_hosts() if native.talos is not None else []
    return resolve_mirror_specs(mirror_flag, existing, talos_hosts, cluster.provider)


# ============================================================================
# Public API
# ============================================================================


def run_create_workflow(
    settings: MirrorSettings,
    *,
    mirror_flag: Sequence[str] | None = None,
    kind_config_path: Path | None = None,
    k3d_config_path: Path | None = None,
    talos_patch_path: Path | None = None,
    provision: bool = True,
    timeout: float | None = None,
    notifier: Notifier | None = None,
    docker_invoker: DockerInvoker | None = None,
) -> list[MirrorSpec]:
    """Create mirror registries and, when *provision* is set, the cluster.

    Runs Registry, Network and Connect; then creates the cluster and runs
    PostClusterConnect. All stages share one frozen StageContext, and the
    native configs it references are mutated in place by the prepare steps.

    Args:
        settings: Tool settings.
        mirror_flag: Raw ``--mirror-registry`` values, or None if not given.
        kind_config_path: Kind cluster config to patch.
        k3d_config_path: K3d SimpleConfig to patch.
        talos_patch_path: Talos machine-config patch to extend.
        provision: Create the cluster after the pre-cluster stages.
        timeout: Overall deadline for readiness polling, in seconds.
        notifier: Progress sink; console output when None.
        docker_invoker: Supplies Docker clients to stage actions.

    Returns:
        The resolved mirror specs.

    Raises:
        StageError: If a stage fails.
    """
    notifier = notifier or ConsoleNotifier()
    cluster = ClusterConfig.from_settings(settings)
    _check_prerequisites(cluster.distribution, provision, notifier)

    native = load_native_configs(cluster, kind_config_path, k3d_config_path, talos_patch_path)
    specs = resolve_cluster_mirrors(settings, cluster, mirror_flag, native)
    if specs:
        notifier.activity("mirrors: " + ", ".join(spec.display() for spec in specs))
    else:
        notifier.activity("no mirror registries configured")

    with deadline(timeout) as cancel:
        orchestrator = StageOrchestrator(
            manager_factory=make_manager_factory(settings, cancel),
            docker_invoker=docker_invoker or docker_client_invoker(int(timeout) if timeout else None),
        )
        ctx = StageContext(
            cluster=cluster,
            specs=tuple(specs),
            settings=settings,
            kind_config=native.kind,
            k3d_config=native.k3d,
            talos_config=native.talos,
            notifier=notifier,
        )
        orchestrator.run_stages(PRE_CLUSTER_ROLES, ctx)
        if provision:
            create_cluster(cluster, settings, native.kind, native.k3d, native.talos, notifier)
            orchestrator.run_stage(Role.POST_CLUSTER_CONNECT, ctx)
    return specs


def run_delete_workflow(
    settings: MirrorSettings,
    *,
    delete_volumes: bool = False,
    notifier: Notifier | None = None,
    docker_invoker: DockerInvoker | None = None,
) -> DeletionResult | None:
    """Delete the cluster, then its registries on a best-effort basis.

    For distributions whose network dies with the cluster, registries are
    captured and disconnected first. Registry cleanup problems are reported
    as warnings and never raised.

    Returns:
        The cleanup outcome, or None if cleanup could not run.
    """
    notifier = notifier or ConsoleNotifier()
    cluster = ClusterConfig.from_settings(settings)
    _check_prerequisites(cluster.distribution, True, notifier)
    invoke = docker_invoker or docker_client_invoker()
    factory = make_manager_factory(settings)

    discovered: DiscoveredRegistries | None = None
    if needs_pre_discovery(cluster.distribution):

        def _pre_discover(docker_client: docker.DockerClient) -> None:
            nonlocal discovered
            manager = factory(docker_client)
            discovered = discover_registries(manager, cluster)
            disconnect_before_deletion(manager, discovered, notifier)

        try:
            invoke(_pre_discover)
        except (MirrorRegistryError, docker.errors.DockerException) as err:
            notifier.warning(f"registry discovery before deletion failed: {err}")

    delete_cluster(cluster, notifier)

    results: list[DeletionResult] = []
    try:
        invoke(lambda docker_client: results.append(
            cleanup_registries(factory(docker_client), cluster, delete_volumes, discovered, notifier)
        ))
    except (MirrorRegistryError, docker.errors.DockerException) as err:
        notifier.warning(f"registry cleanup failed: {err}")
    return results[0] if results else None


def run_mirror_cleanup(
    settings: MirrorSettings,
    *,
    delete_volumes: bool = False,
    notifier: Notifier | None = None,
    docker_invoker: DockerInvoker | None = None,
) -> DeletionResult:
    """Delete a cluster's registries without touching the cluster.

    Raises:
        RegistryCleanupError: If any registry could not be deleted.
    """
    notifier = notifier or ConsoleNotifier()
    cluster = ClusterConfig.from_settings(settings)
    _check_prerequisites(cluster.distribution, False, notifier)
    invoke = docker_invoker or docker_client_invoker()
    factory = make_manager_factory(settings)
    results: list[DeletionResult] = []
    invoke(lambda docker_client: results.append(
        cleanup_registries(factory(docker_client), cluster, delete_volumes, notifier=notifier)
    ))
    result = results[0]
    if result.failures:
        raise RegistryCleanupError(result.failures)
    return result
