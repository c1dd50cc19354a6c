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

"""Distribution backends for the four mirror registry stages.

Each backend implements a ``prepare_*`` / ``*_action`` pair per stage.
``prepare_*`` never talks to Docker: it decides whether the stage has work to
do and may mutate the backend-native config in the stage context. Actions
receive a :class:`RegistryManager` bound to a live Docker client.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mirror_manager.config import ClusterConfig, Distribution, MirrorSettings
from mirror_manager.naming import (
    RegistryInfo,
    build_local_registry_info,
    build_registry_infos,
    registry_names,
)
from mirror_manager.network import (
    cluster_network_labels,
    cluster_network_name,
    ensure_network_exists,
)
from mirror_manager.notify import Notifier, NullNotifier
from mirror_manager.registry import RegistryManager
from mirror_manager.specs import MirrorSpec

if TYPE_CHECKING:
    from mirror_manager.backends.talos import TalosConfigBundle


@dataclass(frozen=True)
class StageContext:
    """Inputs of one stage run.

    Attributes:
        cluster: Cluster being provisioned.
        specs: Resolved mirror specs.
        settings: Tool settings.
        kind_config: Kind cluster config, mutated by Kind prepare steps.
        k3d_config: K3d SimpleConfig, mutated by K3d prepare steps.
        talos_config: Talos patch bundle, mutated by Talos prepare steps.
        notifier: Progress sink.
    """

    cluster: ClusterConfig
    specs: Sequence[MirrorSpec] = ()
    settings: MirrorSettings = field(default_factory=MirrorSettings)
    kind_config: dict | None = None
    k3d_config: dict | None = None
    talos_config: TalosConfigBundle | None = None
    notifier: Notifier = field(default_factory=NullNotifier)


class Backend(ABC):
    """Base backend: create mirrors, pre-create the network, connect, no post-boot step.

    Subclasses override the stages where their distribution differs.
    """

    distribution: Distribution

    # -- naming --

    def network_name(self, ctx: StageContext) -> str:
        return cluster_network_name(self.distribution, ctx.cluster.name)

    def network_cidr(self, ctx: StageContext) -> str | None:
        return None

    def uses_local_registry_container(self, ctx: StageContext) -> bool:
        return ctx.cluster.local_registry.enabled

    def mirror_infos(self, ctx: StageContext, used_ports: Sequence[int] = ()) -> list[RegistryInfo]:
        """Mirror registries of the cluster, named ``<cluster>-<host>``."""
        taken = set(used_ports)
        if self.uses_local_registry_container(ctx):
            taken.add(ctx.cluster.local_registry.port)
        return build_registry_infos(ctx.specs, ctx.cluster.name, taken)

    def registry_infos(self, ctx: StageContext, manager: RegistryManager) -> list[RegistryInfo]:
        """All registry containers this backend runs, local registry first."""
        infos = self.mirror_infos(ctx, sorted(manager.get_used_host_ports()))
        if self.uses_local_registry_container(ctx):
            infos.insert(0, build_local_registry_info(ctx.cluster.name, ctx.cluster.local_registry.port))
        return infos

    # -- Registry stage --

    def prepare_registry(self, ctx: StageContext) -> bool:
        return bool(ctx.specs) or self.uses_local_registry_container(ctx)

    def registry_action(self, ctx: StageContext, manager: RegistryManager) -> None:
        infos = self.registry_infos(ctx, manager)
        manager.setup_registries(infos, ctx.cluster.name, ctx.notifier)
        manager.wait_for_registries_ready({name: "" for name in registry_names(infos)})

    # -- Network stage --

    def prepare_network(self, ctx: StageContext) -> bool:
        return bool(ctx.specs) or self.uses_local_registry_container(ctx)

    def network_action(self, ctx: StageContext, manager: RegistryManager) -> None:
        ensure_network_exists(
            manager.docker_client,
            self.network_name(ctx),
            cidr=self.network_cidr(ctx),
            labels=cluster_network_labels(self.distribution, ctx.cluster.name),
            mtu=ctx.settings.network_mtu,
            notifier=ctx.notifier,
        )

    # -- Connect stage --

    def prepare_connect(self, ctx: StageContext) -> bool:
        return bool(ctx.specs) or self.uses_local_registry_container(ctx)

    def connect_action(self, ctx: StageContext, manager: RegistryManager) -> None:
        self.connect_registries(ctx, manager, self.network_name(ctx))

    def connect_registries(self, ctx: StageContext, manager: RegistryManager, network: str) -> dict[str, str]:
        """Wait for every registry, then attach the ready ones to *network*."""
        infos = self.registry_infos(ctx, manager)
        ready = manager.wait_for_registries_ready({name: "" for name in registry_names(infos)})
        return manager.connect_registries_to_network(
            ready, network, cidr=self.network_cidr(ctx), notifier=ctx.notifier
        )

    # -- PostClusterConnect stage --

    def prepare_post_connect(self, ctx: StageContext) -> bool:
        return False

    def post_connect_action(self, ctx: StageContext, manager: RegistryManager) -> None:
        return None


def build_backends() -> dict[Distribution, Backend]:
    """One backend per distribution, keyed by the distribution."""
    from mirror_manager.backends.k3d import K3dBackend
    from mirror_manager.backends.kind import KindBackend
    from mirror_manager.backends.talos import TalosBackend
    from mirror_manager.backends.vcluster import VClusterBackend

    backends: list[Backend] = [KindBackend(), K3dBackend(), TalosBackend(), VClusterBackend()]
    return {backend.distribution: backend for backend in backends}
