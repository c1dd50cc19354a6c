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

"""VCluster backend.

VCluster creates its own ``vcluster.<cluster>`` network while provisioning, so
the Network and Connect stages are skipped. Once the cluster is up, the
post-connect stage attaches the ready registries and writes hosts.toml into
the control-plane and worker containers.
"""

from __future__ import annotations

from mirror_manager.backends import Backend, StageContext
from mirror_manager.config import Distribution
from mirror_manager.containerd import inject_into_nodes, list_vcluster_nodes
from mirror_manager.registry import RegistryManager


class VClusterBackend(Backend):
    distribution = Distribution.VCLUSTER

    def prepare_network(self, ctx: StageContext) -> bool:
        return False

    def prepare_connect(self, ctx: StageContext) -> bool:
        return False

    def prepare_post_connect(self, ctx: StageContext) -> bool:
        return bool(ctx.specs) or self.uses_local_registry_container(ctx)

    def post_connect_action(self, ctx: StageContext, manager: RegistryManager) -> None:
        network = self.network_name(ctx)
        self.connect_registries(ctx, manager, network)
        infos = self.mirror_infos(ctx)
        if not infos:
            return
        nodes = list_vcluster_nodes(manager.docker_client, ctx.cluster.name)
        inject_into_nodes(nodes, infos, self.distribution.value, ctx.cluster.name)
        ctx.notifier.activity(f"configured {len(infos)} mirror(s) on {len(nodes)} node(s)")
