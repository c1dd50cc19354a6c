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

"""Kind backend: shared ``kind`` network, hosts.toml via exec or bind mounts."""

from __future__ import annotations

from pathlib import Path

from mirror_manager.backends import Backend, StageContext
from mirror_manager.config import Distribution
from mirror_manager.constants import CONTAINERD_CERTS_DIR
from mirror_manager.containerd import inject_into_nodes, list_kind_nodes
from mirror_manager.hosts_toml import HostsDirectory
from mirror_manager.registry import RegistryManager

KIND_MODE_INJECT = "inject"
KIND_MODE_MOUNT = "mount"

CONTAINERD_CONFIG_PATH_PATCH = (
    '[plugins."io.containerd.grpc.v1.cri".registry]\n'
    f'  config_path = "{CONTAINERD_CERTS_DIR}"'
)


def default_kind_config() -> dict:
    return {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "nodes": [{"role": "control-plane"}],
    }


def ensure_config_path_patch(kind_config: dict) -> bool:
    """Point containerd at the certs.d directory. Returns True if the config changed."""
    patches = kind_config.setdefault("containerdConfigPatches", [])
    if any("config_path" in patch for patch in patches):
        return False
    patches.append(CONTAINERD_CONFIG_PATH_PATCH)
    return True


def add_mirror_mounts(kind_config: dict, mirrors_dir: Path, hosts: list[str]) -> list[str]:
    """Add read-only certs.d mounts for *hosts* to every node.

    Returns:
        Hosts for which at least one mount was added.
    """
    nodes = kind_config.setdefault("nodes", [{"role": "control-plane"}])
    added: set[str] = set()
    for node in nodes:
        mounts = node.setdefault("extraMounts", [])
        present = {mount.get("containerPath") for mount in mounts}
        for host in hosts:
            container_path = f"{CONTAINERD_CERTS_DIR}/{host}"
            if container_path in present:
                continue
            mounts.append({
                "hostPath": str((mirrors_dir / host).resolve()),
                "containerPath": container_path,
                "readOnly": True,
            })
            added.add(host)
    return sorted(added)


def mounted_hosts(kind_config: dict | None) -> set[str]:
    """Hosts whose certs.d directory is bind-mounted into every node."""
    if not kind_config:
        return set()
    nodes = kind_config.get("nodes") or []
    if not nodes:
        return set()
    prefix = f"{CONTAINERD_CERTS_DIR}/"
    per_node = [
        {
            mount["containerPath"][len(prefix):]
            for mount in node.get("extraMounts") or []
            if str(mount.get("containerPath", "")).startswith(prefix)
        }
        for node in nodes
    ]
    return set.intersection(*per_node)


class KindBackend(Backend):
    distribution = Distribution.KIND

    def prepare_registry(self, ctx: StageContext) -> bool:
        if not super().prepare_registry(ctx):
            return False
        if ctx.kind_config is None:
            return True
        ensure_config_path_patch(ctx.kind_config)
        if ctx.settings.kind_mirror_mode == KIND_MODE_MOUNT and ctx.specs:
            mirrors_dir = Path(ctx.settings.mirrors_dir)
            infos = self.mirror_infos(ctx)
            HostsDirectory(mirrors_dir).write_all(infos)
            add_mirror_mounts(ctx.kind_config, mirrors_dir, [info.host for info in infos])
        return True

    def _hosts_to_inject(self, ctx: StageContext) -> list:
        skip = mounted_hosts(ctx.kind_config)
        return [info for info in self.mirror_infos(ctx) if info.host not in skip]

    def prepare_post_connect(self, ctx: StageContext) -> bool:
        return bool(ctx.specs) and bool(self._hosts_to_inject(ctx))

    def post_connect_action(self, ctx: StageContext, manager: RegistryManager) -> None:
        nodes = list_kind_nodes(manager.docker_client, ctx.cluster.name)
        infos = self._hosts_to_inject(ctx)
        inject_into_nodes(nodes, infos, self.distribution.value, ctx.cluster.name)
        ctx.notifier.activity(f"configured {len(infos)} mirror(s) on {len(nodes)} node(s)")
