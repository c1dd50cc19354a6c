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

"""K3d backend: mirrors rendered into the SimpleConfig ``registries`` block.

k3s reads the rendered ``registries.config`` at boot, so no post-boot
injection is needed. The local registry is created natively by k3d through
``registries.create``.
"""

from __future__ import annotations

from collections.abc import Sequence

import yaml

from mirror_manager.backends import Backend, StageContext
from mirror_manager.config import Distribution
from mirror_manager.constants import (
    K3D_LOCAL_REGISTRY_HOST,
    K3D_LOCAL_REGISTRY_NAME,
)
from mirror_manager.naming import (
    RegistryInfo,
    build_registry_infos,
    build_registry_name,
    extract_name_from_endpoint,
)
from mirror_manager.specs import MirrorSpec, generate_upstream_url


def default_k3d_config(cluster_name: str) -> dict:
    return {
        "apiVersion": "k3d.io/v1alpha5",
        "kind": "Simple",
        "metadata": {"name": cluster_name},
    }


def _existing_mirrors(config_text: str) -> dict:
    if not config_text or not config_text.strip():
        return {}
    loaded = yaml.safe_load(config_text) or {}
    mirrors = loaded.get("mirrors") if isinstance(loaded, dict) else None
    return dict(mirrors) if isinstance(mirrors, dict) else {}


def render_registries_config(
    infos: Sequence[RegistryInfo],
    existing: str = "",
    local_registry: bool = False,
) -> str:
    """Render the k3s ``mirrors:`` document.

    Each host lists its local mirror first and its upstream second; endpoints
    of existing entries are kept after those. Hosts are sorted.

    Args:
        infos: Mirror registries.
        existing: Previously rendered ``registries.config`` text.
        local_registry: Add an entry for the k3d-native local registry.

    Returns:
        YAML text, or an empty string when there is nothing to configure.
    """
    mirrors = _existing_mirrors(existing)
    for info in infos:
        previous = (mirrors.get(info.host) or {}).get("endpoint") or []
        endpoints = [info.endpoint, info.upstream]
        endpoints.extend(e for e in previous if e not in endpoints)
        mirrors[info.host] = {"endpoint": endpoints}
    if local_registry:
        mirrors[K3D_LOCAL_REGISTRY_HOST] = {"endpoint": [f"http://{K3D_LOCAL_REGISTRY_HOST}"]}
    if not mirrors:
        return ""
    ordered = {host: mirrors[host] for host in sorted(mirrors)}
    return yaml.safe_dump({"mirrors": ordered}, sort_keys=False)


def extract_mirror_specs(config_text: str, cluster_name: str) -> list[MirrorSpec]:
    """Recover mirror specs from a rendered ``registries.config``.

    The k3d-native local registry entry is not a mirror and is skipped.
    """
    specs: list[MirrorSpec] = []
    for host, entry in sorted(_existing_mirrors(config_text).items()):
        if host == K3D_LOCAL_REGISTRY_HOST:
            continue
        local_name = build_registry_name(cluster_name, host)
        endpoints = (entry or {}).get("endpoint") or []
        remotes = [e for e in endpoints if extract_name_from_endpoint(e) != local_name]
        specs.append(MirrorSpec(host=host, remote=remotes[0] if remotes else generate_upstream_url(host)))
    return specs


class K3dBackend(Backend):
    distribution = Distribution.K3D

    def uses_local_registry_container(self, ctx: StageContext) -> bool:
        return False

    def _specs(self, ctx: StageContext) -> Sequence[MirrorSpec]:
        config_text = ((ctx.k3d_config or {}).get("registries") or {}).get("config", "")
        if config_text:
            return extract_mirror_specs(config_text, ctx.cluster.name)
        return ctx.specs

    def mirror_infos(self, ctx: StageContext, used_ports: Sequence[int] = ()) -> list[RegistryInfo]:
        return build_registry_infos(self._specs(ctx), ctx.cluster.name, used_ports)

    def prepare_registry(self, ctx: StageContext) -> bool:
        if ctx.k3d_config is not None:
            registries = ctx.k3d_config.setdefault("registries", {})
            local = ctx.cluster.local_registry
            rendered = render_registries_config(
                build_registry_infos(ctx.specs, ctx.cluster.name),
                registries.get("config", ""),
                local_registry=local.enabled,
            )
            if rendered:
                registries["config"] = rendered
            if local.enabled:
                registries["create"] = {
                    "name": K3D_LOCAL_REGISTRY_NAME,
                    "host": "0.0.0.0",
                    "hostPort": str(local.port),
                }
            if not registries:
                del ctx.k3d_config["registries"]
        return bool(self.mirror_infos(ctx))

    def prepare_network(self, ctx: StageContext) -> bool:
        if not self.mirror_infos(ctx):
            return False
        if ctx.k3d_config is not None:
            ctx.k3d_config["network"] = self.network_name(ctx)
        return True

    def prepare_connect(self, ctx: StageContext) -> bool:
        return bool(self.mirror_infos(ctx))
