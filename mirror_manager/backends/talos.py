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

"""Talos backend: mirrors patched into machine config, static registry IPs."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

import yaml

from mirror_manager.backends import Backend, StageContext
from mirror_manager.config import Distribution
from mirror_manager.naming import build_registry_name, registry_endpoint
from mirror_manager.specs import MirrorSpec


class TalosConfigBundle:
    """Machine-config patch documents applied to every Talos node.

    Args:
        documents: Parsed YAML patch documents.
    """

    def __init__(self, documents: Iterable[dict] | None = None) -> None:
        self.documents: list[dict] = [doc for doc in (documents or []) if isinstance(doc, dict)]

    @classmethod
    def from_yaml(cls, text: str) -> TalosConfigBundle:
        return cls(yaml.safe_load_all(text))

    @classmethod
    def load(cls, path: str | Path) -> TalosConfigBundle:
        with open(path) as f:
            return cls.from_yaml(f.read())

    def to_yaml(self) -> str:
        return yaml.safe_dump_all(self.documents, sort_keys=False)

    def _registries(self, document: dict) -> dict:
        machine = document.setdefault("machine", {})
        return machine.setdefault("registries", {})

    def extract_mirror_hosts(self) -> list[str]:
        """Mirror hosts declared in any document, sorted."""
        hosts: set[str] = set()
        for document in self.documents:
            mirrors = ((document.get("machine") or {}).get("registries") or {}).get("mirrors") or {}
            hosts.update(str(host) for host in mirrors)
        return sorted(hosts)

    def apply_mirror_registries(self, specs: Sequence[MirrorSpec], cluster_name: str) -> bool:
        """Point each spec's host at its cluster mirror in every document.

        Existing mirror entries for other hosts are kept. Credentials are
        resolved from the environment here, at the point of use.

        Returns:
            True if any document changed.
        """
        if not specs:
            return False
        if not self.documents:
            self.documents.append({})

        changed = False
        for document in self.documents:
            registries = self._registries(document)
            mirrors = registries.setdefault("mirrors", {})
            for spec in specs:
                endpoint = registry_endpoint(build_registry_name(cluster_name, spec.host))
                entry = {"endpoints": [endpoint]}
                if mirrors.get(spec.host) != entry:
                    mirrors[spec.host] = entry
                    changed = True
                username, password = spec.resolve_credentials()
                if username or password:
                    auth = {"username": username, "password": password}
                    config = registries.setdefault("config", {})
                    host_config = config.setdefault(spec.host, {})
                    if host_config.get("auth") != auth:
                        host_config["auth"] = auth
                        changed = True
        return changed


class TalosBackend(Backend):
    distribution = Distribution.TALOS

    def network_cidr(self, ctx: StageContext) -> str | None:
        return ctx.settings.talos_network_cidr

    def prepare_registry(self, ctx: StageContext) -> bool:
        if ctx.talos_config is not None:
            ctx.talos_config.apply_mirror_registries(ctx.specs, ctx.cluster.name)
        return super().prepare_registry(ctx)
