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

"""Shared CLI options and settings overrides."""

from __future__ import annotations

import typer

from mirror_manager.config import Distribution, MirrorSettings, Provider

DistributionOption = typer.Option(None, "--distribution", help="Kind, K3d, Talos or VCluster")
ProviderOption = typer.Option(None, "--provider", help="Node provider")
ClusterNameOption = typer.Option(None, "--cluster-name", help="Cluster name")
LocalRegistryOption = typer.Option(
    None, "--local-registry/--no-local-registry", help="Run a local (non-proxy) registry"
)
LocalRegistryPortOption = typer.Option(None, "--local-registry-port", help="Local registry host port")


def build_settings(
    distribution: Distribution | None = None,
    provider: Provider | None = None,
    cluster_name: str | None = None,
    local_registry: bool | None = None,
    local_registry_port: int | None = None,
) -> MirrorSettings:
    """Settings from MIRROR_* env vars with CLI overrides applied."""
    settings = MirrorSettings()
    overrides: dict = {}
    if distribution is not None:
        overrides["distribution"] = distribution
    if provider is not None:
        overrides["provider"] = provider
    if cluster_name is not None:
        overrides["cluster_name"] = cluster_name
    if local_registry is not None:
        overrides["local_registry"] = local_registry
    if local_registry_port is not None:
        overrides["local_registry_port"] = local_registry_port
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def mirror_flag_value(mirror_registry: list[str] | None, no_mirrors: bool) -> list[str] | None:
    """Raw mirror flag: None when not given, empty when mirrors are disabled."""
    if no_mirrors:
        return []
    if not mirror_registry:
        return None
    return list(mirror_registry)
