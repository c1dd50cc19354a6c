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

"""Create subcommands (cluster, mirrors)."""

from __future__ import annotations

from pathlib import Path

import typer

from mirror_manager.commands.options import (
    ClusterNameOption,
    DistributionOption,
    LocalRegistryOption,
    LocalRegistryPortOption,
    ProviderOption,
    build_settings,
    mirror_flag_value,
)
from mirror_manager.config import Distribution, Provider
from mirror_manager.orchestrator import run_create_workflow

app = typer.Typer(help="Create clusters and mirror registries.")

MirrorRegistryOption = typer.Option(
    None,
    "--mirror-registry",
    help="Mirror spec [user[:password]@]host[=upstream]; repeatable, replaces configured mirrors",
)
NoMirrorsOption = typer.Option(False, "--no-mirrors", help="Disable mirror registries")
TimeoutOption = typer.Option(None, "--timeout", help="Overall deadline in seconds")


@app.command("cluster")
def cluster(
    distribution: Distribution | None = DistributionOption,
    provider: Provider | None = ProviderOption,
    cluster_name: str | None = ClusterNameOption,
    mirror_registry: list[str] | None = MirrorRegistryOption,
    no_mirrors: bool = NoMirrorsOption,
    kind_config: Path | None = typer.Option(None, "--kind-config", help="Kind cluster config"),
    k3d_config: Path | None = typer.Option(None, "--k3d-config", help="K3d SimpleConfig"),
    talos_patch: Path | None = typer.Option(None, "--talos-patch", help="Talos machine-config patch"),
    local_registry: bool | None = LocalRegistryOption,
    local_registry_port: int | None = LocalRegistryPortOption,
    timeout: float | None = TimeoutOption,
) -> None:
    """Create mirror registries, then the cluster, then configure mirrors in its nodes."""
    settings = build_settings(distribution, provider, cluster_name, local_registry, local_registry_port)
    run_create_workflow(
        settings,
        mirror_flag=mirror_flag_value(mirror_registry, no_mirrors),
        kind_config_path=kind_config,
        k3d_config_path=k3d_config,
        talos_patch_path=talos_patch,
        timeout=timeout,
    )


@app.command("mirrors")
def mirrors(
    distribution: Distribution | None = DistributionOption,
    provider: Provider | None = ProviderOption,
    cluster_name: str | None = ClusterNameOption,
    mirror_registry: list[str] | None = MirrorRegistryOption,
    no_mirrors: bool = NoMirrorsOption,
    local_registry: bool | None = LocalRegistryOption,
    local_registry_port: int | None = LocalRegistryPortOption,
    timeout: float | None = TimeoutOption,
) -> None:
    """Create mirror registries and the cluster network without creating a cluster."""
    settings = build_settings(distribution, provider, cluster_name, local_registry, local_registry_port)
    run_create_workflow(
        settings,
        mirror_flag=mirror_flag_value(mirror_registry, no_mirrors),
        provision=False,
        timeout=timeout,
    )
