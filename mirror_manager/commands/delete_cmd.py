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

"""Delete subcommands (cluster, mirrors)."""

from __future__ import annotations

import typer

from mirror_manager.commands.options import (
    ClusterNameOption,
    DistributionOption,
    ProviderOption,
    build_settings,
)
from mirror_manager.config import Distribution, Provider
from mirror_manager.orchestrator import run_delete_workflow, run_mirror_cleanup

app = typer.Typer(help="Delete clusters and mirror registries.")

DeleteVolumesOption = typer.Option(False, "--delete-volumes", help="Also remove registry cache volumes")


@app.command("cluster")
def cluster(
    distribution: Distribution | None = DistributionOption,
    provider: Provider | None = ProviderOption,
    cluster_name: str | None = ClusterNameOption,
    delete_volumes: bool = DeleteVolumesOption,
) -> None:
    """Delete the cluster and clean up its registries."""
    settings = build_settings(distribution, provider, cluster_name)
    run_delete_workflow(settings, delete_volumes=delete_volumes)


@app.command("mirrors")
def mirrors(
    distribution: Distribution | None = DistributionOption,
    provider: Provider | None = ProviderOption,
    cluster_name: str | None = ClusterNameOption,
    delete_volumes: bool = DeleteVolumesOption,
) -> None:
    """Delete the cluster's registries, leaving the cluster alone."""
    settings = build_settings(distribution, provider, cluster_name)
    run_mirror_cleanup(settings, delete_volumes=delete_volumes)
