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

"""Cluster lifecycle through the distribution CLIs (kind, k3d, talosctl, vcluster)."""

from __future__ import annotations

from pathlib import Path

import sh
from tenacity import retry, stop_after_attempt, wait_fixed

from mirror_manager.backends.talos import TalosConfigBundle
from mirror_manager.config import ClusterConfig, Distribution, MirrorSettings
from mirror_manager.constants import CLUSTER_CREATE_RETRY_WAIT_SECONDS
from mirror_manager.notify import Notifier, NullNotifier
from mirror_manager.utils import PROVISIONER_COMMANDS, write_temp_yaml


def create_command_args(
    cluster: ClusterConfig,
    settings: MirrorSettings,
    config_path: Path | None = None,
) -> list[str]:
    """Arguments of the provisioner's create command.

    Args:
        cluster: Cluster to create.
        settings: Tool settings, for the Talos CIDR.
        config_path: Rendered native config (Kind/K3d config, Talos patch).
    """
    name = cluster.name
    if cluster.distribution is Distribution.KIND:
        args = ["create", "cluster", "--name", name]
        if config_path:
            args += ["--config", str(config_path)]
    elif cluster.distribution is Distribution.K3D:
        args = ["cluster", "create", name]
        if config_path:
            args += ["--config", str(config_path)]
    elif cluster.distribution is Distribution.TALOS:
        args = [
            "cluster", "create",
            "--name", name,
            "--provisioner", "docker",
            "--cidr", settings.talos_network_cidr,
        ]
        if config_path:
            args += ["--config-patch", f"@{config_path}"]
    else:
        args = ["create", name, "--driver", "docker", "--connect=false"]
    return args


def delete_command_args(cluster: ClusterConfig) -> list[str]:
    name = cluster.name
    if cluster.distribution is Distribution.KIND:
        return ["delete", "cluster", "--name", name]
    if cluster.distribution is Distribution.K3D:
        return ["cluster", "delete", name]
    if cluster.distribution is Distribution.TALOS:
        return ["cluster", "destroy", "--name", name, "--provisioner", "docker"]
    return ["delete", name, "--driver", "docker"]


def _render_native_config(
    cluster: ClusterConfig,
    kind_config: dict | None,
    k3d_config: dict | None,
    talos_config: TalosConfigBundle | None,
) -> Path | None:
    if cluster.distribution is Distribution.KIND and kind_config:
        return write_temp_yaml(kind_config, "kind-")
    if cluster.distribution is Distribution.K3D and k3d_config:
        return write_temp_yaml(k3d_config, "k3d-")
    if cluster.distribution is Distribution.TALOS and talos_config and talos_config.documents:
        return write_temp_yaml(talos_config.to_yaml(), "talos-patch-")
    return None


def create_cluster(
    cluster: ClusterConfig,
    settings: MirrorSettings,
    kind_config: dict | None = None,
    k3d_config: dict | None = None,
    talos_config: TalosConfigBundle | None = None,
    notifier: Notifier | None = None,
) -> None:
    """Create a cluster with retry logic.

    Args:
        cluster: Cluster to create.
        settings: Tool settings, including the retry count.
        kind_config: Kind config, already patched with mirror settings.
        k3d_config: K3d SimpleConfig, already patched with mirror settings.
        talos_config: Talos patch bundle, already patched with mirror settings.
        notifier: Progress sink.

    Raises:
        sh.ErrorReturnCode: If the cluster cannot be created after all retries.
    """
    notifier = notifier or NullNotifier()
    notifier.title(f"Creating {cluster.distribution.value} cluster")
    command = getattr(sh, PROVISIONER_COMMANDS[cluster.distribution])
    config_path = _render_native_config(cluster, kind_config, k3d_config, talos_config)

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_fixed(CLUSTER_CREATE_RETRY_WAIT_SECONDS),
        reraise=True,
    )
    def _attempt() -> None:
        command(*create_command_args(cluster, settings, config_path))

    try:
        _attempt()
    finally:
        if config_path is not None:
            config_path.unlink(missing_ok=True)
    notifier.success(f"Cluster '{cluster.name}' created")


def delete_cluster(cluster: ClusterConfig, notifier: Notifier | None = None) -> None:
    """Delete a cluster; a missing cluster is reported as a warning."""
    notifier = notifier or NullNotifier()
    notifier.activity(f"Deleting {cluster.distribution.value} cluster '{cluster.name}'...")
    command = getattr(sh, PROVISIONER_COMMANDS[cluster.distribution])
    try:
        command(*delete_command_args(cluster))
        notifier.success(f"Cluster '{cluster.name}' deleted")
    except sh.ErrorReturnCode_1:
        notifier.warning(f"Cluster '{cluster.name}' not found or already deleted")
