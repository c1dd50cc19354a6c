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

"""Write containerd hosts.toml files into running cluster node containers."""

from __future__ import annotations

import secrets
from collections.abc import Iterable, Sequence

import docker

from mirror_manager import logger
from mirror_manager.constants import (
    CONTAINERD_CERTS_DIR,
    HOSTS_TOML_FILENAME,
    KIND_CLUSTER_LABEL,
    VCLUSTER_CONTROL_PLANE_PREFIX,
    VCLUSTER_NODE_PREFIX,
)
from mirror_manager.errors import ExecFailedError, NoClusterNodesError
from mirror_manager.hosts_toml import hosts_toml_for
from mirror_manager.naming import RegistryInfo


def escape_shell_arg(value: str) -> str:
    """Quote *value* for a POSIX shell using single quotes."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


def build_write_command(host: str, content: str) -> list[str]:
    """Build the ``sh -c`` command that writes a hosts.toml for *host*.

    The heredoc delimiter is random so file content can never terminate it.
    """
    directory = f"{CONTAINERD_CERTS_DIR}/{host}"
    delimiter = f"EOF_{secrets.token_hex(8)}"
    script = (
        f"mkdir -p {escape_shell_arg(directory)} && "
        f"cat > {escape_shell_arg(directory + '/' + HOSTS_TOML_FILENAME)} << '{delimiter}'\n"
        f"{content}"
        f"{delimiter}\n"
    )
    return ["sh", "-c", script]


def inject_hosts_toml(container, info: RegistryInfo) -> None:
    """Write the hosts.toml for one registry into one node container.

    Raises:
        ExecFailedError: If the command exits non-zero.
    """
    result = container.exec_run(build_write_command(info.host, hosts_toml_for(info)))
    if result.exit_code != 0:
        output = result.output.decode(errors="replace") if isinstance(result.output, bytes) else str(result.output)
        raise ExecFailedError(container.name, result.exit_code, output)
    logger.debug("configured mirror %s in node %s", info.host, container.name)


def list_kind_nodes(docker_client: docker.DockerClient, cluster_name: str) -> list:
    """Running Kind node containers of a cluster, sorted by name."""
    containers = docker_client.containers.list(filters={"label": f"{KIND_CLUSTER_LABEL}={cluster_name}"})
    return sorted(containers, key=lambda c: c.name)


def list_vcluster_nodes(docker_client: docker.DockerClient, cluster_name: str) -> list:
    """Running VCluster control-plane and worker containers of a cluster."""
    control_plane = f"{VCLUSTER_CONTROL_PLANE_PREFIX}{cluster_name}"
    worker_prefix = f"{VCLUSTER_NODE_PREFIX}{cluster_name}."
    nodes = [
        c for c in docker_client.containers.list(filters={"name": cluster_name})
        if c.name == control_plane or c.name.startswith(worker_prefix)
    ]
    return sorted(nodes, key=lambda c: c.name)


def inject_into_nodes(
    nodes: Sequence,
    infos: Iterable[RegistryInfo],
    distribution: str,
    cluster_name: str,
) -> int:
    """Write hosts.toml for every mirror into every node.

    Returns:
        Number of files written.

    Raises:
        NoClusterNodesError: If *nodes* is empty.
        ExecFailedError: If a write fails.
    """
    if not nodes:
        raise NoClusterNodesError(distribution, cluster_name)
    mirrors = [info for info in infos if info.host]
    written = 0
    for node in nodes:
        for info in mirrors:
            inject_hosts_toml(node, info)
            written += 1
    return written
