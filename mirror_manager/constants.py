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

"""Constants, packaged defaults loading, and default_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_defaults() -> dict:
    """Load packaged defaults from defaults.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    defaults_file = Path(__file__).resolve().parent / "defaults.yaml"
    with open(defaults_file) as f:
        return yaml.safe_load(f)


DEFAULTS = load_defaults()


def default_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEFAULTS dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEFAULTS
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Registry containers --
REGISTRY_IMAGE = default_value("registry", "image", default="registry:3")
REGISTRY_CONTAINER_PORT = int(default_value("registry", "container_port", default=5000))
REGISTRY_PORT_KEY = f"{REGISTRY_CONTAINER_PORT}/tcp"
REGISTRY_HOST_IP = default_value("registry", "host_ip", default="127.0.0.1")
REGISTRY_DATA_PATH = default_value("registry", "data_path", default="/var/lib/registry")
REGISTRY_RESTART_POLICY = default_value("registry", "restart_policy", default="unless-stopped")
REGISTRY_PORT_BASE = 5000

LABEL_REGISTRY = "io.mirror-manager.registry"
LABEL_CLUSTER = "io.mirror-manager.cluster"
LABEL_NETWORK_CLUSTER = "io.mirror-manager.network.cluster"

ENV_PROXY_REMOTE_URL = "REGISTRY_PROXY_REMOTEURL"
ENV_PROXY_USERNAME = "REGISTRY_PROXY_USERNAME"
ENV_PROXY_PASSWORD = "REGISTRY_PROXY_PASSWORD"

LOCAL_REGISTRY_SUFFIX = "local-registry"
K3D_LOCAL_REGISTRY_NAME = "local-registry"
K3D_LOCAL_REGISTRY_HOST = f"local-registry:{REGISTRY_CONTAINER_PORT}"

# -- Readiness polling --
DEFAULT_READY_TIMEOUT_SECONDS = 30.0
DEFAULT_READY_POLL_INTERVAL_SECONDS = 0.5
DEFAULT_HTTP_TIMEOUT_SECONDS = 2.0
CONNECTION_REFUSED_CHECK_THRESHOLD = 5
READY_STATUS_CODES = (200, 401)

# -- Mirrors --
DEFAULT_MIRROR_HOSTS: list[str] = default_value("mirrors", "default_hosts", default=[])
DOCKER_PROVIDERS: list[str] = default_value("mirrors", "docker_providers", default=["Docker"])
KNOWN_UPSTREAMS: dict[str, str] = default_value("upstreams", default={})
DEFAULT_MIRRORS_DIR = "kind/mirrors"
HOSTS_TOML_FILENAME = "hosts.toml"
CONTAINERD_CERTS_DIR = "/etc/containerd/certs.d"

# -- Docker networks --
NETWORK_DRIVER = "bridge"
NETWORK_OPT_ENABLE_ICC = "com.docker.network.bridge.enable_icc"
NETWORK_OPT_ENABLE_IP_MASQUERADE = "com.docker.network.bridge.enable_ip_masquerade"
NETWORK_OPT_MTU = "com.docker.network.driver.mtu"
DEFAULT_NETWORK_MTU = 1500
DEFAULT_TALOS_NETWORK_CIDR = "10.5.0.0/24"
STATIC_IP_OFFSET_FROM_BROADCAST = 5
KIND_NETWORK_NAME = "kind"
TALOS_LABEL_OWNED = "talos.owned"
TALOS_LABEL_CLUSTER_NAME = "talos.cluster.name"

# -- Cluster nodes --
KIND_CLUSTER_LABEL = "io.x-k8s.kind.cluster"
VCLUSTER_CONTROL_PLANE_PREFIX = "vcluster.cp."
VCLUSTER_NODE_PREFIX = "vcluster.node."
VCLUSTER_NETWORK_PREFIX = "vcluster."

# -- Cluster provisioning --
DEFAULT_CLUSTER_NAME = "mirror-cluster"
DEFAULT_LOCAL_REGISTRY_PORT = 5111
DEFAULT_CLUSTER_CREATE_MAX_RETRIES = 1
CLUSTER_CREATE_RETRY_WAIT_SECONDS = 10
