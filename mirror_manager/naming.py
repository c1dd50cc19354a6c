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

"""Registry container naming, port allocation, and RegistryInfo building."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from mirror_manager.constants import (
    LOCAL_REGISTRY_SUFFIX,
    REGISTRY_CONTAINER_PORT,
    REGISTRY_PORT_BASE,
)
from mirror_manager.specs import MirrorSpec, generate_upstream_url

_ILLEGAL_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
_REPEATED_DASHES = re.compile(r"-{2,}")


@dataclass(frozen=True)
class RegistryInfo:
    """Concrete identity of one registry container.

    Attributes:
        name: Container name.
        host: Registry host being mirrored, empty for a local registry.
        port: Host port the container is published on.
        upstream: Upstream URL, empty for a local (non-proxy) registry.
        volume: Named volume holding the registry data.
        spec: Source spec, used to resolve credentials at creation time.
    """

    name: str
    host: str
    port: int
    upstream: str
    volume: str
    spec: MirrorSpec | None = None

    @property
    def endpoint(self) -> str:
        return registry_endpoint(self.name)

    @property
    def is_mirror(self) -> bool:
        return bool(self.upstream)


def sanitize_host(host: str) -> str:
    """Turn a registry host into a legal Docker container / DNS name fragment.

    Args:
        host: Registry host, possibly with a port or path (``localhost:5000/x``).

    Returns:
        The host with illegal characters replaced by ``-`` and runs of ``-`` collapsed.
    """
    sanitized = _ILLEGAL_NAME_CHARS.sub("-", host.strip())
    sanitized = _REPEATED_DASHES.sub("-", sanitized)
    return sanitized.strip("-.")


def build_registry_name(prefix: str, host: str) -> str:
    """Join a cluster prefix and a sanitized host into a container name."""
    sanitized = sanitize_host(host)
    trimmed = prefix.strip().rstrip("-")
    if not trimmed:
        return sanitized
    return _REPEATED_DASHES.sub("-", f"{trimmed}-{sanitized}")


def local_registry_name(cluster_name: str) -> str:
    return build_registry_name(cluster_name, LOCAL_REGISTRY_SUFFIX)


def registry_endpoint(name: str) -> str:
    """In-network URL of a registry container."""
    return f"http://{name}:{REGISTRY_CONTAINER_PORT}"


def extract_name_from_endpoint(endpoint: str) -> str:
    """Return the hostname part of ``scheme://host:port`` or empty."""
    _, sep, rest = endpoint.partition("//")
    if not sep:
        return ""
    return rest.split("/", 1)[0].split(":", 1)[0]


def allocate_port(used_ports: set[int], base: int = REGISTRY_PORT_BASE) -> int:
    """Pick the lowest port >= *base* not in *used_ports* and reserve it.

    Args:
        used_ports: Ports already taken; the chosen port is added to it.
        base: Lowest acceptable port.

    Returns:
        The allocated port.
    """
    port = base
    while port in used_ports:
        port += 1
    used_ports.add(port)
    return port


def build_registry_infos(
    specs: Sequence[MirrorSpec],
    prefix: str,
    used_ports: Iterable[int] = (),
) -> list[RegistryInfo]:
    """Build RegistryInfo objects for mirror specs.

    The result depends only on the arguments, so identical inputs always give
    identical names and ports.

    Args:
        specs: Resolved mirror specs.
        prefix: Name prefix, usually the cluster name; empty for bare host names.
        used_ports: Snapshot of host ports already in use.

    Returns:
        One RegistryInfo per spec with a non-empty sanitized host.
    """
    taken = set(used_ports)
    infos: list[RegistryInfo] = []
    for spec in specs:
        host = spec.host.strip()
        volume = sanitize_host(host)
        if not volume:
            continue
        infos.append(RegistryInfo(
            name=build_registry_name(prefix, host),
            host=host,
            port=allocate_port(taken),
            upstream=spec.remote or generate_upstream_url(host),
            volume=volume,
            spec=spec,
        ))
    return infos


def build_local_registry_info(cluster_name: str, port: int) -> RegistryInfo:
    """RegistryInfo for a cluster's local (non-proxy) registry."""
    name = local_registry_name(cluster_name)
    return RegistryInfo(name=name, host="", port=port, upstream="", volume=name)


def registry_names(infos: Iterable[RegistryInfo]) -> list[str]:
    return [info.name for info in infos if info.name]
