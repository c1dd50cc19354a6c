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

"""containerd hosts.toml rendering and the on-disk mirrors directory."""

from __future__ import annotations

import shutil
import tomllib
from collections.abc import Iterable
from pathlib import Path

from mirror_manager import logger
from mirror_manager.constants import HOSTS_TOML_FILENAME
from mirror_manager.errors import HostsConfigReadError
from mirror_manager.naming import RegistryInfo
from mirror_manager.specs import MirrorSpec, generate_upstream_url


def render_hosts_toml(host: str, upstream: str, endpoint: str) -> str:
    """Render a containerd hosts.toml routing *host* through *endpoint*.

    Args:
        host: Registry host the file configures.
        upstream: Server URL containerd falls back to.
        endpoint: Mirror endpoint tried first.

    Returns:
        TOML document text.
    """
    server = upstream or generate_upstream_url(host)
    return (
        f'server = "{server}"\n'
        "\n"
        f'[host."{endpoint}"]\n'
        '  capabilities = ["pull", "resolve"]\n'
    )


def hosts_toml_for(info: RegistryInfo) -> str:
    return render_hosts_toml(info.host, info.upstream, info.endpoint)


def parse_server(content: str) -> str:
    """Return the ``server`` value of a hosts.toml document, or empty.

    Raises:
        tomllib.TOMLDecodeError: If the content is not valid TOML.
    """
    server = tomllib.loads(content).get("server", "")
    return server if isinstance(server, str) else ""


class HostsDirectory:
    """Per-host hosts.toml files under a mirrors directory.

    Layout is ``<base_dir>/<host>/hosts.toml``, the same layout containerd
    expects under ``/etc/containerd/certs.d``.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def path_for(self, host: str) -> Path:
        return self.base_dir / host / HOSTS_TOML_FILENAME

    def write(self, info: RegistryInfo) -> Path:
        """Write the hosts.toml for one registry and return its path."""
        path = self.path_for(info.host)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(hosts_toml_for(info))
        logger.debug("wrote %s", path)
        return path

    def write_all(self, infos: Iterable[RegistryInfo]) -> list[Path]:
        return [self.write(info) for info in infos if info.host]

    def remove(self) -> None:
        """Delete the whole mirrors directory if it exists."""
        shutil.rmtree(self.base_dir, ignore_errors=True)

    def read_existing(self) -> list[MirrorSpec]:
        """Recover mirror specs from previously written hosts.toml files.

        A missing directory yields an empty list. Host directories without a
        hosts.toml are ignored.

        Returns:
            Specs sorted by host.

        Raises:
            HostsConfigReadError: If a hosts.toml exists but cannot be read or parsed.
        """
        if not self.base_dir.is_dir():
            return []

        specs: list[MirrorSpec] = []
        for host_dir in sorted(p for p in self.base_dir.iterdir() if p.is_dir()):
            hosts_file = host_dir / HOSTS_TOML_FILENAME
            if not hosts_file.is_file():
                continue
            try:
                server = parse_server(hosts_file.read_text())
            except (OSError, tomllib.TOMLDecodeError) as err:
                raise HostsConfigReadError(err) from err
            host = host_dir.name
            specs.append(MirrorSpec(host=host, remote=server or generate_upstream_url(host)))
        return specs
