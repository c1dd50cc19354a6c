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

"""Mirror spec parsing, merging, and precedence resolution."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from mirror_manager.config import Provider
from mirror_manager.constants import DEFAULT_MIRROR_HOSTS, KNOWN_UPSTREAMS
from mirror_manager.errors import InvalidMirrorSpecError

_ENV_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def expand_env_placeholders(value: str) -> str:
    """Replace ``${NAME}`` placeholders with environment values (missing -> empty)."""
    if not value:
        return value
    return _ENV_PLACEHOLDER.sub(lambda match: os.environ.get(match.group(1), ""), value)


def generate_upstream_url(host: str) -> str:
    """Derive the conventional upstream URL for a registry host.

    Args:
        host: Registry host such as ``ghcr.io``.

    Returns:
        Upstream URL the pull-through cache should proxy.
    """
    if host in KNOWN_UPSTREAMS:
        return KNOWN_UPSTREAMS[host]
    if host.startswith(("http://", "https://")):
        return host
    return f"https://{host}"


# ============================================================================
# MirrorSpec
# ============================================================================

@dataclass(frozen=True)
class MirrorSpec:
    """A mirror declaration for one upstream registry host.

    Credentials are kept as written (usually ``${ENV}`` placeholders) and are
    only expanded by :meth:`resolve_credentials` at the point of use.

    Attributes:
        host: Registry host being mirrored, exactly as written.
        remote: Upstream URL the mirror proxies.
        username: Username or placeholder, empty when anonymous.
        password: Password or placeholder, empty when anonymous.
    """

    host: str
    remote: str
    username: str = ""
    password: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.username or self.password)

    def resolve_credentials(self) -> tuple[str, str]:
        """Expand credential placeholders from the current environment.

        Returns:
            Tuple of (username, password); either may be empty.
        """
        return expand_env_placeholders(self.username), expand_env_placeholders(self.password)

    def display(self) -> str:
        """Render as ``host=remote`` without credentials."""
        return f"{self.host}={self.remote}"

    def __repr__(self) -> str:
        masked = ", credentials=***" if self.has_credentials else ""
        return f"MirrorSpec(host={self.host!r}, remote={self.remote!r}{masked})"


def _split_mirror_spec(raw: str) -> MirrorSpec:
    working = raw.strip()
    username = password = ""

    at_idx = working.find("@")
    if at_idx > 0:
        credentials, working = working[:at_idx], working[at_idx + 1:]
        username, _, password = credentials.partition(":")

    host, sep, remote = working.partition("=")
    host = host.strip()
    if not host:
        raise InvalidMirrorSpecError(raw, "host is empty")

    if not sep:
        remote = generate_upstream_url(host)
    else:
        remote = remote.strip()
        if not remote:
            raise InvalidMirrorSpecError(raw, "upstream is empty")

    return MirrorSpec(host=host, remote=remote, username=username.strip(), password=password.strip())


def parse_mirror_spec(raw: str) -> MirrorSpec:
    """Parse a ``[user[:password]@]host[=upstream]`` string.

    Args:
        raw: The mirror spec string.

    Returns:
        The parsed MirrorSpec.

    Raises:
        InvalidMirrorSpecError: If the host or the explicit upstream is empty.
    """
    return _split_mirror_spec(raw)


def parse_mirror_specs(values: Iterable[str], *, strict: bool = False) -> list[MirrorSpec]:
    """Parse many mirror spec strings, skipping blank entries.

    Args:
        values: Raw mirror spec strings.
        strict: Raise on invalid entries instead of skipping them.

    Returns:
        Parsed specs in input order.

    Raises:
        InvalidMirrorSpecError: If *strict* and an entry is invalid.
    """
    parsed: list[MirrorSpec] = []
    for raw in values:
        if not raw or not raw.strip():
            continue
        try:
            parsed.append(_split_mirror_spec(raw))
        except InvalidMirrorSpecError:
            if strict:
                raise
    return parsed


def merge_specs(*sources: Iterable[MirrorSpec]) -> list[MirrorSpec]:
    """Merge spec lists by host; later sources override earlier ones.

    Returns:
        Deduplicated specs sorted by host.
    """
    by_host: dict[str, MirrorSpec] = {}
    for source in sources:
        for spec in source:
            by_host[spec.host] = spec
    return [by_host[host] for host in sorted(by_host)]


def default_mirror_specs(provider: Provider) -> list[MirrorSpec]:
    """Default mirror set for providers that can reach local Docker containers."""
    if not provider.supports_local_mirrors:
        return []
    return [MirrorSpec(host=host, remote=generate_upstream_url(host)) for host in DEFAULT_MIRROR_HOSTS]


def specs_from_hosts(hosts: Iterable[str]) -> list[MirrorSpec]:
    """Build specs for bare hosts, deriving each upstream."""
    return [
        MirrorSpec(host=host.strip(), remote=generate_upstream_url(host.strip()))
        for host in hosts
        if host and host.strip()
    ]


# ============================================================================
# Resolution
# ============================================================================

def resolve_mirror_specs(
    flag_value: Sequence[str] | None,
    existing_hosts_toml: Sequence[MirrorSpec] = (),
    talos_extracted_hosts: Sequence[str] = (),
    provider: Provider = Provider.DOCKER,
) -> list[MirrorSpec]:
    """Resolve the effective mirror list from all configuration sources.

    Precedence is flag > persisted configuration > provider defaults. A flag
    that is present replaces everything else, and a flag holding only empty
    values disables mirrors. Without a flag, Talos-extracted hosts are merged
    first and hosts.toml entries override them, since hosts.toml carries the
    real upstream rather than a derived one.

    Args:
        flag_value: Raw ``--mirror-registry`` values, or None when the flag was not given.
        existing_hosts_toml: Specs recovered from the hosts.toml directory.
        talos_extracted_hosts: Mirror hosts found in the loaded Talos config.
        provider: Node provider, used to pick defaults.

    Returns:
        Specs sorted by host, unique per host.

    Raises:
        InvalidMirrorSpecError: If a flag entry is malformed.
    """
    if flag_value is not None:
        return merge_specs(parse_mirror_specs(flag_value, strict=True))

    existing = merge_specs(specs_from_hosts(talos_extracted_hosts), existing_hosts_toml)
    if existing:
        return existing

    return merge_specs(default_mirror_specs(provider))
