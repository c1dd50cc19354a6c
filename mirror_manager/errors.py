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

"""Exception hierarchy for mirror registry orchestration."""

from __future__ import annotations


class MirrorRegistryError(Exception):
    """Base class for all mirror registry errors."""


# ============================================================================
# Configuration errors
# ============================================================================

class InvalidMirrorSpecError(MirrorRegistryError, ValueError):
    """A mirror spec string could not be parsed."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"invalid mirror registry '{raw}': {reason}")
        self.raw = raw
        self.reason = reason


class HostsConfigReadError(MirrorRegistryError):
    """A persisted hosts.toml file exists but cannot be read or parsed."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"failed to read existing hosts configuration: {cause}")


# ============================================================================
# Registry container errors
# ============================================================================

class RegistryNotFoundError(MirrorRegistryError):
    """A registry container does not exist."""


class RegistryAlreadyExistsError(MirrorRegistryError):
    """A registry container with the requested name already exists."""


class RegistryPortNotFoundError(MirrorRegistryError):
    """A registry container has no host port binding."""


class RegistryNotReadyError(MirrorRegistryError):
    """A registry did not become healthy before the readiness deadline."""

    def __init__(self, name: str, detail: str = "", last_error: Exception | None = None) -> None:
        message = f"registry not ready within timeout: {name}"
        if detail:
            message = f"{message} ({detail})"
        if last_error is not None:
            message = f"{message} (last error: {last_error})"
        super().__init__(message)
        self.name = name
        self.last_error = last_error


class RegistryUnexpectedStatusError(MirrorRegistryError):
    """The registry health endpoint returned a status other than 200 or 401."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"registry returned unexpected status: {status_code}")
        self.status_code = status_code


class RegistryHealthCheckCancelledError(MirrorRegistryError):
    """Readiness polling was cancelled by the caller."""


class NoRegistriesFoundError(MirrorRegistryError):
    """Cleanup ran and found nothing to delete."""

    def __init__(self, network: str = "") -> None:
        message = "no registries found on network"
        if network:
            message = f"{message} '{network}'"
        super().__init__(message)
        self.network = network


class RegistryCleanupError(MirrorRegistryError):
    """One or more registries could not be deleted.

    Attributes:
        failures: Mapping of registry name to the error that stopped its deletion.
    """

    def __init__(self, failures: dict[str, Exception]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"failed to delete registries: {names}")
        self.failures = failures


# ============================================================================
# Cluster node errors
# ============================================================================

class NoClusterNodesError(MirrorRegistryError):
    """No node containers were found for a cluster."""

    def __init__(self, distribution: str, cluster_name: str) -> None:
        super().__init__(f"no {distribution} nodes found for cluster '{cluster_name}'")
        self.cluster_name = cluster_name


class ExecFailedError(MirrorRegistryError):
    """A command executed inside a node container exited non-zero."""

    def __init__(self, container: str, exit_code: int, output: str) -> None:
        super().__init__(f"exec in '{container}' failed with exit code {exit_code}: {output.strip()}")
        self.container = container
        self.exit_code = exit_code
        self.output = output


# ============================================================================
# Pipeline errors
# ============================================================================

class StageError(MirrorRegistryError):
    """A stage action failed. The original error is chained as ``__cause__``."""

    def __init__(self, stage: str, failure: str, cause: Exception) -> None:
        super().__init__(f"{stage}: {failure}: {cause}")
        self.stage = stage
        self.failure = failure


class StageOrderError(MirrorRegistryError):
    """A stage was requested out of pipeline order."""
