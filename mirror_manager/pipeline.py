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

"""Four-stage mirror registry pipeline: Registry, Network, Connect, PostClusterConnect."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import IntEnum

import docker

from mirror_manager import logger
from mirror_manager.backends import Backend, StageContext, build_backends
from mirror_manager.config import Distribution
from mirror_manager.errors import StageError, StageOrderError
from mirror_manager.registry import RegistryManager, RegistryManagerFactory

DockerInvoker = Callable[[Callable[[docker.DockerClient], None]], None]


class Role(IntEnum):
    """Pipeline positions, in execution order."""

    REGISTRY = 1
    NETWORK = 2
    CONNECT = 3
    POST_CLUSTER_CONNECT = 4

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Role.REGISTRY: "Registry",
    Role.NETWORK: "Network",
    Role.CONNECT: "Connect",
    Role.POST_CLUSTER_CONNECT: "PostClusterConnect",
}


@dataclass(frozen=True)
class StageInfo:
    """User-facing messages of one stage."""

    title: str
    activity: str
    success: str
    failure: str


STAGE_INFOS: dict[Role, StageInfo] = {
    Role.REGISTRY: StageInfo(
        "Create registries...",
        "creating and configuring registries",
        "registries created",
        "failed to create registries",
    ),
    Role.NETWORK: StageInfo(
        "Create network...",
        "creating docker network",
        "docker network created",
        "failed to create docker network",
    ),
    Role.CONNECT: StageInfo(
        "Connect registries...",
        "connecting registries to docker network",
        "registries connected to docker network",
        "failed to connect registries to docker network",
    ),
    Role.POST_CLUSTER_CONNECT: StageInfo(
        "Configure registry mirrors...",
        "configuring registry mirrors in cluster",
        "registry mirrors configured",
        "failed to configure registry mirrors",
    ),
}


def docker_client_invoker(timeout: int | None = None) -> DockerInvoker:
    """Build an invoker that opens a Docker client for the duration of one callback.

    Args:
        timeout: Per-request API timeout in seconds, or None for the SDK default.
    """

    def _invoke(fn: Callable[[docker.DockerClient], None]) -> None:
        kwargs = {"timeout": timeout} if timeout else {}
        docker_client = docker.from_env(**kwargs)
        try:
            fn(docker_client)
        finally:
            docker_client.close()

    return _invoke


def _stage_pair(backend: Backend, role: Role):
    if role is Role.REGISTRY:
        return backend.prepare_registry, backend.registry_action
    if role is Role.NETWORK:
        return backend.prepare_network, backend.network_action
    if role is Role.CONNECT:
        return backend.prepare_connect, backend.connect_action
    return backend.prepare_post_connect, backend.post_connect_action


class StageOrchestrator:
    """Run pipeline stages for one cluster-create invocation.

    Stages may be skipped but never run out of order; a new invocation needs a
    new orchestrator or a :meth:`reset`.

    Args:
        manager_factory: Builds a RegistryManager for a Docker client.
        docker_invoker: Supplies a Docker client to each stage action.
        backends: Backends by distribution; all four built-ins when None.
    """

    def __init__(
        self,
        manager_factory: RegistryManagerFactory = RegistryManager,
        docker_invoker: DockerInvoker | None = None,
        backends: dict[Distribution, Backend] | None = None,
    ) -> None:
        self.manager_factory = manager_factory
        self.docker_invoker = docker_invoker or docker_client_invoker()
        self.backends = backends if backends is not None else build_backends()
        self._last_role: Role | None = None

    def backend_for(self, distribution: Distribution) -> Backend:
        try:
            return self.backends[distribution]
        except KeyError:
            raise ValueError(f"unsupported distribution: {distribution}") from None

    def reset(self) -> None:
        self._last_role = None

    def run_stage(self, role: Role, ctx: StageContext) -> bool:
        """Run one stage if its backend has work for it.

        Args:
            role: Stage to run.
            ctx: Stage inputs.

        Returns:
            True if the action ran, False if the stage was skipped.

        Raises:
            StageOrderError: If *role* does not come after the previous stage.
            StageError: If the action failed; the cause is chained.
        """
        if self._last_role is not None and role <= self._last_role:
            raise StageOrderError(
                f"stage {role.label} cannot run after {self._last_role.label}"
            )
        self._last_role = role

        backend = self.backend_for(ctx.cluster.distribution)
        prepare, action = _stage_pair(backend, role)
        if not prepare(ctx):
            logger.debug("skipping %s stage for %s", role.label, ctx.cluster.distribution.value)
            return False

        info = STAGE_INFOS[role]
        ctx.notifier.title(info.title)
        ctx.notifier.activity(info.activity)
        start = time.monotonic()
        try:
            self.docker_invoker(lambda docker_client: action(ctx, self.manager_factory(docker_client)))
        except Exception as err:
            raise StageError(role.label, info.failure, err) from err
        ctx.notifier.success(info.success, time.monotonic() - start)
        return True

    def run_stages(self, roles: Iterable[Role], ctx: StageContext) -> list[Role]:
        """Run several stages in order and return the ones that ran."""
        return [role for role in roles if self.run_stage(role, ctx)]


PRE_CLUSTER_ROLES = (Role.REGISTRY, Role.NETWORK, Role.CONNECT)
