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

"""Registry readiness polling against the /v2/ endpoint."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import requests
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_delay,
    stop_when_event_set,
    wait_fixed,
)

from mirror_manager import logger
from mirror_manager.constants import (
    CONNECTION_REFUSED_CHECK_THRESHOLD,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_READY_POLL_INTERVAL_SECONDS,
    DEFAULT_READY_TIMEOUT_SECONDS,
    READY_STATUS_CODES,
    REGISTRY_CONTAINER_PORT,
    REGISTRY_HOST_IP,
)
from mirror_manager.errors import (
    RegistryHealthCheckCancelledError,
    RegistryNotReadyError,
    RegistryUnexpectedStatusError,
)


class _NotReadyYet(Exception):
    """Internal marker: the probe failed and polling should continue."""


def health_url_for_ip(ip: str) -> str:
    return f"http://{ip}:{REGISTRY_CONTAINER_PORT}/v2/"


def health_url_for_host_port(port: int) -> str:
    return f"http://{REGISTRY_HOST_IP}:{port}/v2/"


def _is_connection_refused(err: Exception) -> bool:
    return "connection refused" in str(err).lower()


class RegistryHealthChecker:
    """Poll registry health endpoints until they answer 200 or 401.

    Args:
        timeout: Seconds to wait for a single registry.
        interval: Seconds between probes.
        http_timeout: Timeout of one HTTP request.
        cancel: Event that aborts polling when set.
        session: HTTP session used for probes.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_READY_TIMEOUT_SECONDS,
        interval: float = DEFAULT_READY_POLL_INTERVAL_SECONDS,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        cancel: threading.Event | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.interval = interval
        self.http_timeout = http_timeout
        self.cancel = cancel
        self.session = session or requests.Session()

    def probe(self, url: str) -> None:
        """Issue one health request.

        Raises:
            requests.RequestException: If the request itself fails.
            RegistryUnexpectedStatusError: If the status is neither 200 nor 401.
        """
        response = self.session.get(url, timeout=self.http_timeout)
        response.close()
        if response.status_code not in READY_STATUS_CODES:
            raise RegistryUnexpectedStatusError(response.status_code)

    def wait_until_ready(
        self,
        name: str,
        url: str | None,
        is_running: Callable[[], bool],
    ) -> None:
        """Block until the registry is ready.

        Args:
            name: Registry container name, used in errors.
            url: Health URL, or None when the container has no reachable
                address; readiness then means the container is running.
            is_running: Callback reporting whether the container still runs.

        Raises:
            RegistryNotReadyError: On timeout, or when the container stopped.
            RegistryHealthCheckCancelledError: If the cancel event is set.
        """
        if self.cancel is not None and self.cancel.is_set():
            raise RegistryHealthCheckCancelledError(f"registry health check cancelled: {name}")

        last_error: list[Exception] = []
        refused = 0

        def _attempt() -> None:
            nonlocal refused
            if url is None:
                if is_running():
                    return
                raise _NotReadyYet("container is not running")
            try:
                self.probe(url)
            except requests.RequestException as err:
                last_error[:] = [err]
                if not _is_connection_refused(err):
                    refused = 0
                    raise _NotReadyYet(str(err)) from err
                refused += 1
                if refused >= CONNECTION_REFUSED_CHECK_THRESHOLD:
                    refused = 0
                    if not is_running():
                        raise RegistryNotReadyError(name, "container is not running") from err
                raise _NotReadyYet(str(err)) from err
            except RegistryUnexpectedStatusError as err:
                last_error[:] = [err]
                refused = 0
                raise _NotReadyYet(str(err)) from err

        stop = stop_after_delay(self.timeout)
        sleep = time.sleep
        if self.cancel is not None:
            stop = stop | stop_when_event_set(self.cancel)
            sleep = self.cancel.wait

        retrying = Retrying(
            stop=stop,
            wait=wait_fixed(self.interval),
            retry=retry_if_exception_type(_NotReadyYet),
            sleep=sleep,
        )
        try:
            retrying(_attempt)
        except RetryError:
            if self.cancel is not None and self.cancel.is_set():
                raise RegistryHealthCheckCancelledError(
                    f"registry health check cancelled: {name}"
                ) from None
            raise RegistryNotReadyError(name, last_error=last_error[0] if last_error else None) from None
        logger.debug("registry %s is ready", name)
