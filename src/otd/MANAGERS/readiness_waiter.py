# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
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

"""
Fixed-interval polling of external resources until they report ready.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..errors import ReadinessTimeout
from ..UTILS.port_finder import is_port_in_use

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


@dataclass(frozen=True)
class ReadinessTarget:
    """A resource whose readiness is owned by the cluster, not by us."""

    namespace: str
    name: str
    kind: str = "deployment"

    def __str__(self) -> str:
        return f"{self.kind}/{self.name} in namespace {self.namespace}"


class ReadinessWaiter:
    """
    Polls a probe at a fixed interval until it reports ready or a timeout
    elapses. There is no backoff and no jitter.

    Errors raised by the probe are not retried; they propagate to the caller
    on the first occurrence.
    """

    def __init__(
        self,
        probe: Callable[[ReadinessTarget], bool],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the waiter.

        :param probe: Returns True when the target is ready.
        :param poll_interval: Seconds between two probes.
        :param sleep: Sleep function, replaceable in tests.
        """
        self.probe = probe
        self.poll_interval = poll_interval
        self.sleep = sleep

    def wait_ready(self, target: ReadinessTarget, timeout: float) -> None:
        """
        Blocks until the target is ready.

        Returns as soon as a probe reports ready and never blocks longer than
        timeout plus one poll interval (plus the duration of one probe).

        Args:
            target: Resource to wait for.
            timeout: Seconds after which waiting is given up.

        Raises:
            ReadinessTimeout: If the target did not become ready in time.
        """
        logger.debug("Waiting up to %gs for %s", timeout, target)
        self.wait_until(str(target), lambda: self.probe(target), timeout)

    def wait_until(self, description: str, check: Callable[[], bool], timeout: float) -> None:
        """
        Polls an arbitrary check the same way wait_ready polls a target.

        Raises:
            ReadinessTimeout: If the check never returned True within timeout.
        """
        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda ready: not ready),
            sleep=self.sleep,
        )
        try:
            retrying(check)
        except RetryError:
            raise ReadinessTimeout(description, timeout) from None

    def wait_port_listening(self, port: int, timeout: float,
                            in_use: Callable[[int], bool] = is_port_in_use) -> None:
        """
        Waits until something listens on a local TCP port.
        """
        self.wait_until(f"localhost:{port}", lambda: in_use(port), timeout)
