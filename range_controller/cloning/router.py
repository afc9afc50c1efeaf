# range_controller/cloning/router.py
import logging
import time
from typing import Callable

from range_controller.cloning.polling import EXPONENTIAL, Backoff, poll_until
from range_controller.hypervisor.client import ProxmoxClient

logger = logging.getLogger(__name__)


def wan_address(pod_number: int) -> str:
    return f"172.16.{pod_number}.1"


def vip_subnet(pod_number: int) -> str:
    return f"172.16.{pod_number}.0"


class RouterConfigurator:
    """Sets pod-specific WAN/VIP addressing on a running router via the guest agent."""

    def __init__(
        self,
        client: ProxmoxClient,
        wan_script: str = "/home/update-wan-ip.sh",
        vip_script: str = "/home/update-wan-vip.sh",
        agent_timeout: float = 300.0,
        backoff: Backoff = EXPONENTIAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.wan_script = wan_script
        self.vip_script = vip_script
        self.agent_timeout = agent_timeout
        self.backoff = backoff
        self._sleep = sleep
        self._clock = clock

    def _ping(self, node: str, vmid: int) -> bool:
        self.client.agent_ping(node, vmid)
        return True

    def wait_for_agent(self, node: str, vmid: int):
        poll_until(
            lambda: self._ping(node, vmid),
            timeout=self.agent_timeout,
            backoff=self.backoff,
            description=f"guest agent on router {vmid}",
            sleep=self._sleep,
            clock=self._clock,
        )

    def configure(self, pod_number: int, node: str, vmid: int):
        self.wait_for_agent(node, vmid)
        for script, arg in ((self.wan_script, wan_address(pod_number)), (self.vip_script, vip_subnet(pod_number))):
            logger.info("router %s: running %s %s", vmid, script, arg)
            self.client.agent_exec(node, vmid, [script, arg])
