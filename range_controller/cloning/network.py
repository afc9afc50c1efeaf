# range_controller/cloning/network.py
import logging
import re
from typing import Tuple

from range_controller.cloning.lock import SDN_LOCK, DistributedLock
from range_controller.exceptions import NotFoundError
from range_controller.hypervisor.client import ProxmoxClient

logger = logging.getLogger(__name__)

BRIDGE_PATTERN = re.compile(r"bridge=[^,]+")
VLAN_BASE = 1800


def vnet_name(pod_number: int) -> str:
    return f"kamino{pod_number}"


def vlan_tag(pod_number: int) -> int:
    return VLAN_BASE + pod_number


def replace_bridge(netconfig: str, bridge: str) -> str:
    """Swap the ``bridge=`` token of a netX string, leaving every other option as-is."""
    if BRIDGE_PATTERN.search(netconfig):
        return BRIDGE_PATTERN.sub(f"bridge={bridge}", netconfig, count=1)
    return f"{netconfig},bridge={bridge}" if netconfig else f"bridge={bridge}"


class NetworkProvisioner:
    def __init__(self, client: ProxmoxClient, locks: DistributedLock, zone: str = "MainZone"):
        self.client = client
        self.locks = locks
        self.zone = zone

    def vnet_exists(self, pod_number: int) -> bool:
        name = vnet_name(pod_number)
        return any(v.get("vnet") == name for v in self.client.list_vnets())

    def create_vnet(self, pod_number: int) -> str:
        name = vnet_name(pod_number)
        tag = vlan_tag(pod_number)
        logger.info("creating vnet %s (tag %d) in zone %s", name, tag, self.zone)
        self.client.create_vnet(name, self.zone, alias=f"{tag}_pod-vnet", tag=tag)
        return name

    def apply_sdn_changes(self):
        logger.info("applying pending SDN configuration")
        self.client.apply_sdn()

    def ensure_vnet(self, pod_number: int) -> Tuple[str, bool]:
        """Return (vnet name, created). Check, create and apply run under the SDN lock."""
        with self.locks.hold(SDN_LOCK):
            if self.vnet_exists(pod_number):
                return vnet_name(pod_number), False
            name = self.create_vnet(pod_number)
            self.apply_sdn_changes()
            return name, True

    def rewire_vm(self, node: str, vmid: int, bridge: str) -> str:
        """
        Point the VM's pod-facing interface at ``bridge``. Routers carry their
        WAN on net0 and the pod LAN on net1, so net1 wins when present.
        """
        config = self.client.vm_config(node, vmid)
        iface = "net1" if config.get("net1") else "net0"
        current = config.get(iface)
        if not current:
            raise NotFoundError(f"vm {vmid} has no network interface")

        updated = replace_bridge(current, bridge)
        self.client.update_vm_config(node, vmid, {iface: updated})
        logger.info("vm %s %s -> %s", vmid, iface, bridge)
        return updated
