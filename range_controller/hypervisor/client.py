# range_controller/hypervisor/client.py
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from range_controller.exceptions import HypervisorAPIError
from range_controller.hypervisor.gateway import ProxmoxGateway

logger = logging.getLogger(__name__)


class VirtualResource(BaseModel):
    """One row of /cluster/resources (or of a pool's member list)."""

    model_config = ConfigDict(extra="ignore")

    type: str = ""                  # qemu | lxc | pool | node | storage | sdn
    id: str = ""
    pool: str = ""
    name: str = ""
    vmid: int = 0
    node: str = ""
    status: str = ""
    maxmem: int = 0
    mem: int = 0
    template: int = 0
    storage: str = ""
    disk: int = 0
    maxdisk: int = 0

    @property
    def is_vm(self) -> bool:
        return self.type == "qemu"

    @property
    def is_template(self) -> bool:
        return self.template == 1


class MemoryStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: int = 0
    used: int = 0
    free: int = 0


class NodeStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cpu: float = 0.0
    memory: MemoryStatus = Field(default_factory=MemoryStatus)


def _q(value: Any) -> str:
    return quote(str(value), safe="")


class ProxmoxClient:
    """Typed Proxmox operations on top of the gateway. Any non-2xx answer raises HypervisorAPIError."""

    def __init__(self, gateway: ProxmoxGateway):
        self.gateway = gateway

    def _call(self, path: str, method: str = "GET", body: Optional[Dict[str, Any]] = None) -> Any:
        status, raw = self.gateway.request(path, method, body)
        if status < 200 or status >= 300:
            text = raw.decode("utf-8", errors="replace") if raw else ""
            raise HypervisorAPIError(
                f"{method} {path} returned {status}: {text[:300]}",
                status_code=status,
                body=raw,
            )
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise HypervisorAPIError(f"{method} {path} returned malformed JSON", status_code=status, body=raw) from e
        if isinstance(payload, dict):
            return payload.get("data")
        return payload

    # ------------------ cluster ------------------

    def cluster_resources(self, resource_type: Optional[str] = None) -> List[VirtualResource]:
        path = "/cluster/resources"
        if resource_type:
            path += f"?type={_q(resource_type)}"
        rows = self._call(path) or []
        return [VirtualResource.model_validate(r) for r in rows]

    def node_status(self, node: str) -> NodeStatus:
        return NodeStatus.model_validate(self._call(f"/nodes/{_q(node)}/status") or {})

    def next_vmid(self) -> int:
        data = self._call("/cluster/nextid")
        try:
            return int(data)
        except (TypeError, ValueError) as e:
            raise HypervisorAPIError(f"invalid vmid from /cluster/nextid: {data!r}") from e

    # ------------------ vms ------------------

    def clone_vm(self, source_node: str, source_vmid: int, newid: int, name: str, pool: str, target: str) -> Any:
        body = {"newid": newid, "name": name, "pool": pool, "target": target}
        return self._call(f"/nodes/{_q(source_node)}/qemu/{source_vmid}/clone", "POST", body)

    def vm_status(self, node: str, vmid: int) -> str:
        data = self._call(f"/nodes/{_q(node)}/qemu/{vmid}/status/current") or {}
        return data.get("status", "")

    def vm_config(self, node: str, vmid: int) -> Dict[str, Any]:
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}/config") or {}

    def update_vm_config(self, node: str, vmid: int, changes: Dict[str, Any]):
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}/config", "PUT", changes)

    def start_vm(self, node: str, vmid: int):
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}/status/start", "POST", {})

    def stop_vm(self, node: str, vmid: int):
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}/status/stop", "POST", {})

    def delete_vm(self, node: str, vmid: int):
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}", "DELETE")

    def agent_ping(self, node: str, vmid: int):
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}/agent/ping", "POST", {})

    def agent_exec(self, node: str, vmid: int, command: List[str]):
        return self._call(f"/nodes/{_q(node)}/qemu/{vmid}/agent/exec", "POST", {"command": command})

    def storage_content(self, node: str, storage: str, vmid: Optional[int] = None) -> List[Dict[str, Any]]:
        path = f"/nodes/{_q(node)}/storage/{_q(storage)}/content"
        if vmid is not None:
            path += f"?vmid={vmid}"
        return self._call(path) or []

    # ------------------ pools ------------------

    def list_pools(self) -> List[str]:
        return [p.get("poolid", "") for p in (self._call("/pools") or [])]

    def create_pool(self, pool: str):
        logger.info("creating pool %s", pool)
        return self._call("/pools", "POST", {"poolid": pool})

    def pool_members(self, pool: str) -> List[VirtualResource]:
        data = self._call(f"/pools/{_q(pool)}") or {}
        return [VirtualResource.model_validate(m) for m in data.get("members", [])]

    def delete_pool(self, pool: str):
        logger.info("deleting pool %s", pool)
        return self._call(f"/pools/{_q(pool)}", "DELETE")

    def grant_pool_access(self, pool: str, principal: str, roles: str):
        body = {"path": f"/pool/{pool}", "users": principal, "roles": roles, "propagate": True}
        return self._call("/access/acl", "PUT", body)

    # ------------------ sdn ------------------

    def list_vnets(self) -> List[Dict[str, Any]]:
        return self._call("/cluster/sdn/vnets") or []

    def create_vnet(self, vnet: str, zone: str, alias: str, tag: int):
        body = {"vnet": vnet, "zone": zone, "alias": alias, "tag": tag, "vlanaware": True}
        return self._call("/cluster/sdn/vnets", "POST", body)

    def apply_sdn(self):
        return self._call("/cluster/sdn", "PUT", {})
