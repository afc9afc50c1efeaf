# range_controller/cloning/orchestrator.py
import enum
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from range_controller.cloning.allocator import (
    POD_ID_MAX,
    TEMPLATE_POOL_PREFIX,
    is_pod_name,
    next_pod_id,
    owns_pod,
    pod_ids_from_pools,
    pod_number,
    pod_pool_name,
    pod_template,
    template_pool_name,
)
from range_controller.cloning.clone import ClonedVM, CloneOperation
from range_controller.cloning.lock import POD_ID_LOCK, DistributedLock
from range_controller.cloning.network import NetworkProvisioner
from range_controller.cloning.polling import EXPONENTIAL, Backoff, fixed, poll_until
from range_controller.cloning.router import RouterConfigurator
from range_controller.exceptions import (
    AuthorizationError,
    ConfigError,
    NotFoundError,
    PartialFailureError,
    PodError,
)
from range_controller.hypervisor.client import ProxmoxClient, VirtualResource
from range_controller.schemas import Identity

logger = logging.getLogger(__name__)

LOCAL_STORAGES = ("local", "local-lvm")


class Outcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass
class PodResult:
    pod_name: str
    outcome: Outcome
    errors: List[str] = field(default_factory=list)
    vms: List[ClonedVM] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED

    @property
    def status_code(self) -> int:
        return {Outcome.SUCCEEDED: 200, Outcome.PARTIAL: 206}.get(self.outcome, 500)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "pod_name": self.pod_name,
            "outcome": self.outcome.value,
            "errors": list(self.errors),
        }


@dataclass
class Pod:
    name: str
    vms: List[VirtualResource] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "vms": [{"name": v.name, "vmid": v.vmid, "node": v.node, "status": v.status} for v in self.vms],
        }


@dataclass(frozen=True)
class LifecycleOptions:
    realm: str = "SDC"
    roles: str = "PVEVMUser,PVEPoolUser"
    router_name: str = "1-1NAT-pfsense"
    router_pool: str = "0100_Kamino_Templates"
    storage_id: str = ""
    clone_timeout: float = 300.0
    disk_timeout: float = 300.0
    disk_interval: float = 2.0
    power_timeout: float = 120.0
    power_interval: float = 5.0
    pool_empty_timeout: float = 300.0
    bulk_workers: int = 8

    @classmethod
    def from_settings(cls, settings) -> "LifecycleOptions":
        return cls(
            realm=settings.proxmox_realm,
            roles=settings.pod_roles,
            router_name=settings.router_name,
            router_pool=settings.router_pool,
            storage_id=settings.storage_id,
            clone_timeout=settings.clone_timeout,
            disk_timeout=settings.disk_timeout,
            power_timeout=settings.power_timeout,
            pool_empty_timeout=settings.pool_empty_timeout,
            bulk_workers=settings.bulk_workers,
        )


class PodLifecycleManager:
    """
    Creates and tears down pods.

    Create order: allocate pod id + pool, clone router and template VMs,
    ensure the pod vnet and rewire every clone onto it, boot and configure
    the router, grant the owner access. Per-step failures are collected and
    never stop the remaining steps; an errored pod left with no VMs has its
    pool removed.
    """

    def __init__(
        self,
        client: ProxmoxClient,
        locks: DistributedLock,
        nodes: Sequence[str],
        network: NetworkProvisioner,
        router: RouterConfigurator,
        registry=None,
        options: LifecycleOptions = LifecycleOptions(),
        backoff: Backoff = EXPONENTIAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.locks = locks
        self.nodes = tuple(nodes)
        self.network = network
        self.router = router
        self.registry = registry
        self.options = options
        self.backoff = backoff
        self._sleep = sleep
        self._clock = clock

    # ------------------ templates ------------------

    def template_sources(self, template_name: str) -> Tuple[Optional[VirtualResource], List[VirtualResource]]:
        """Return (router template, template VMs) from one inventory snapshot."""
        pool = template_pool_name(template_name)
        router, vms = None, []
        for r in self.client.cluster_resources(resource_type="vm"):
            if not r.is_vm:
                continue
            if r.pool == pool:
                vms.append(r)
            elif r.pool == self.options.router_pool and r.name == self.options.router_name:
                router = r
        return router, vms

    def template_vms(self, template_name: str) -> List[VirtualResource]:
        _, vms = self.template_sources(template_name)
        if not vms:
            raise NotFoundError(f"template {template_name} has no VMs")
        return vms

    def is_deployed(self, template_name: str) -> bool:
        prefix = f"{template_name}_"
        return any((pod_template(p.name) or "").startswith(prefix) for p in self.list_pods())

    def unpublished_templates(self, published: Sequence[str]) -> List[str]:
        known = set(published)
        names = [p[len(TEMPLATE_POOL_PREFIX):] for p in self.client.list_pools() if p.startswith(TEMPLATE_POOL_PREFIX)]
        return [n for n in names if n not in known]

    # ------------------ create ------------------

    def allocate_pod(self, template_name: str, owner: str) -> Tuple[int, str]:
        with self.locks.hold(POD_ID_LOCK):
            pod_id = next_pod_id(pod_ids_from_pools(self.client.list_pools()))
            pool = pod_pool_name(pod_id, template_name, owner)
            self.client.create_pool(pool)
        logger.info("allocated pod %s (id %d of %d)", pool, pod_id, POD_ID_MAX)
        return pod_id, pool

    def clone(self, source: VirtualResource, pool: str) -> ClonedVM:
        op = CloneOperation(
            self.client,
            self.locks,
            self.nodes,
            source,
            pool,
            timeout=self.options.clone_timeout,
            backoff=self.backoff,
            sleep=self._sleep,
            clock=self._clock,
        )
        return op.run()

    def _poll(self, check, timeout: float, backoff: Backoff, description: str):
        return poll_until(check, timeout=timeout, backoff=backoff, description=description,
                          sleep=self._sleep, clock=self._clock)

    def _disk_ready(self, vm: ClonedVM) -> bool:
        if not self.client.vm_config(vm.node, vm.vmid).get("scsi0"):
            return False
        if self.options.storage_id:
            return bool(self.client.storage_content(vm.node, self.options.storage_id, vm.vmid))
        return True

    def wait_for_disk(self, vm: ClonedVM):
        self._poll(lambda: self._disk_ready(vm), self.options.disk_timeout,
                   fixed(self.options.disk_interval), f"disk of vm {vm.vmid}")

    def wait_for_state(self, node: str, vmid: int, state: str):
        self._poll(lambda: self.client.vm_status(node, vmid) == state, self.options.power_timeout,
                   fixed(self.options.power_interval), f"vm {vmid} to be {state}")

    def start_router(self, vm: ClonedVM, number: int):
        self.wait_for_disk(vm)
        self.client.start_vm(vm.node, vm.vmid)
        self.wait_for_state(vm.node, vm.vmid, "running")
        self.router.configure(number, vm.node, vm.vmid)

    def provision_pod(self, template_name: str, owner: str) -> PodResult:
        router_source, sources = self.template_sources(template_name)
        if not sources:
            raise NotFoundError(f"template {template_name} has no VMs")
        if router_source is None:
            raise ConfigError(
                f"router template {self.options.router_name} not found in pool {self.options.router_pool}"
            )

        pod_id, pool = self.allocate_pod(template_name, owner)
        number = pod_number(pod_id)
        errors: List[str] = []

        router_vm = None
        try:
            router_vm = self.clone(router_source, pool)
        except PodError as e:
            errors.append(f"failed to clone router: {e}")

        cloned = [router_vm] if router_vm else []
        for source in sources:
            try:
                cloned.append(self.clone(source, pool))
            except PodError as e:
                errors.append(f"failed to clone {source.name} ({source.vmid}): {e}")

        try:
            bridge, created = self.network.ensure_vnet(number)
        except PodError as e:
            errors.append(f"failed to provision network: {e}")
            bridge = None
        else:
            if created:
                logger.info("pod %s: created vnet %s", pool, bridge)

        if bridge:
            for vm in cloned:
                try:
                    self.network.rewire_vm(vm.node, vm.vmid, bridge)
                except PodError as e:
                    errors.append(f"failed to attach vm {vm.vmid} to {bridge}: {e}")

        if router_vm:
            try:
                self.start_router(router_vm, number)
            except PodError as e:
                errors.append(f"failed to configure router {router_vm.vmid}: {e}")

        try:
            self.client.grant_pool_access(pool, f"{owner}@{self.options.realm}", self.options.roles)
        except PodError as e:
            errors.append(f"failed to grant {owner} access to {pool}: {e}")

        if errors:
            outcome = self._settle_failed_pod(pool, errors)
            logger.warning("pod %s finished %s with %d error(s)", pool, outcome.value, len(errors))
            return PodResult(pool, outcome, errors, cloned)

        if self.registry is not None:
            try:
                self.registry.add_deployment(template_name)
            except PodError as e:
                # the pod itself is complete; only the usage counter is stale
                logger.warning("could not record deployment of %s: %s", template_name, e)
        logger.info("pod %s provisioned with %d vm(s)", pool, len(cloned))
        return PodResult(pool, Outcome.SUCCEEDED, [], cloned)

    def _settle_failed_pod(self, pool: str, errors: List[str]) -> Outcome:
        try:
            members = [m for m in self.client.pool_members(pool) if m.is_vm]
            if members:
                return Outcome.PARTIAL
            self.client.delete_pool(pool)
        except PodError as e:
            errors.append(f"rollback of {pool} failed: {e}")
            return Outcome.FAILED
        return Outcome.ROLLED_BACK

    def bulk_provision(self, template_name: str, owners: Sequence[str]) -> List[PodResult]:
        """
        Provision one pod per non-blank owner concurrently. Partial pods are
        warnings; raises PartialFailureError once every worker has finished
        if any pod failed outright.
        """
        targets = [o.strip() for o in owners if o and o.strip()]
        if not targets:
            return []

        results: List[PodResult] = []
        hard_errors: List[str] = []
        with ThreadPoolExecutor(max_workers=min(len(targets), self.options.bulk_workers)) as pool:
            futures = {pool.submit(self.provision_pod, template_name, owner): owner for owner in targets}
            for future in as_completed(futures):
                owner = futures[future]
                try:
                    result = future.result()
                except PodError as e:
                    hard_errors.append(f"{owner}: {e}")
                    continue
                results.append(result)
                if result.outcome in (Outcome.ROLLED_BACK, Outcome.FAILED):
                    hard_errors.append(f"{owner}: {'; '.join(result.errors)}")

        if hard_errors:
            raise PartialFailureError(
                f"{len(hard_errors)} of {len(targets)} pods failed: {hard_errors[0]}", hard_errors
            )
        return results

    # ------------------ delete ------------------

    def authorize_delete(self, pod_name: str, identity: Identity):
        if identity.is_admin:
            return
        if not owns_pod(pod_name, identity.username):
            raise AuthorizationError(f"{identity.username} may not delete {pod_name}")

    def pool_exists(self, pool: str) -> bool:
        return any(r.type == "pool" and r.pool == pool for r in self.client.cluster_resources())

    def pool_vms(self, pool: str) -> List[VirtualResource]:
        return [m for m in self.client.pool_members(pool) if m.is_vm]

    def deprovision_pod(self, pod_name: str, identity: Identity) -> PodResult:
        self.authorize_delete(pod_name, identity)
        if not self.pool_exists(pod_name):
            raise NotFoundError(f"pod {pod_name} not found")

        errors: List[str] = []
        members = self.pool_vms(pod_name)
        logger.info("deleting pod %s with %d vm(s)", pod_name, len(members))

        for vm in members:
            try:
                self.client.stop_vm(vm.node, vm.vmid)
                self.wait_for_state(vm.node, vm.vmid, "stopped")
                self.client.delete_vm(vm.node, vm.vmid)
            except PodError as e:
                errors.append(f"failed to remove vm {vm.vmid}: {e}")

        if members:
            try:
                self._poll(lambda: not self.pool_vms(pod_name), self.options.pool_empty_timeout,
                           self.backoff, f"pool {pod_name} to empty")
            except PodError as e:
                errors.append(str(e))
                return PodResult(pod_name, Outcome.FAILED, errors)

        try:
            self.client.delete_pool(pod_name)
        except PodError as e:
            errors.append(f"failed to delete pool {pod_name}: {e}")
            return PodResult(pod_name, Outcome.FAILED, errors)

        return PodResult(pod_name, Outcome.PARTIAL if errors else Outcome.SUCCEEDED, errors)

    # ------------------ views ------------------

    def list_pods(self, username: Optional[str] = None) -> List[Pod]:
        pods: Dict[str, Pod] = {}
        vms: List[VirtualResource] = []
        for r in self.client.cluster_resources():
            if r.type == "pool" and is_pod_name(r.pool):
                pods.setdefault(r.pool, Pod(r.pool))
            elif r.is_vm and is_pod_name(r.pool):
                vms.append(r)
        for vm in vms:
            if vm.pool in pods:
                pods[vm.pool].vms.append(vm)

        result = sorted(pods.values(), key=lambda p: p.name)
        if username is not None:
            result = [p for p in result if owns_pod(p.name, username)]
        return result

    def resource_usage(self) -> dict:
        resources = self.client.cluster_resources()
        nodes, errors = [], []
        for node in self.nodes:
            try:
                status = self.client.node_status(node)
            except PodError as e:
                errors.append(f"{node}: {e}")
                continue
            storage_used, storage_total = node_storage(resources, node)
            nodes.append({
                "name": node,
                "cpu_usage": status.cpu,
                "memory_used": status.memory.used,
                "memory_total": status.memory.total,
                "storage_used": storage_used,
                "storage_total": storage_total,
            })

        shared_used, shared_total = shared_storage(resources, self.options.storage_id)
        total = {
            "cpu_usage": sum(n["cpu_usage"] for n in nodes) / len(nodes) if nodes else 0.0,
            "memory_used": sum(n["memory_used"] for n in nodes),
            "memory_total": sum(n["memory_total"] for n in nodes),
            "storage_used": sum(n["storage_used"] for n in nodes) + shared_used,
            "storage_total": sum(n["storage_total"] for n in nodes) + shared_total,
        }
        return {"nodes": nodes, "total": total, "errors": errors}


def node_storage(resources: Sequence[VirtualResource], node: str) -> Tuple[int, int]:
    used = total = 0
    for r in resources:
        if r.type == "storage" and r.node == node and r.storage in LOCAL_STORAGES and r.status == "available":
            used += r.disk
            total += r.maxdisk
    return used, total


def shared_storage(resources: Sequence[VirtualResource], storage_id: str) -> Tuple[int, int]:
    # shared storage is listed once per node; count it once
    if not storage_id:
        return 0, 0
    for r in resources:
        if r.type == "storage" and r.storage == storage_id:
            return r.disk, r.maxdisk
    return 0, 0
