# range_controller/cloning/clone.py
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from range_controller.cloning.lock import VMID_LOCK, DistributedLock
from range_controller.cloning.polling import EXPONENTIAL, Backoff, poll_until
from range_controller.exceptions import PodError, TransientError
from range_controller.hypervisor.client import ProxmoxClient, VirtualResource
from range_controller.scheduler.scheduler import select_best_node

logger = logging.getLogger(__name__)

SETTLED_STATES = ("running", "stopped")


class CloneState(str, enum.Enum):
    REQUESTED = "requested"
    SUBMITTED = "submitted"
    POLLING = "polling"
    VERIFIED = "verified"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ClonedVM:
    name: str
    node: str
    vmid: int


class CloneOperation:
    """
    Clone one VM into a pool and wait until it is safe to use.

    Requested -> Submitted -> Polling -> Verified | TimedOut. The vmid lock
    covers only "next id + pick node + submit"; polling runs outside it.
    """

    def __init__(
        self,
        client: ProxmoxClient,
        locks: DistributedLock,
        nodes: Sequence[str],
        source: VirtualResource,
        pool: str,
        timeout: float = 300.0,
        backoff: Backoff = EXPONENTIAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.locks = locks
        self.nodes = nodes
        self.source = source
        self.pool = pool
        self.timeout = timeout
        self.backoff = backoff
        self._sleep = sleep
        self._clock = clock

        self.state = CloneState.REQUESTED
        self.vmid: Optional[int] = None
        self.node: Optional[str] = None

    def run(self) -> ClonedVM:
        self.submit()
        return self.verify()

    def submit(self):
        with self.locks.hold(VMID_LOCK) as handle:
            vmid = self.client.next_vmid()
            node = select_best_node(self.client, self.nodes)
            logger.info(
                "cloning %s (vmid=%s node=%s) -> vmid=%s target=%s pool=%s",
                self.source.name, self.source.vmid, self.source.node, vmid, node, self.pool,
            )
            # the vmid is only safe to use while the lock is still ours
            self.locks.extend(handle)
            self.client.clone_vm(
                self.source.node,
                self.source.vmid,
                newid=vmid,
                name=self.source.name,
                pool=self.pool,
                target=node,
            )
        self.vmid, self.node = vmid, node
        self.state = CloneState.SUBMITTED

    def is_ready(self) -> bool:
        status = self.client.vm_status(self.node, self.vmid)
        if status not in SETTLED_STATES:
            return False
        lock = self.client.vm_config(self.node, self.vmid).get("lock")
        if lock:
            logger.debug("vm %s is %s but still locked (%s)", self.vmid, status, lock)
            return False
        return True

    def verify(self) -> ClonedVM:
        self.state = CloneState.POLLING
        try:
            poll_until(
                self.is_ready,
                timeout=self.timeout,
                backoff=self.backoff,
                description=f"clone of {self.source.name} (vmid {self.vmid})",
                on_timeout=self.rollback,
                sleep=self._sleep,
                clock=self._clock,
            )
        except TimeoutError:
            self.state = CloneState.TIMED_OUT
            raise

        self.state = CloneState.VERIFIED
        logger.info("clone %s verified on %s", self.vmid, self.node)
        return ClonedVM(name=self.source.name, node=self.node, vmid=self.vmid)

    def rollback(self):
        """Best-effort stop then delete of the half-built clone."""
        errors = []
        for label, action in (("stop", self.client.stop_vm), ("delete", self.client.delete_vm)):
            try:
                action(self.node, self.vmid)
            except PodError as e:
                errors.append(f"{label} {self.vmid}: {e}")
        if errors:
            raise TransientError("; ".join(errors))
