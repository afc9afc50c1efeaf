# range_controller/services.py
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis
from fastapi import Request

from range_controller.cloning.lock import DistributedLock
from range_controller.cloning.network import NetworkProvisioner
from range_controller.cloning.orchestrator import LifecycleOptions, PodLifecycleManager
from range_controller.cloning.router import RouterConfigurator
from range_controller.config import ClusterConfig, Settings, load_cluster_config
from range_controller.db import SessionLocal
from range_controller.hypervisor.client import ProxmoxClient
from range_controller.hypervisor.gateway import ProxmoxGateway
from range_controller.registry import TemplateRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    cluster: ClusterConfig
    gateway: ProxmoxGateway
    client: ProxmoxClient
    redis: redis.Redis
    locks: DistributedLock
    manager: PodLifecycleManager
    session_factory: Callable

    def close(self):
        self.gateway.close()
        self.redis.close()
        logger.info("services closed")


def build_services(
    settings: Settings,
    session_factory: Optional[Callable] = None,
    redis_client: Optional[redis.Redis] = None,
    gateway: Optional[ProxmoxGateway] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Services:
    """Wire every long-lived collaborator once; callers own the returned container's lifetime."""
    cluster = load_cluster_config(settings)

    session_factory = session_factory or SessionLocal

    gateway = gateway or ProxmoxGateway(cluster, timeout=settings.proxmox_timeout)
    redis_client = redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
    client = ProxmoxClient(gateway)
    locks = DistributedLock(
        redis_client,
        ttl=max(settings.lock_ttl, 2 * settings.proxmox_timeout),
        max_attempts=settings.lock_max_attempts,
        initial_backoff=settings.lock_initial_backoff,
        sleep=sleep,
    )
    network = NetworkProvisioner(client, locks, zone=settings.sdn_zone)
    router = RouterConfigurator(
        client,
        wan_script=settings.wan_script,
        vip_script=settings.vip_script,
        agent_timeout=settings.agent_timeout,
        sleep=sleep,
        clock=clock,
    )
    manager = PodLifecycleManager(
        client,
        locks,
        cluster.nodes,
        network,
        router,
        registry=TemplateRegistry(session_factory),
        options=LifecycleOptions.from_settings(settings),
        sleep=sleep,
        clock=clock,
    )
    logger.info("services ready for %s (%d nodes)", cluster.host, len(cluster.nodes))
    return Services(
        settings=settings,
        cluster=cluster,
        gateway=gateway,
        client=client,
        redis=redis_client,
        locks=locks,
        manager=manager,
        session_factory=session_factory,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
