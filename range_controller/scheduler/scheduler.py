# range_controller/scheduler/scheduler.py
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Sequence, Tuple

from range_controller.exceptions import ConfigError
from range_controller.hypervisor.client import ProxmoxClient, VirtualResource
from range_controller.metrics_utils import calculate_node_score

logger = logging.getLogger(__name__)


def node_allocation(resources: Iterable[VirtualResource]) -> Tuple[Dict[str, int], Dict[str, int]]:
    """
    Per-node VM density and allocated memory (maxmem, running or not).
    Templates count toward neither.
    """
    density: Dict[str, int] = defaultdict(int)
    allocated: Dict[str, int] = defaultdict(int)
    for r in resources:
        if not r.is_vm or r.is_template:
            continue
        density[r.node] += 1
        allocated[r.node] += r.maxmem
    return dict(density), dict(allocated)


def score_nodes(client: ProxmoxClient, nodes: Sequence[str]) -> List[Tuple[str, dict]]:
    """Score every configured node in configuration order. A failing status fetch propagates."""
    resources = client.cluster_resources(resource_type="vm")
    density, allocated = node_allocation(resources)
    total_vms = sum(density.values())

    scored = []
    for node in nodes:
        status = client.node_status(node)
        comp = calculate_node_score(status, allocated.get(node, 0), density.get(node, 0), total_vms)
        logger.info(
            "[SCHEDULER][NODE: %s] free_mem=%.3f free_cpu=%.3f unalloc_mem=%.3f inv_density=%.3f FINAL SCORE=%.5f",
            node, comp["free_mem"], comp["free_cpu"], comp["unalloc_mem"], comp["inv_density"], comp["score"],
        )
        scored.append((node, comp))
    return scored


def select_best_node(client: ProxmoxClient, nodes: Sequence[str]) -> str:
    """
    Return the node with the strictly highest score. Ties keep the node that
    comes first in the configured list.
    """
    if not nodes:
        raise ConfigError("no compute nodes configured")

    best_node, best_score = None, None
    for node, comp in score_nodes(client, nodes):
        if best_score is None or comp["score"] > best_score:
            best_node, best_score = node, comp["score"]

    logger.info("[SCHEDULER] selected node %s (score=%.5f)", best_node, best_score)
    return best_node
