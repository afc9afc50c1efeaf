WEIGHTS = {
    "free_mem": 0.40,
    "free_cpu": 0.25,
    "unalloc_mem": 0.30,
    "inv_density": 0.05,
}


def weighted_score(ratios: dict) -> float:
    return sum(WEIGHTS[k] * float(ratios[k]) for k in WEIGHTS)


def calculate_node_score(status, allocated_mem: int, vm_count: int, total_vms: int):
    """
    Turn a node's live status plus its share of the inventory into normalized
    ratios and one weighted score. Higher is better (more headroom).

    Weights:
        free memory         -> 0.40
        free CPU            -> 0.25
        unallocated memory  -> 0.30
        inverse VM density  -> 0.05
    """
    total = int(status.memory.total or 0)
    used = int(status.memory.used or 0)

    if total > 0:
        free_mem = 1.0 - used / total
        unalloc_mem = 1.0 - allocated_mem / total
    else:
        free_mem = 0.0
        unalloc_mem = 0.0

    free_cpu = 1.0 - float(status.cpu or 0.0)

    # empty cluster: every node is equally sparse
    inv_density = 1.0 - vm_count / total_vms if total_vms > 0 else 1.0

    ratios = {
        "free_mem": free_mem,
        "free_cpu": free_cpu,
        "unalloc_mem": unalloc_mem,
        "inv_density": inv_density,
    }
    ratios["score"] = weighted_score(ratios)
    return ratios
