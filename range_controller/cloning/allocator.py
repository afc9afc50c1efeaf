# range_controller/cloning/allocator.py
import re
from typing import Iterable, List, Optional

from range_controller.exceptions import PodError

POD_ID_MIN = 1001
POD_ID_MAX = 1255
POD_NAME_PATTERN = re.compile(r"^1[0-9]{3}_.*")
TEMPLATE_POOL_PREFIX = "kamino_template_"


class PodIdsExhaustedError(PodError):
    kind = "exhausted"
    status_code = 503


def template_pool_name(template_name: str) -> str:
    return f"{TEMPLATE_POOL_PREFIX}{template_name}"


def pod_pool_name(pod_id: int, template_name: str, owner: str) -> str:
    return f"{pod_id}_{template_name}_{owner}"


def pod_number(pod_id: int) -> int:
    return pod_id - 1000


def is_pod_name(name: str) -> bool:
    return bool(POD_NAME_PATTERN.match(name or ""))


def parse_pod_id(name: str) -> Optional[int]:
    if not is_pod_name(name):
        return None
    return int(name[:4])


def pod_ids_from_pools(pool_names: Iterable[str]) -> List[int]:
    return sorted({pid for pid in (parse_pod_id(n) for n in pool_names) if pid is not None})


def next_pod_id(existing: Iterable[int]) -> int:
    """Smallest id in [1001, 1255] not present in ``existing``."""
    taken = set(existing)
    for candidate in range(POD_ID_MIN, POD_ID_MAX + 1):
        if candidate not in taken:
            return candidate
    raise PodIdsExhaustedError("no pod ids available")


def pod_template(name: str) -> Optional[str]:
    """The ``<template>_<owner>`` remainder of a pod name."""
    if not is_pod_name(name):
        return None
    return name[5:]


def owns_pod(pod_name: str, username: str) -> bool:
    suffix = f"_{username}"
    return bool(username) and len(pod_name) > len(suffix) and pod_name.endswith(suffix)
