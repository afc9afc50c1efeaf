# range_controller/hypervisor/gateway.py
import logging
from typing import Any, Optional, Tuple

import requests
import urllib3
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from range_controller.config import ClusterConfig
from range_controller.exceptions import TransientError

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE")


class ProxmoxGateway:
    """
    The only component that speaks the Proxmox wire protocol.

    ``request`` returns the raw status code and body; callers decide what counts
    as success. Network failures are raised as TransientError.
    """

    def __init__(self, config: ClusterConfig, timeout: float = 30.0, session: Optional[Session] = None):
        self.config = config
        self.timeout = timeout
        self.session = session or self._make_session()
        if not config.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _make_session(self) -> Session:
        s = Session()
        s.headers.update({
            "Authorization": self.config.auth_header,
            "Accept": "application/json",
        })
        # writes are never replayed
        retries = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=(502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        s.mount("https://", HTTPAdapter(max_retries=retries))
        return s

    def url_for(self, path: str) -> str:
        return f"{self.config.base_url}/{path.lstrip('/')}"

    def request(self, path: str, method: str = "GET", body: Any = None) -> Tuple[int, bytes]:
        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"unsupported method {method!r}")

        kwargs = {"timeout": self.timeout, "verify": self.config.verify_ssl}
        if body is not None and method not in ("GET", "DELETE"):
            kwargs["json"] = body

        try:
            resp = self.session.request(method, self.url_for(path), **kwargs)
        except requests.RequestException as e:
            logger.warning("proxmox %s %s failed: %s", method, path, e)
            raise TransientError(f"{method} {path}: {e}") from e

        logger.debug("proxmox %s %s -> %s", method, path, resp.status_code)
        return resp.status_code, resp.content

    def close(self):
        self.session.close()
