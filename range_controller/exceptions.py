# range_controller/exceptions.py
from typing import List, Optional


class PodError(Exception):
    """Base error for pod orchestration. ``kind`` lets callers branch without parsing messages."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class ConfigError(PodError):
    kind = "config"


class TransientError(PodError):
    kind = "transient"


class HypervisorAPIError(TransientError):
    """Non-2xx answer from the hypervisor API."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: bytes = b""):
        super().__init__(message)
        self.api_status = status_code
        self.body = body


class LockContentionError(PodError):
    kind = "lock_contention"
    status_code = 503


class PartialFailureError(PodError):
    kind = "partial_failure"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class AuthorizationError(PodError):
    kind = "authorization"
    status_code = 403


class OperationTimeoutError(PodError, TimeoutError):
    kind = "timeout"


class NotFoundError(PodError):
    kind = "not_found"
    status_code = 404


class ConflictError(PodError):
    kind = "conflict"
    status_code = 409
