# s3ship/errors.py
from __future__ import annotations

from typing import Iterable


class DeployError(RuntimeError):
    """Base class for every failure s3ship surfaces to callers."""


class InvalidInput(DeployError):
    """Raised when archive inputs are empty, duplicated or unreadable."""


class ConfigError(DeployError):
    """Raised when the target configuration cannot be loaded."""


class CycleDetected(DeployError):
    """Raised when target dependencies do not form a DAG."""

    def __init__(self, names: Iterable[str]):
        self.names = sorted(names)
        super().__init__(f"Cycle detected involving targets: {self.names}")


class NoTargetsMatched(DeployError):
    """Raised when a trigger selects no targets."""

    def __init__(self, branch: str, environment: str | None = None):
        self.branch = branch
        self.environment = environment
        where = f"environment '{environment}'" if environment else f"branch '{branch}'"
        super().__init__(f"No targets configured for {where}")


class UploadError(DeployError):
    kind = "error"


class TransientFailure(UploadError):
    """Retryable storage failure (network errors, throttling, 5xx)."""
    kind = "transient"


class PermanentFailure(UploadError):
    """Credential, permission or validation failure. Never retried."""
    kind = "permanent"


class Cancelled(UploadError):
    """The caller cancelled the upload (timeout or explicit cancel)."""
    kind = "cancelled"


__all__ = [
    "DeployError",
    "InvalidInput",
    "ConfigError",
    "CycleDetected",
    "NoTargetsMatched",
    "UploadError",
    "TransientFailure",
    "PermanentFailure",
    "Cancelled",
]
