# s3ship/models/deployment.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from s3ship.models.target import TriggerContext


class UploadOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TargetStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"    # a dependency did not succeed, uploader never called


class RunStatus(str, Enum):
    PENDING = "Pending"
    PACKING = "Packing"
    UPLOADING = "Uploading"
    SUCCEEDED = "Succeeded"
    PARTIALLY_FAILED = "PartiallyFailed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.PARTIALLY_FAILED, RunStatus.FAILED)

    @property
    def exit_code(self) -> int:
        return {RunStatus.SUCCEEDED: 0, RunStatus.PARTIALLY_FAILED: 2}.get(self, 1)


# One try of one upload
@dataclass(frozen=True)
class UploadAttempt:
    target: str
    artifact_hash: str
    attempt_number: int
    outcome: UploadOutcome = UploadOutcome.PENDING
    error: Optional[str] = None
    error_kind: Optional[str] = None        # transient | permanent | cancelled
    skipped_existing: bool = False          # object already present with same hash
    delay_before: float = 0.0               # backoff slept before this try
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.outcome is UploadOutcome.SUCCESS


# Per-target line of the run report
@dataclass(frozen=True)
class TargetResult:
    target: str
    status: TargetStatus
    attempts: int = 0
    destination: Optional[str] = None
    error: Optional[str] = None
    blocked_by: List[str] = field(default_factory=list)
    skipped_existing: bool = False


@dataclass
class DeploymentRun:
    """
    One trigger's end-to-end execution. Uploader threads report into it
    concurrently, so every mutation goes through the lock.
    """
    trigger: TriggerContext
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.PENDING
    artifact_hash: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    attempts: List[UploadAttempt] = field(default_factory=list)
    results: Dict[str, TargetResult] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def transition(self, status: RunStatus) -> None:
        with self._lock:
            if self.status.is_terminal:
                raise RuntimeError(f"run {self.run_id} already finished as {self.status.value}")
            self.status = status
            if status.is_terminal:
                self.finished_at = datetime.now(timezone.utc)

    def add_attempt(self, attempt: UploadAttempt) -> None:
        with self._lock:
            self.attempts.append(attempt)

    def add_result(self, result: TargetResult) -> None:
        with self._lock:
            self.results[result.target] = result

    def order_results(self, names: List[str]) -> None:
        """Reorder results to match names; completion order is not stable."""
        with self._lock:
            ordered = {n: self.results[n] for n in names if n in self.results}
            ordered.update(self.results)
            self.results = ordered

    def attempts_for(self, name: str) -> List[UploadAttempt]:
        with self._lock:
            return [a for a in self.attempts if a.target == name]

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "run_id": self.run_id,
                "status": self.status.value,
                "branch": self.trigger.branch,
                "commit_sha": self.trigger.commit_sha,
                "environment_override": self.trigger.environment_override,
                "artifact_hash": self.artifact_hash,
                "error": self.error,
                "started_at": self.started_at.isoformat(),
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
                "targets": [_result_dict(r) for r in self.results.values()],
            }


def _result_dict(result: TargetResult) -> Dict[str, Any]:
    data = asdict(result)
    data["status"] = result.status.value
    return data


__all__ = [
    "UploadOutcome",
    "TargetStatus",
    "RunStatus",
    "UploadAttempt",
    "TargetResult",
    "DeploymentRun",
]
