# s3ship/services/run_history.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from s3ship.errors import DeployError
from s3ship.models.db.models import DeploymentRunRecord, UploadAttemptRecord
from s3ship.models.db.session import init_db
from s3ship.models.deployment import DeploymentRun

logger = logging.getLogger(__name__)


class HistoryError(DeployError):
    """Raised when the run history database cannot be read or written."""


class RunHistory:
    """Keeps finished DeploymentRuns in a SQL database (SQLite by default)."""

    def __init__(self, db_url: str = "sqlite:///s3ship-history.db", session_factory=None):
        self._Session = session_factory or init_db(db_url)

    def record_run(self, run: DeploymentRun) -> str:
        record = DeploymentRunRecord(
            id=run.run_id,
            branch=run.trigger.branch,
            commit_sha=run.trigger.commit_sha,
            environment_override=run.trigger.environment_override,
            artifact_hash=run.artifact_hash,
            status=run.status.value,
            error=run.error,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )
        for seq, attempt in enumerate(list(run.attempts)):
            record.attempts.append(UploadAttemptRecord(
                seq=seq,
                target=attempt.target,
                artifact_hash=attempt.artifact_hash,
                attempt_number=attempt.attempt_number,
                outcome=attempt.outcome.value,
                error=attempt.error,
                error_kind=attempt.error_kind,
                skipped_existing=attempt.skipped_existing,
                delay_before=attempt.delay_before,
                finished_at=attempt.finished_at,
            ))
        try:
            with self._Session() as session:
                session.add(record)
                session.commit()
        except SQLAlchemyError as e:
            raise HistoryError(f"Failed to record run {run.run_id}: {e}") from e
        logger.info("Recorded run %s (%s) with %d attempts", run.run_id, run.status.value, len(record.attempts))
        return run.run_id

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Newest runs first, each with its attempt rows."""
        try:
            with self._Session() as session:
                stmt = select(DeploymentRunRecord).order_by(DeploymentRunRecord.started_at.desc()).limit(limit)
                return [_run_dict(r) for r in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise HistoryError(f"Failed to read run history: {e}") from e


def _run_dict(record: DeploymentRunRecord) -> Dict[str, Any]:
    return {
        "run_id": record.id,
        "branch": record.branch,
        "commit_sha": record.commit_sha,
        "status": record.status,
        "artifact_hash": record.artifact_hash,
        "error": record.error,
        "started_at": record.started_at.isoformat() if record.started_at else None,
        "finished_at": record.finished_at.isoformat() if record.finished_at else None,
        "attempts": [
            {
                "target": a.target,
                "attempt_number": a.attempt_number,
                "outcome": a.outcome,
                "error": a.error,
                "skipped_existing": a.skipped_existing,
            }
            for a in record.attempts
        ],
    }
