# s3ship/services/orchestrator.py
"""
Runs one deployment: pack once, resolve targets, upload level by level.

    Pending -> Packing -> Uploading -> Succeeded | PartiallyFailed | Failed

Targets inside a level upload concurrently on a bounded thread pool; the next
level starts only when the current one has finished. A target that does not
succeed blocks everything downstream of it, while independent targets carry on.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence, Set

from s3ship.config import DeployConfig
from s3ship.errors import CycleDetected, InvalidInput, NoTargetsMatched
from s3ship.models.artifact import Artifact
from s3ship.models.deployment import (
    DeploymentRun,
    RunStatus,
    TargetResult,
    TargetStatus,
    UploadOutcome,
)
from s3ship.models.target import Target, TriggerContext
from s3ship.services import archiver
from s3ship.services.run_history import RunHistory
from s3ship.services.target_resolver import TargetResolver
from s3ship.services.uploader import Uploader
from s3ship.utils.credentials import CredentialResolver

logger = logging.getLogger(__name__)

_TERMINAL_STATUS = {
    UploadOutcome.SUCCESS: TargetStatus.SUCCEEDED,
    UploadOutcome.FAILED: TargetStatus.FAILED,
    UploadOutcome.CANCELLED: TargetStatus.CANCELLED,
}


def _destination(target: Target, artifact: Artifact) -> str:
    """Object URI the artifact lands at (or would have) for target."""
    return f"s3://{target.bucket}/{target.key_for(artifact.content_hash)}"


class Orchestrator:
    def __init__(
        self,
        config: DeployConfig,
        *,
        uploader: Optional[Uploader] = None,
        resolver: Optional[TargetResolver] = None,
        history: Optional[RunHistory] = None,
    ) -> None:
        self.config = config
        settings = config.settings
        self.uploader = uploader or Uploader(
            policy=settings.retry_policy(),
            credentials=CredentialResolver(region=settings.region),
            endpoint_url=settings.endpoint_url,
        )
        self.resolver = resolver or TargetResolver(config.targets)
        self.history = history

    def run(
        self,
        trigger: TriggerContext,
        files: Sequence,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DeploymentRun:
        """Execute one DeploymentRun for trigger and return its report."""
        run = DeploymentRun(trigger=trigger)
        cancel = cancel_event or threading.Event()
        timer = None
        if timeout is not None:
            timer = threading.Timer(timeout, cancel.set)
            timer.daemon = True
            timer.start()
        try:
            self._execute(run, files, cancel)
        finally:
            if timer is not None:
                timer.cancel()

        logger.info(f"Run {run.run_id} finished: {run.status.value}")
        if self.history is not None:
            try:
                self.history.record_run(run)
            except Exception as e:
                logger.error(f"Could not record run {run.run_id} in history: {e}", exc_info=True)
        return run

    def _execute(self, run: DeploymentRun, files: Sequence, cancel: threading.Event) -> None:
        run.transition(RunStatus.PACKING)
        try:
            artifact = archiver.pack(files)
        except InvalidInput as e:
            logger.error(f"Packing failed, no uploads attempted: {e}")
            run.error = f"InvalidInput: {e}"
            run.transition(RunStatus.FAILED)
            return
        run.artifact_hash = artifact.content_hash

        try:
            levels = self.resolver.resolve_levels(run.trigger)
        except NoTargetsMatched as e:
            if self.config.settings.strict:
                logger.error(str(e))
                run.error = f"NoTargetsMatched: {e}"
                run.transition(RunStatus.FAILED)
            else:
                logger.info(f"{e}; nothing to deploy")
                run.transition(RunStatus.SUCCEEDED)
            return
        except CycleDetected as e:
            logger.error(str(e))
            run.error = f"CycleDetected: {e}"
            run.transition(RunStatus.FAILED)
            return

        run.transition(RunStatus.UPLOADING)
        in_run = {t.name for level in levels for t in level}
        not_ok: Set[str] = set()

        for depth, level in enumerate(levels):
            runnable: List[Target] = []
            for target in level:
                blockers = sorted((target.depends_on & in_run) & not_ok)
                if blockers:
                    logger.warning(f"Target '{target.name}' blocked by {blockers}; not uploading")
                    run.add_result(TargetResult(
                        target=target.name, status=TargetStatus.BLOCKED,
                        destination=_destination(target, artifact), blocked_by=blockers,
                    ))
                    not_ok.add(target.name)
                elif cancel.is_set():
                    run.add_result(TargetResult(
                        target=target.name, status=TargetStatus.CANCELLED,
                        destination=_destination(target, artifact), error="run cancelled before upload started",
                    ))
                    not_ok.add(target.name)
                else:
                    runnable.append(target)

            if not runnable:
                continue
            logger.info(f"Level {depth}: uploading to {[t.name for t in runnable]}")
            workers = min(self.config.settings.max_workers, len(runnable))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="s3ship-upload") as pool:
                futures = {pool.submit(self._deliver, run, artifact, t, cancel): t for t in runnable}
                for future in as_completed(futures):
                    result = future.result()
                    if result.status is not TargetStatus.SUCCEEDED:
                        not_ok.add(result.target)

        run.order_results([t.name for level in levels for t in level])
        run.transition(self._final_status(run, levels))

    def _deliver(self, run: DeploymentRun, artifact: Artifact, target: Target,
                 cancel: threading.Event) -> TargetResult:
        try:
            attempt = self.uploader.upload(
                artifact, target,
                cancel_event=cancel,
                on_attempt=run.add_attempt,
                commit_sha=run.trigger.commit_sha,
            )
        except Exception as e:
            # anything the uploader did not classify still has to show up in the report
            logger.error(f"Unexpected error uploading to '{target.name}': {e}", exc_info=True)
            result = TargetResult(target=target.name, status=TargetStatus.FAILED,
                                  attempts=len(run.attempts_for(target.name)) or 1,
                                  destination=_destination(target, artifact),
                                  error=f"{type(e).__name__}: {e}")
            run.add_result(result)
            return result

        tries = attempt.attempt_number
        if attempt.outcome is UploadOutcome.CANCELLED:
            tries -= 1
        result = TargetResult(
            target=target.name,
            status=_TERMINAL_STATUS[attempt.outcome],
            attempts=tries,
            destination=_destination(target, artifact),
            error=attempt.error,
            skipped_existing=attempt.skipped_existing,
        )
        run.add_result(result)
        return result

    @staticmethod
    def _final_status(run: DeploymentRun, levels: List[List[Target]]) -> RunStatus:
        results = run.results
        succeeded = [n for n, r in results.items() if r.status is TargetStatus.SUCCEEDED]
        if len(succeeded) == len(results):
            return RunStatus.SUCCEEDED
        roots = [t.name for t in levels[0]] if levels else []
        if not succeeded or all(results[n].status is not TargetStatus.SUCCEEDED for n in roots):
            return RunStatus.FAILED
        return RunStatus.PARTIALLY_FAILED


__all__ = ["Orchestrator"]
