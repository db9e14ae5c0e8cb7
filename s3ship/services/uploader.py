# s3ship/services/uploader.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from s3ship.errors import Cancelled, PermanentFailure, TransientFailure, UploadError
from s3ship.models.artifact import Artifact
from s3ship.models.deployment import UploadAttempt, UploadOutcome
from s3ship.models.target import Target
from s3ship.services.retry_policy import RetryPolicy, RetryState, Sleeper, event_sleep
from s3ship.utils.credentials import CredentialResolver
from s3ship.utils.s3_handler import S3Handler, s3_client

logger = logging.getLogger(__name__)

AttemptCallback = Callable[[UploadAttempt], None]


class Uploader:
    """
    Publishes one artifact to one target.

    Every try first HEADs the destination: an object already carrying the
    artifact's hash is left alone and counts as success. Otherwise the whole
    zip goes up in one PUT. Transient failures are retried with exponential
    backoff, permanent ones end the upload on the spot.
    """

    def __init__(
        self,
        *,
        policy: Optional[RetryPolicy] = None,
        credentials: Optional[CredentialResolver] = None,
        client_factory: Optional[Callable[[Target], Any]] = None,
        sleep: Sleeper = event_sleep,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.credentials = credentials or CredentialResolver()
        self._client_factory = client_factory
        self._sleep = sleep
        self._endpoint_url = endpoint_url

    def _client(self, target: Target):
        if self._client_factory is not None:
            return self._client_factory(target)
        session = self.credentials.session_for(target.credential_ref)
        return s3_client(session, endpoint_url=self._endpoint_url)

    def _try_once(self, artifact: Artifact, target: Target, metadata: Dict[str, str],
                  cancel_event: Optional[threading.Event] = None) -> bool:
        """One HEAD + PUT round. Returns True when the object was already there."""
        handler = S3Handler(target.bucket, self._client(target))
        key = target.key_for(artifact.content_hash)
        if handler.stored_hash(key) == artifact.content_hash:
            logger.info(f"s3://{target.bucket}/{key} already holds {artifact.content_hash}, skipping PUT")
            return True
        if cancel_event is not None and cancel_event.is_set():
            raise Cancelled("upload cancelled before PUT")
        handler.put_bytes(key, artifact.content, artifact.content_hash, metadata=metadata)
        return False

    def upload(
        self,
        artifact: Artifact,
        target: Target,
        cancel_event: Optional[threading.Event] = None,
        on_attempt: Optional[AttemptCallback] = None,
        commit_sha: str = "",
    ) -> UploadAttempt:
        """Upload artifact to target and return the terminal UploadAttempt."""
        metadata = {"commit-sha": commit_sha} if commit_sha else {}
        state: RetryState = self.policy.start()

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return self._record(on_attempt, self._attempt(
                    artifact, target, state, UploadOutcome.CANCELLED, Cancelled("upload cancelled")))

            try:
                existed = self._try_once(artifact, target, metadata, cancel_event)
            except Cancelled as e:
                logger.warning(f"Upload to '{target.name}' cancelled: {e}")
                return self._record(on_attempt, self._attempt(artifact, target, state, UploadOutcome.CANCELLED, e))
            except TransientFailure as e:
                if not state.can_retry(self.policy):
                    logger.error(f"Upload to '{target.name}' gave up after {state.attempt} attempts: {e}")
                    return self._record(on_attempt, self._attempt(
                        artifact, target, state, UploadOutcome.FAILED, e))
                self._record(on_attempt, self._attempt(artifact, target, state, UploadOutcome.FAILED, e))
                logger.warning(
                    "Upload to '%s' failed (attempt %d/%d), retrying in %.2fs: %s",
                    target.name, state.attempt, self.policy.max_attempts, state.next_delay, e,
                )
                delay = state.next_delay
                state = state.advance(self.policy)
                if self._sleep(delay, cancel_event):
                    return self._record(on_attempt, self._attempt(
                        artifact, target, state, UploadOutcome.CANCELLED, Cancelled("upload cancelled during backoff")))
                continue
            except PermanentFailure as e:
                logger.error(f"Upload to '{target.name}' failed permanently: {e}")
                return self._record(on_attempt, self._attempt(artifact, target, state, UploadOutcome.FAILED, e))

            attempt = self._attempt(artifact, target, state, UploadOutcome.SUCCESS, skipped_existing=existed)
            logger.info(f"Upload to '{target.name}' succeeded on attempt {state.attempt}")
            return self._record(on_attempt, attempt)

    @staticmethod
    def _attempt(artifact: Artifact, target: Target, state: RetryState, outcome: UploadOutcome,
                 error: Optional[UploadError] = None, skipped_existing: bool = False) -> UploadAttempt:
        return UploadAttempt(
            target=target.name,
            artifact_hash=artifact.content_hash,
            attempt_number=state.attempt,
            outcome=outcome,
            error=str(error) if error is not None else None,
            error_kind=error.kind if error is not None else None,
            skipped_existing=skipped_existing,
            delay_before=state.slept,
        )

    @staticmethod
    def _record(on_attempt: Optional[AttemptCallback], attempt: UploadAttempt) -> UploadAttempt:
        if on_attempt is not None:
            on_attempt(attempt)
        return attempt
