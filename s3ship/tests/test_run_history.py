import pytest

from s3ship.models.deployment import DeploymentRun, RunStatus, UploadAttempt, UploadOutcome
from s3ship.models.target import TriggerContext
from s3ship.services.run_history import RunHistory


@pytest.fixture(scope="function")
def history():
    """Fresh in-memory SQLite history for each test."""
    return RunHistory("sqlite:///:memory:")


def _finished_run(branch="main"):
    run = DeploymentRun(trigger=TriggerContext(branch=branch, commit_sha="abc"))
    run.artifact_hash = "f00d"
    run.transition(RunStatus.PACKING)
    run.transition(RunStatus.UPLOADING)
    run.add_attempt(UploadAttempt(target="staging", artifact_hash="f00d", attempt_number=1,
                                  outcome=UploadOutcome.FAILED, error="SlowDown", error_kind="transient"))
    run.add_attempt(UploadAttempt(target="staging", artifact_hash="f00d", attempt_number=2,
                                  outcome=UploadOutcome.SUCCESS, delay_before=0.5))
    run.transition(RunStatus.SUCCEEDED)
    return run


def test_record_and_read_back(history):
    run = _finished_run()
    history.record_run(run)

    [stored] = history.recent()
    assert stored["run_id"] == run.run_id
    assert stored["status"] == "Succeeded"
    assert stored["commit_sha"] == "abc"
    assert [(a["attempt_number"], a["outcome"]) for a in stored["attempts"]] == [(1, "failed"), (2, "success")]


def test_recent_limit(history):
    for branch in ("main", "main", "release"):
        history.record_run(_finished_run(branch))
    assert len(history.recent(limit=2)) == 2


def test_terminal_run_cannot_transition_again():
    run = _finished_run()
    with pytest.raises(RuntimeError):
        run.transition(RunStatus.UPLOADING)
