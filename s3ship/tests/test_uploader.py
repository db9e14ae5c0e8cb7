import threading

import boto3
from botocore.exceptions import ClientError, EndpointConnectionError
from moto import mock_aws

from s3ship.models.deployment import UploadOutcome
from s3ship.models.target import Target
from s3ship.services.archiver import pack
from s3ship.services.retry_policy import RetryPolicy
from s3ship.services.uploader import Uploader
from s3ship.utils.credentials import CredentialResolver
from s3ship.utils.s3_handler import HASH_METADATA_KEY

ARTIFACT = pack([("index.html", b"<h1>release</h1>")])
TARGET = Target(name="staging", destination_uri="s3://site-staging/releases/site.zip")


# -------- fakes --------

def _client_error(code, status, op):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


class FakeS3:
    """In-memory S3 that can fail the next N puts with scripted errors."""

    def __init__(self, put_failures=()):
        self.objects = {}
        self.put_failures = list(put_failures)
        self.put_calls = 0

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise _client_error("404", 404, "HeadObject")
        return {"Metadata": self.objects[(Bucket, Key)]["Metadata"]}

    def put_object(self, Bucket, Key, Body, Metadata=None, **kwargs):
        self.put_calls += 1
        if self.put_failures:
            raise self.put_failures.pop(0)
        self.objects[(Bucket, Key)] = {"Body": Body, "Metadata": dict(Metadata or {})}
        return {"ResponseMetadata": {"HTTPStatusCode": 200}}


class FakeSleep:
    def __init__(self, cancel_after=None):
        self.delays = []
        self.cancel_after = cancel_after

    def __call__(self, delay, cancel_event=None):
        self.delays.append(delay)
        return self.cancel_after is not None and len(self.delays) >= self.cancel_after


def make_uploader(client, sleep=None, **policy):
    policy.setdefault("max_attempts", 5)
    policy.setdefault("base_delay", 0.5)
    return Uploader(
        policy=RetryPolicy(**policy),
        client_factory=lambda target: client,
        sleep=sleep or FakeSleep(),
    )


# -------- tests --------

def test_success_first_try():
    client = FakeS3()
    attempt = make_uploader(client).upload(ARTIFACT, TARGET, commit_sha="abc123")

    assert attempt.outcome is UploadOutcome.SUCCESS
    assert attempt.attempt_number == 1
    stored = client.objects[("site-staging", "releases/site.zip")]
    assert stored["Body"] == ARTIFACT.content
    assert stored["Metadata"] == {HASH_METADATA_KEY: ARTIFACT.content_hash, "commit-sha": "abc123"}


def test_three_transient_failures_then_success():
    client = FakeS3(put_failures=[
        _client_error("SlowDown", 503, "PutObject"),
        EndpointConnectionError(endpoint_url="https://s3.amazonaws.com"),
        _client_error("InternalError", 500, "PutObject"),
    ])
    sleep = FakeSleep()
    seen = []
    attempt = make_uploader(client, sleep).upload(ARTIFACT, TARGET, on_attempt=seen.append)

    assert attempt.outcome is UploadOutcome.SUCCESS
    assert attempt.attempt_number == 4
    assert client.put_calls == 4
    assert [a.attempt_number for a in seen] == [1, 2, 3, 4]
    assert [a.outcome for a in seen] == [UploadOutcome.FAILED] * 3 + [UploadOutcome.SUCCESS]
    assert len(sleep.delays) == 3
    assert all(later > earlier for earlier, later in zip(sleep.delays, sleep.delays[1:]))
    assert [a.delay_before for a in seen] == [0.0] + sleep.delays


def test_transient_failures_exhaust_attempts():
    client = FakeS3(put_failures=[_client_error("SlowDown", 503, "PutObject")] * 10)
    sleep = FakeSleep()
    attempt = make_uploader(client, sleep, max_attempts=3).upload(ARTIFACT, TARGET)

    assert attempt.outcome is UploadOutcome.FAILED
    assert attempt.error_kind == "transient"
    assert attempt.attempt_number == 3
    assert len(sleep.delays) == 2


def test_access_denied_is_not_retried():
    client = FakeS3(put_failures=[_client_error("InvalidAccessKeyId", 403, "PutObject")])
    sleep = FakeSleep()
    attempt = make_uploader(client, sleep).upload(ARTIFACT, TARGET)

    assert attempt.outcome is UploadOutcome.FAILED
    assert attempt.error_kind == "permanent"
    assert attempt.attempt_number == 1
    assert client.put_calls == 1
    assert sleep.delays == []


def test_unknown_credential_profile_is_permanent(tmp_path, monkeypatch):
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "credentials"))
    target = Target(name="prod", destination_uri="s3://site-prod/", credential_ref="profile:does-not-exist")
    sleep = FakeSleep()
    uploader = Uploader(policy=RetryPolicy(max_attempts=5), credentials=CredentialResolver(region="us-east-1"),
                        sleep=sleep)

    attempt = uploader.upload(ARTIFACT, target)
    assert attempt.outcome is UploadOutcome.FAILED
    assert attempt.error_kind == "permanent"
    assert attempt.attempt_number == 1
    assert "does-not-exist" not in (attempt.error or "")
    assert sleep.delays == []


def test_already_published_object_is_not_rewritten():
    client = FakeS3()
    uploader = make_uploader(client)
    first = uploader.upload(ARTIFACT, TARGET)
    second = uploader.upload(ARTIFACT, TARGET)

    assert first.succeeded and second.succeeded
    assert not first.skipped_existing
    assert second.skipped_existing
    assert client.put_calls == 1


def test_cancelled_before_start():
    client = FakeS3()
    cancel = threading.Event()
    cancel.set()
    attempt = make_uploader(client).upload(ARTIFACT, TARGET, cancel_event=cancel)

    assert attempt.outcome is UploadOutcome.CANCELLED
    assert client.put_calls == 0


def test_cancel_during_backoff_stops_retrying():
    client = FakeS3(put_failures=[_client_error("SlowDown", 503, "PutObject")] * 10)
    sleep = FakeSleep(cancel_after=1)
    attempt = make_uploader(client, sleep).upload(ARTIFACT, TARGET, cancel_event=threading.Event())

    assert attempt.outcome is UploadOutcome.CANCELLED
    assert attempt.error_kind == "cancelled"
    assert client.put_calls == 1


def test_cancel_after_head_skips_put():
    cancel = threading.Event()

    class CancelOnHead(FakeS3):
        def head_object(self, Bucket, Key):
            cancel.set()
            return super().head_object(Bucket, Key)

    client = CancelOnHead()
    seen = []
    attempt = make_uploader(client).upload(ARTIFACT, TARGET, cancel_event=cancel, on_attempt=seen.append)

    assert attempt.outcome is UploadOutcome.CANCELLED
    assert attempt.error_kind == "cancelled"
    assert attempt.attempt_number == 1
    assert client.put_calls == 0
    assert [a.outcome for a in seen] == [UploadOutcome.CANCELLED]


@mock_aws
def test_idempotent_upload_against_s3(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_ENDPOINT_URL_S3", raising=False)

    s3 = boto3.client("s3", region_name="us-east-1")
    s3.create_bucket(Bucket="site-staging")
    target = Target(name="staging", destination_uri="s3://site-staging/releases/")

    uploader = Uploader(policy=RetryPolicy(max_attempts=2), credentials=CredentialResolver(region="us-east-1"))
    first = uploader.upload(ARTIFACT, target)
    second = uploader.upload(ARTIFACT, target)

    assert first.outcome is UploadOutcome.SUCCESS
    assert second.outcome is UploadOutcome.SUCCESS
    assert second.skipped_existing

    listed = s3.list_objects_v2(Bucket="site-staging", Prefix="releases/").get("Contents", [])
    assert [o["Key"] for o in listed] == [f"releases/{ARTIFACT.content_hash}.zip"]
    head = s3.head_object(Bucket="site-staging", Key=listed[0]["Key"])
    assert head["Metadata"][HASH_METADATA_KEY] == ARTIFACT.content_hash


@mock_aws
def test_missing_bucket_is_permanent(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.delenv("AWS_ENDPOINT_URL_S3", raising=False)
    sleep = FakeSleep()
    uploader = Uploader(policy=RetryPolicy(max_attempts=4), credentials=CredentialResolver(region="us-east-1"),
                        sleep=sleep)

    attempt = uploader.upload(ARTIFACT, Target(name="x", destination_uri="s3://no-such-bucket/site.zip"))
    assert attempt.outcome is UploadOutcome.FAILED
    assert attempt.error_kind == "permanent"
    assert attempt.attempt_number == 1
    assert sleep.delays == []
