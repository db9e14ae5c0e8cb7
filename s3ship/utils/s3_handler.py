import base64
import hashlib
import logging
import os
from typing import Dict, Optional

from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
)

from s3ship.errors import PermanentFailure, TransientFailure

logger = logging.getLogger(__name__)

HASH_METADATA_KEY = "content-sha256"

# Error codes S3 (and its STS-backed auth) returns for throttling or
# server-side trouble. Anything else from a ClientError is permanent.
TRANSIENT_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "RequestTimeout",
    "RequestTimeoutException",
    "InternalError",
    "ServiceUnavailable",
    "OperationAborted",
}

# The uploader owns the retry policy, so botocore must not retry on its own
NO_RETRY_CONFIG = Config(retries={"total_max_attempts": 1})


def s3_client(session, endpoint_url: Optional[str] = None):
    """Build an S3 client from a boto3 Session with botocore retries off."""
    kwargs = {"config": NO_RETRY_CONFIG}
    ep = endpoint_url or os.environ.get("AWS_ENDPOINT_URL_S3")
    if ep:
        kwargs["endpoint_url"] = ep
    return session.client("s3", **kwargs)


def classify_error(e: Exception, action: str):
    """Map a botocore exception onto TransientFailure or PermanentFailure."""
    if isinstance(e, ClientError):
        error = e.response.get("Error", {})
        code = error.get("Code", "")
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        message = f"{action} failed: {code or status} {error.get('Message', '')}".strip()
        if code in TRANSIENT_CODES or status == 429 or status >= 500:
            return TransientFailure(message)
        return PermanentFailure(message)
    if isinstance(e, (NoCredentialsError, PartialCredentialsError, ProfileNotFound)):
        return PermanentFailure(f"{action} failed: credentials unavailable")
    if isinstance(e, (BotoConnectionError, HTTPClientError)):
        return TransientFailure(f"{action} failed: {e}")
    return PermanentFailure(f"{action} failed: {e}")


class S3Handler:
    def __init__(self, bucket_name, client):
        self.bucket_name = bucket_name
        self.s3 = client

    def head(self, key: str) -> Optional[Dict[str, str]]:
        """Return the object's user metadata, or None when it does not exist."""
        try:
            response = self.s3.head_object(Bucket=self.bucket_name, Key=key)
            return response.get("Metadata", {}) or {}
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if code in ("404", "NoSuchKey", "NotFound") or status == 404:
                return None
            raise classify_error(e, f"HEAD s3://{self.bucket_name}/{key}") from e
        except BotoCoreError as e:
            raise classify_error(e, f"HEAD s3://{self.bucket_name}/{key}") from e

    def stored_hash(self, key: str) -> Optional[str]:
        meta = self.head(key)
        if meta is None:
            return None
        return meta.get(HASH_METADATA_KEY)

    def put_bytes(self, key: str, body: bytes, content_hash: str,
                  content_type: str = "application/zip", metadata: Optional[Dict[str, str]] = None):
        """
        Single-shot PUT of the whole body. S3 publishes the object only once the
        request completes, so readers never observe a partial write.
        """
        meta = dict(metadata or {})
        meta[HASH_METADATA_KEY] = content_hash
        md5 = base64.b64encode(hashlib.md5(body).digest()).decode("ascii")
        try:
            logger.info(f"Uploading object to s3://{self.bucket_name}/{key}")
            response = self.s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=body,
                ContentMD5=md5,
                ContentType=content_type,
                Metadata=meta,
            )
            status_code = response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if status_code == 200:
                logger.info(f"Successfully uploaded {key} to {self.bucket_name}")
            else:
                logger.warning(f"Upload returned status code {status_code}")
            return response
        except (ClientError, BotoCoreError) as e:
            raise classify_error(e, f"PUT s3://{self.bucket_name}/{key}") from e
