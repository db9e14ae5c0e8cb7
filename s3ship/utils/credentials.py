# s3ship/utils/credentials.py
from __future__ import annotations

import os
from typing import Callable, Mapping, Optional

import boto3
from botocore.exceptions import ProfileNotFound

from s3ship.errors import PermanentFailure


def _region() -> str:
    return os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or "us-east-1"


class CredentialResolver:
    """
    Turns a target's credentialRef into a boto3 Session at upload time.

    Supported references:
      default          boto3 default chain (env vars, shared config, instance role)
      profile:<name>   named profile from ~/.aws/config
      env:<PREFIX>     <PREFIX>_AWS_ACCESS_KEY_ID / <PREFIX>_AWS_SECRET_ACCESS_KEY
                       and optionally <PREFIX>_AWS_SESSION_TOKEN

    Error messages name the reference scheme only, never the secret values.
    """

    def __init__(
        self,
        *,
        region: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        session_factory: Callable[..., boto3.Session] = boto3.Session,
    ) -> None:
        self.region = region or _region()
        self._environ = environ if environ is not None else os.environ
        self._session_factory = session_factory

    def session_for(self, credential_ref: str) -> boto3.Session:
        ref = (credential_ref or "default").strip()
        scheme, _, value = ref.partition(":")

        if scheme == "default" and not value:
            return self._session_factory(region_name=self.region)

        if scheme == "profile" and value:
            try:
                return self._session_factory(profile_name=value, region_name=self.region)
            except ProfileNotFound as e:
                raise PermanentFailure("credential profile not found") from e

        if scheme == "env" and value:
            prefix = value.upper()
            key_id = self._environ.get(f"{prefix}_AWS_ACCESS_KEY_ID")
            secret = self._environ.get(f"{prefix}_AWS_SECRET_ACCESS_KEY")
            if not key_id or not secret:
                raise PermanentFailure("credentials for env reference are not set")
            return self._session_factory(
                aws_access_key_id=key_id,
                aws_secret_access_key=secret,
                aws_session_token=self._environ.get(f"{prefix}_AWS_SESSION_TOKEN"),
                region_name=self.region,
            )

        raise PermanentFailure("unsupported credential reference")


__all__ = ["CredentialResolver"]
