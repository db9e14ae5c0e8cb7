# s3ship/models/target.py
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import FrozenSet, Optional, Tuple
from urllib.parse import urlparse

from s3ship.errors import ConfigError


def parse_s3_uri(uri: str) -> Tuple[str, str]:
    """Split 's3://bucket/some/key' into ('bucket', 'some/key')."""
    parsed = urlparse(uri)
    if parsed.scheme != "s3" or not parsed.netloc:
        raise ConfigError(f"destinationURI must look like s3://bucket/key, got '{uri}'")
    return parsed.netloc, parsed.path.lstrip("/")


# Incoming trigger from the CI runner
@dataclass(frozen=True)
class TriggerContext:
    branch: str
    commit_sha: str = ""
    environment_override: Optional[str] = None


# One deployment destination
@dataclass(frozen=True)
class Target:
    """
    credential_ref is an opaque handle resolved by the uploader at call time.
    It is excluded from repr so it never ends up in a log line.
    """
    name: str
    destination_uri: str
    credential_ref: str = field(default="default", repr=False)
    depends_on: FrozenSet[str] = frozenset()
    branch_pattern: str = "*"
    environment: Optional[str] = None

    @property
    def bucket(self) -> str:
        return parse_s3_uri(self.destination_uri)[0]

    @property
    def is_prefix(self) -> bool:
        # trailing slash (or bare bucket) -> content-addressed key under a prefix
        key = parse_s3_uri(self.destination_uri)[1]
        return key == "" or key.endswith("/")

    def key_for(self, content_hash: str) -> str:
        key = parse_s3_uri(self.destination_uri)[1]
        if self.is_prefix:
            return f"{key}{content_hash}.zip"
        return key

    def matches_branch(self, branch: str) -> bool:
        return fnmatchcase(branch, self.branch_pattern)

    def matches_environment(self, environment: str) -> bool:
        return environment in (self.environment, self.name)


__all__ = ["parse_s3_uri", "TriggerContext", "Target"]
