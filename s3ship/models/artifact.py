# s3ship/models/artifact.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Tuple


# One file inside the archive
@dataclass(frozen=True)
class FileEntry:
    path: str      # POSIX path inside the zip
    sha256: str    # digest of the raw file bytes
    size: int


# Packaged, content-addressed unit of deployment
@dataclass(frozen=True)
class Artifact:
    """
    Immutable zip payload shared read-only by every uploader in a run.
    created_at is informational and never part of the archive bytes.
    """
    content: bytes = field(repr=False)
    content_hash: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    manifest: Tuple[FileEntry, ...] = ()

    @property
    def size(self) -> int:
        return len(self.content)

    def describe(self) -> Dict[str, Any]:
        """Summary without the payload, safe to log or write to a report."""
        return {
            "content_hash": self.content_hash,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
            "files": [asdict(entry) for entry in self.manifest],
        }


__all__ = ["FileEntry", "Artifact"]
