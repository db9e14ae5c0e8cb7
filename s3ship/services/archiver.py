# s3ship/services/archiver.py
from __future__ import annotations

import hashlib
import io
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Sequence, Tuple, Union

from s3ship.errors import InvalidInput
from s3ship.models.artifact import Artifact, FileEntry

logger = logging.getLogger(__name__)

FileContent = Union[bytes, str, Path]

# zip cannot represent dates before 1980; any fixed value keeps output stable
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
FILE_MODE = 0o100644
CREATE_SYSTEM_UNIX = 3


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _normalize_path(raw: Union[str, Path]) -> str:
    text = str(raw).replace("\\", "/")
    path = PurePosixPath(text)
    if not text or text.endswith("/"):
        raise InvalidInput(f"archive path must name a file: '{raw}'")
    if path.is_absolute():
        raise InvalidInput(f"archive path must be relative: '{raw}'")
    if ".." in path.parts:
        raise InvalidInput(f"archive path escapes the archive root: '{raw}'")
    normalized = "/".join(part for part in path.parts if part != ".")
    if not normalized:
        raise InvalidInput(f"archive path must name a file: '{raw}'")
    return normalized


def _read_content(path: str, content: FileContent) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    if isinstance(content, Path):
        try:
            return content.read_bytes()
        except OSError as e:
            raise InvalidInput(f"cannot read '{content}' for '{path}': {e}") from e
    raise InvalidInput(f"unsupported content type for '{path}': {type(content).__name__}")


def _add_bytes(zf: zipfile.ZipFile, arcname: str, data: bytes) -> None:
    info = zipfile.ZipInfo(arcname, date_time=FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = CREATE_SYSTEM_UNIX
    info.external_attr = FILE_MODE << 16
    zf.writestr(info, data)


def pack(files: Sequence[Tuple[Union[str, Path], FileContent]]) -> Artifact:
    """
    Package (path, content) pairs into a deterministic zip Artifact.

    Entries are written in sorted path order with fixed timestamps and
    permissions, so the same paths and bytes always give the same hash.
    """
    files = list(files)
    if not files:
        raise InvalidInput("nothing to pack: the file list is empty")

    entries = {}
    for raw_path, content in files:
        path = _normalize_path(raw_path)
        if path in entries:
            raise InvalidInput(f"duplicate archive path: '{path}'")
        entries[path] = _read_content(path, content)

    buf = io.BytesIO()
    manifest: List[FileEntry] = []
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(entries):
            data = entries[path]
            _add_bytes(zf, path, data)
            manifest.append(FileEntry(path=path, sha256=_sha256(data), size=len(data)))

    content = buf.getvalue()
    artifact = Artifact(content=content, content_hash=_sha256(content), manifest=tuple(manifest))
    logger.info(f"Packed {len(manifest)} files into {artifact.size} bytes (sha256 {artifact.content_hash})")
    return artifact


def collect_files(root: Union[str, Path], patterns: Iterable[str] = ("**/*",),
                  exclude: Iterable[str] = ()) -> List[Tuple[str, Path]]:
    """List files under root as (relative posix path, absolute path) pairs."""
    root = Path(root)
    if not root.is_dir():
        raise InvalidInput(f"source directory not found: {root}")

    exclude = list(exclude)
    found = set()
    for pattern in patterns:
        for p in root.glob(pattern):
            if not p.is_file():
                continue
            rel = p.relative_to(root).as_posix()
            if any(PurePosixPath(rel).match(ex) for ex in exclude):
                continue
            found.add(rel)
    return [(rel, root / rel) for rel in sorted(found)]


def pack_directory(root: Union[str, Path], patterns: Iterable[str] = ("**/*",),
                   exclude: Iterable[str] = ()) -> Artifact:
    """Pack every file under root, keyed by its path relative to root."""
    return pack(collect_files(root, patterns, exclude))


def write_artifact(artifact: Artifact, path: Union[str, Path]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(artifact.content)
    logger.info("Wrote artifact %s to %s", artifact.content_hash, out)
    return out
