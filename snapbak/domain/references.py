"""Remote object identity for snapshot files."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import PurePath, PurePosixPath


class FreshenResult(enum.Enum):
    """Outcome of an attempt to refresh an existing remote object."""

    FRESHENED = "freshened"
    UPLOAD_REQUIRED = "upload_required"


@dataclass(frozen=True, slots=True)
class RemoteObjectReference:
    """A logical object key paired with the path the backend stores it under.

    Equality and hashing only consider ``canonical_path``: two references with
    the same canonical path denote the same remote object.
    """

    object_key: PurePosixPath = field(compare=False)
    canonical_path: str


def normalize_object_key(local_key: PurePath | str) -> PurePosixPath:
    """Convert a local key (any path flavour) into posix segments.

    Raises:
        ValueError: If the key is empty, absolute or contains ``.``/``..``
            segments, since those would make the remote path ambiguous.
    """
    if isinstance(local_key, str):
        parts = tuple(PurePosixPath(local_key).parts)
    else:
        parts = tuple(local_key.parts)
    if not parts:
        raise ValueError("object key must not be empty")
    if PurePosixPath(*parts).is_absolute():
        raise ValueError(f"object key must be relative: {local_key!s}")
    for part in parts:
        if part in {".", ".."} or "/" in part or "\\" in part:
            raise ValueError(f"invalid segment {part!r} in object key {local_key!s}")
    return PurePosixPath(*parts)


def resolve_remote_path(cluster_id: str, backup_id: str, object_key: PurePosixPath) -> str:
    return f"{cluster_id}/{backup_id}/{object_key.as_posix()}"


def object_key_to_remote_reference(
    local_key: PurePath | str, *, cluster_id: str, backup_id: str
) -> RemoteObjectReference:
    object_key = normalize_object_key(local_key)
    return RemoteObjectReference(
        object_key=object_key,
        canonical_path=resolve_remote_path(cluster_id, backup_id, object_key),
    )
