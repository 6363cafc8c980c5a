from .references import (
    FreshenResult,
    RemoteObjectReference,
    normalize_object_key,
    object_key_to_remote_reference,
    resolve_remote_path,
)

__all__ = [
    "FreshenResult",
    "RemoteObjectReference",
    "normalize_object_key",
    "object_key_to_remote_reference",
    "resolve_remote_path",
]
