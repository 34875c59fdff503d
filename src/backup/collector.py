"""Read registry buckets from the keyed store into a backup payload."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable

from errors import BackupCreationError
from storage.buckets import AUTH_BUCKET, AUTH_CAPTURED_FIELDS, BUCKET_REGISTRY, BucketDefinition
from storage.interface import KeyValueStore

logger = logging.getLogger(__name__)

BucketPredicate = Callable[[str], bool]


def is_empty_contents(value: Any) -> bool:
    """Return True for absent contents or an empty list, mapping or string."""
    if value is None:
        return True
    if isinstance(value, (list, dict, str)):
        return len(value) == 0
    return False


def decode_bucket(raw: str | None) -> Any:
    """Decode a stored bucket blob; blank blobs decode to ``None``."""
    if raw is None or not raw.strip():
        return None
    return json.loads(raw)


def sanitize_auth(value: Any) -> dict[str, Any] | None:
    """Keep only identity and timestamp fields of the auth bucket."""
    if not isinstance(value, dict):
        return None
    return {key: value[key] for key in AUTH_CAPTURED_FIELDS if key in value}


class SnapshotCollector:
    """Assemble ``{bucket name: contents}`` from the registry buckets."""

    def __init__(
        self,
        backend: KeyValueStore,
        registry: Iterable[BucketDefinition] = BUCKET_REGISTRY,
    ) -> None:
        self._backend = backend
        self._registry = tuple(registry)

    @property
    def bucket_names(self) -> list[str]:
        return [bucket.name for bucket in self._registry]

    def collect(self, include: BucketPredicate | None = None) -> dict[str, Any]:
        """Return the payload for buckets accepted by ``include``.

        Empty or absent buckets are omitted. Raises ``BackupCreationError``
        when a bucket holds contents that cannot be decoded.
        """
        payload: dict[str, Any] = {}
        for bucket in self._registry:
            if include is not None and not include(bucket.name):
                continue
            raw = self._backend.get(bucket.storage_key)
            try:
                contents = decode_bucket(raw)
            except json.JSONDecodeError as exc:
                raise BackupCreationError(
                    f"bucket {bucket.name} ({bucket.storage_key}) holds undecodable data: {exc}"
                ) from exc
            if bucket.name == AUTH_BUCKET:
                contents = sanitize_auth(contents)
            if is_empty_contents(contents):
                continue
            payload[bucket.name] = contents
        logger.debug("Collected buckets: %s", ", ".join(payload) or "<none>")
        return payload
