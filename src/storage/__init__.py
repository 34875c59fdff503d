"""Keyed bucket store collaborator used by the audit and backup engines."""

from storage.buckets import BUCKET_REGISTRY, BucketDefinition, storage_key_for
from storage.factory import build_key_value_store
from storage.interface import KeyValueStore
from storage.memory import InMemoryKeyValueStore
from storage.sqlalchemy_store import SqlAlchemyKeyValueStore

__all__ = [
    "BUCKET_REGISTRY",
    "BucketDefinition",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SqlAlchemyKeyValueStore",
    "build_key_value_store",
    "storage_key_for",
]
