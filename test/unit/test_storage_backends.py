"""Unit tests for the keyed bucket store backends."""

import pytest
from sqlalchemy.exc import OperationalError

from config import Settings
from errors import StorageError
from storage.factory import build_key_value_store
from storage.memory import InMemoryKeyValueStore
from storage.sqlalchemy_store import SqlAlchemyKeyValueStore


@pytest.fixture(params=["memory", "sqlalchemy"])
def kv_store(request, sqlite_session_factory):
    """Yield each backend implementation in turn."""
    if request.param == "memory":
        return InMemoryKeyValueStore()
    return SqlAlchemyKeyValueStore(sqlite_session_factory)


def test_set_get_and_replace(kv_store) -> None:
    """Values are stored, read back and replaced."""
    assert kv_store.get("medical_pro_patients") is None

    kv_store.set("medical_pro_patients", "[]")
    kv_store.set("medical_pro_patients", '[{"id": "p1"}]')

    assert kv_store.get("medical_pro_patients") == '[{"id": "p1"}]'


def test_delete_and_keys(kv_store) -> None:
    """Deleting reports existence and keys lists stored names."""
    kv_store.set("b", "1")
    kv_store.set("a", "2")

    assert sorted(kv_store.keys()) == ["a", "b"]
    assert kv_store.delete("a") is True
    assert kv_store.delete("a") is False
    assert kv_store.keys() == ["b"]


def test_non_string_values_are_rejected(kv_store) -> None:
    """Only serialized strings may be stored."""
    with pytest.raises(StorageError):
        kv_store.set("medical_pro_patients", ["not", "serialized"])


def test_sqlalchemy_store_persists_across_sessions(sqlite_session_factory) -> None:
    """Writes committed by one store are visible to another."""
    SqlAlchemyKeyValueStore(sqlite_session_factory).set("k", "v")

    assert SqlAlchemyKeyValueStore(sqlite_session_factory).get("k") == "v"


def test_sqlalchemy_errors_become_storage_errors() -> None:
    """Database failures surface as StorageError with the key attached."""

    class BrokenSession:
        def get(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        def close(self) -> None:
            pass

    store = SqlAlchemyKeyValueStore(lambda: BrokenSession())

    with pytest.raises(StorageError) as excinfo:
        store.get("medical_pro_users")

    assert excinfo.value.key == "medical_pro_users"


def test_factory_selects_backend(tmp_path) -> None:
    """The configured backend name picks the implementation."""
    memory_settings = Settings(storage={"backend": "memory"})
    sql_settings = Settings(
        storage={"backend": "sqlalchemy", "url": f"sqlite:///{tmp_path}/nested/store.db"}
    )

    assert isinstance(build_key_value_store(memory_settings), InMemoryKeyValueStore)
    store = build_key_value_store(sql_settings)
    assert isinstance(store, SqlAlchemyKeyValueStore)
    store.set("k", "v")
    assert (tmp_path / "nested" / "store.db").exists()
