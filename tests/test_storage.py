import json
import threading

import pytest

from errors import LockTimeoutError, StorageError, StorageReadError, ValidationError
from storage import FileStore, serialize


def test_initialize_creates_empty_collections(tmp_path):
    store = FileStore(tmp_path / "data")
    store.initialize()
    for name in ("transactions", "budgets", "users"):
        assert json.loads((tmp_path / "data" / f"{name}.json").read_text()) == []


def test_initialize_leaves_corrupt_file_alone(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    (data / "budgets.json").write_text("{broken")
    FileStore(data).initialize()
    assert (data / "budgets.json").read_text() == "{broken"


def test_missing_file_reads_as_empty(tmp_path):
    store = FileStore(tmp_path)
    assert store.read("transactions") == []


def test_write_then_read(store):
    records = [{"id": "a", "amount": 10}, {"id": "b", "amount": 20.5}]
    store.write("transactions", records)
    assert store.read("transactions") == records


def test_rewrite_is_idempotent(store):
    store.write("budgets", [{"limit": 5, "category": "food", "id": "x"}])
    path = store.path_for("budgets")
    first = path.read_text(encoding="utf-8")
    store.write("budgets", store.read("budgets"))
    assert path.read_text(encoding="utf-8") == first


def test_serialization_is_sorted_and_indented():
    text = serialize([{"b": 1, "a": 2}])
    assert text.index('"a"') < text.index('"b"')
    assert '\n    "a": 2' in text
    assert text.endswith("\n")


def test_write_rejects_non_list(store):
    with pytest.raises(ValidationError):
        store.write("transactions", {"id": "a"})


def test_invalid_collection_name(store):
    with pytest.raises(ValidationError):
        store.read("../etc/passwd")


def test_no_temp_files_left_behind(store):
    store.write("transactions", [{"id": "a"}])
    store.write("transactions", [{"id": "b"}])
    leftovers = [p.name for p in store.data_dir.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_failed_write_cleans_up_and_keeps_old_content(store, monkeypatch):
    store.write("transactions", [{"id": "old"}])

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("storage.os.replace", boom)
    with pytest.raises(StorageError) as excinfo:
        store.write("transactions", [{"id": "new"}])

    assert excinfo.value.file_id == "transactions"
    assert isinstance(excinfo.value.cause, OSError)
    assert [p for p in store.data_dir.iterdir() if p.name.endswith(".tmp")] == []
    assert store.read("transactions") == [{"id": "old"}]


@pytest.mark.parametrize("content", ["{not json", '{"id": "a"}', "42"])
def test_corrupt_file_fails_loudly(store, content):
    store.path_for("transactions").write_text(content, encoding="utf-8")
    with pytest.raises(StorageReadError):
        store.read("transactions")


def test_invalid_utf8_fails_loudly(store):
    store.path_for("budgets").write_bytes(b"\xff\xfe[]")
    with pytest.raises(StorageReadError):
        store.read("budgets")


def test_lenient_read_degrades_to_empty(store):
    store.path_for("transactions").write_text("{not json", encoding="utf-8")
    assert store.read("transactions", lenient=True) == []

    lenient_store = FileStore(store.data_dir, lenient_reads=True)
    assert lenient_store.read("transactions") == []


def test_lock_timeout(tmp_path):
    store = FileStore(tmp_path, lock_timeout=0.05)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with store.locked("transactions"):
            held.set()
            release.wait(2)

    t = threading.Thread(target=holder)
    t.start()
    held.wait(2)
    try:
        with pytest.raises(LockTimeoutError):
            store.write("transactions", [])
    finally:
        release.set()
        t.join()

    store.write("transactions", [{"id": "after"}])
    assert store.read("transactions") == [{"id": "after"}]


def test_lock_is_reentrant_within_critical_section(store):
    with store.locked("budgets"):
        store.write("budgets", [{"id": "a"}])
    assert store.read("budgets") == [{"id": "a"}]


def test_stores_do_not_share_locks(tmp_path):
    a = FileStore(tmp_path / "a", lock_timeout=0.05)
    b = FileStore(tmp_path / "b", lock_timeout=0.05)
    (tmp_path / "b").mkdir()
    with a.locked("transactions"):
        b.write("transactions", [])


def test_concurrent_writes_never_corrupt(store):
    def writer(n):
        for i in range(20):
            store.write("transactions", [{"id": f"{n}-{i}", "amount": i}])

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    records = store.read("transactions")
    assert len(records) == 1
    assert records[0]["id"].endswith("-19")


def test_unencodable_text_is_a_storage_error(store):
    store.write("transactions", [{"id": "kept"}])
    with pytest.raises(StorageError):
        store.write("transactions", [{"id": "bad", "description": "abc\ud800def"}])
    assert store.read("transactions") == [{"id": "kept"}]
    assert not list(store.data_dir.glob("*.tmp"))
