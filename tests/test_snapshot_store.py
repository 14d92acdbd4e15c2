import pytest

from services.snapshot_store import SnapshotAlreadyExists, SnapshotNotFound, SnapshotStore


def test_write_then_read_round_trip(store: SnapshotStore):
    assert not store.exists("2024010100")

    path = store.write("2024010100", b'[{"header": {}}]')

    assert path == store.root / "2024010100.json"
    assert store.exists("2024010100")
    assert store.read("2024010100") == b'[{"header": {}}]'


def test_second_write_fails_and_keeps_first_content(store: SnapshotStore):
    store.write("2024010106", b"first")

    with pytest.raises(SnapshotAlreadyExists) as excinfo:
        store.write("2024010106", b"second")

    assert excinfo.value.key == "2024010106"
    assert store.read("2024010106") == b"first"


def test_read_missing_key_raises(store: SnapshotStore):
    with pytest.raises(SnapshotNotFound):
        store.read("2024010112")


def test_write_leaves_no_temporary_files(store: SnapshotStore):
    store.write("2024010100", b"a")
    with pytest.raises(SnapshotAlreadyExists):
        store.write("2024010100", b"b")

    assert sorted(p.name for p in store.root.iterdir()) == ["2024010100.json"]


def test_keys_ignore_foreign_files(store: SnapshotStore):
    store.write("2024010112", b"{}")
    store.write("2024010100", b"{}")
    (store.root / ".2024010118.abc.tmp").write_bytes(b"partial")
    (store.root / "notes.json").write_text("{}")
    (store.root / "2024010106.f000").write_bytes(b"raw")

    assert store.keys() == ["2024010100", "2024010112"]
    assert not store.exists("2024010118")


def test_stats_summarize_contents(store: SnapshotStore):
    assert store.stats()["count"] == 0

    store.write("2024010100", b"abc")
    store.write("2024010206", b"defgh")

    stats = store.stats()
    assert stats["count"] == 2
    assert stats["bytes"] == 8
    assert stats["oldest_key"] == "2024010100"
    assert stats["newest_key"] == "2024010206"


@pytest.mark.parametrize("key", ["../../etc", "2024-01-01", "", "20240101000"])
def test_invalid_keys_are_rejected(store: SnapshotStore, key):
    with pytest.raises(ValueError):
        store.exists(key)
    with pytest.raises(ValueError):
        store.write(key, b"x")
