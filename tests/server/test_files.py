import pytest

from nexachat.db.errors import InvalidInput
from nexachat.server.files import URL_PREFIX, FileStore


@pytest.fixture
def store(tmp_path):
    return FileStore(str(tmp_path / "uploads"), max_bytes=16)


def test_save_and_delete(store):
    stored = store.save("Holiday Photo.PNG", b"\x89PNG")
    assert stored.name == "Holiday Photo.PNG"
    assert stored.path.startswith(URL_PREFIX) and stored.path.endswith(".png")
    assert stored.size == 4
    assert store.resolve(stored.path).read_bytes() == b"\x89PNG"

    assert store.delete(stored.path) is True
    assert store.delete(stored.path) is False


def test_rejects_unknown_extension_and_oversize(store):
    with pytest.raises(InvalidInput):
        store.save("run.exe", b"MZ")
    with pytest.raises(InvalidInput):
        store.save("big.txt", b"x" * 17)


def test_resolve_stays_inside_root(store, tmp_path):
    assert store.resolve("/uploads/../../etc/passwd") == store.root / "passwd"
    assert store.resolve("../secret.txt").parent == store.root
