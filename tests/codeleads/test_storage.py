"""
Tests for upload byte storage
"""
import pytest

from src.codeleads.exceptions import NotFoundError, ValidationError
from src.codeleads.storage import LocalByteStore, sanitize_filename


@pytest.mark.parametrize("raw, expected", [
    ("St. Louis (MO).csv", "St_Louis_MO.csv"),
    ("march violations.csv", "march_violations.csv"),
    ("a/b\\c.csv", "a-b-c.csv"),
    ("'quoted'.CSV", "quoted.CSV"),
    ("no_extension", "no_extension"),
    ("(  ).csv", "upload.csv"),
])
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


def test_put_and_get(store):
    handle = store.put("user-1", "march list.csv", b"address\n1 Main St\n")

    assert handle.startswith("user-1/")
    assert handle.endswith("-march_list.csv")
    assert store.get(handle) == b"address\n1 Main St\n"
    assert store.exists(handle)


def test_put_with_prefix(store):
    handle = store.put("user-1", "Austin_TX.csv", b"x", prefix="splits")
    assert handle.startswith("user-1/splits/")


def test_missing_handle(store):
    with pytest.raises(NotFoundError):
        store.get("user-1/nothing.csv")
    assert store.exists("user-1/nothing.csv") is False


def test_handle_cannot_escape_root(tmp_path):
    store = LocalByteStore(str(tmp_path / "root"))
    (tmp_path / "secret.txt").write_bytes(b"secret")

    with pytest.raises(ValidationError):
        store.get("../secret.txt")
