from bookmarksync.sync.hashing import canonical_json, hash_dataset, hash_package, verify_package
from bookmarksync.sync.metadata import build_collection_package

from fakes import REMOTE_DEVICE, bookmark, category


def test_hash_ignores_record_and_key_order():
    a = bookmark("https://a.example", "A")
    b = bookmark("https://b.example", "B")
    work = category("Work", ["bm_a", "bm_b"])
    home = category("Home", ["bm_c"])
    reordered_a = dict(reversed(list(a.items())))

    first = hash_dataset(categories=[work, home], bookmarks=[a, b], settings={"x": 1, "y": {"z": 2}})
    second = hash_dataset(categories=[home, work], bookmarks=[b, reordered_a], settings={"y": {"z": 2}, "x": 1})

    assert first == second
    assert len(first) == 64


def test_hash_changes_with_content():
    a = bookmark("https://a.example", "A")
    renamed = dict(a, title="A2")
    assert hash_dataset(bookmarks=[a]) != hash_dataset(bookmarks=[renamed])


def test_hash_distinguishes_missing_from_empty_collection():
    assert hash_dataset(bookmarks=[]) != hash_dataset()
    assert hash_dataset(bookmarks=[]) != hash_dataset(categories=[])


def test_canonical_json_is_compact_and_sorted():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_verify_package_detects_tampering():
    package = build_collection_package("bookmarks", [bookmark("https://a.example", "A")], REMOTE_DEVICE)
    assert verify_package(package)
    assert hash_package(package) == package.metadata.data_hash

    tampered = package.model_copy(update={"bookmarks": [bookmark("https://evil.example", "X")]})
    assert not verify_package(tampered)
