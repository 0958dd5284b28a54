import os

import pytest

from warmer.sessions.storage import SessionStorage, SessionStorageError


def test_save_load_delete(tmp_path):
    storage = SessionStorage(str(tmp_path / "sessions"))

    assert storage.load("shop.test", "1") is None
    assert not storage.exists("shop.test", "1")

    storage.save("shop.test", "1", {"host": "shop.test", "cookies": []})

    assert storage.exists("shop.test", "1")
    assert storage.load("shop.test", "1") == {"host": "shop.test", "cookies": []}
    assert storage.load("shop.test") is None

    storage.delete("shop.test", "1")
    assert not storage.exists("shop.test", "1")
    storage.delete("shop.test", "1")


def test_file_names_per_key(tmp_path):
    storage = SessionStorage(str(tmp_path))

    assert os.path.basename(storage.path_for("shop.test")) == "shop.test-anon.json"
    assert os.path.basename(storage.path_for("shop.test", "4")) == "shop.test-cg-4.json"
    assert os.path.basename(storage.path_for("shop.test:8080", "4")) == "shop.test%3A8080-cg-4.json"


def test_similar_hosts_get_separate_files(tmp_path):
    storage = SessionStorage(str(tmp_path))
    storage.save("shop:8080", None, {"host": "shop:8080"})
    storage.save("shop_8080", None, {"host": "shop_8080"})

    assert storage.path_for("shop:8080") != storage.path_for("shop_8080")
    assert storage.load("shop:8080") == {"host": "shop:8080"}
    assert storage.load("shop_8080") == {"host": "shop_8080"}


def test_shorter_record_overwrites_longer_one(tmp_path):
    storage = SessionStorage(str(tmp_path))
    storage.save("shop.test", None, {"cookies": ["x" * 500]})

    storage.save("shop.test", None, {"cookies": []})

    assert storage.load("shop.test") == {"cookies": []}


def test_corrupt_record_is_treated_as_missing(tmp_path):
    storage = SessionStorage(str(tmp_path))
    with open(storage.path_for("shop.test"), "w") as f:
        f.write("{not json")

    assert storage.load("shop.test") is None


def test_unusable_directory_is_rejected(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")

    with pytest.raises(SessionStorageError):
        SessionStorage(str(blocker / "sessions"))
