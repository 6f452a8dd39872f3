import asyncio

import pytest

from conftest import MemoryStorage
from storage import PendingUpload, StorageError, delete_image, object_path, path_from_url, public_url, upload_batch


def test_object_path_convention():
    assert object_path("shoe.png", 2, now_ms=1718000000000) == "products/1718000000000-2-shoe.png"


def test_url_parses_back_to_path():
    url = public_url("https://shop.test/", "products/1-0-my shoe.png")
    assert url == "https://shop.test/o/products%2F1-0-my%20shoe.png?alt=media"
    assert path_from_url(url) == "products/1-0-my shoe.png"
    with pytest.raises(StorageError):
        path_from_url("https://elsewhere.test/shoe.png")


def test_upload_batch_keeps_successes_when_one_fails():
    storage = MemoryStorage()
    storage.broken.add("bad.png")
    files = [PendingUpload("a.png", b"a", "image/png"), PendingUpload("bad.png", b"b"),
             PendingUpload("c.png", b"c", "image/png")]
    batch = asyncio.run(upload_batch(storage, files, "https://shop.test"))
    assert len(batch.urls) == 2
    assert batch.urls[0].endswith("-0-a.png?alt=media")
    assert batch.urls[1].endswith("-2-c.png?alt=media")
    assert batch.failures == [{"index": 1, "filename": "bad.png", "error": "upload refused"}]
    assert batch.progress == [100, 0, 100]
    assert len(storage.objects) == 2


def test_delete_image_is_best_effort():
    storage = MemoryStorage()
    storage.put("products/1-0-a.png", b"a")
    assert delete_image(storage, public_url("https://shop.test", "products/1-0-a.png")) is True
    assert storage.objects == {}
    assert delete_image(storage, public_url("https://shop.test", "products/1-0-a.png")) is False
    assert delete_image(storage, "not a url") is False


def test_upload_batch_tells_apart_files_with_the_same_name():
    storage = MemoryStorage()
    storage.broken.add("-1-image.jpg")
    files = [PendingUpload("image.jpg", b"a"), PendingUpload("image.jpg", b"b")]
    batch = asyncio.run(upload_batch(storage, files, "https://shop.test"))
    assert batch.progress == [100, 0]
    assert [f["index"] for f in batch.failures] == [1]
    assert batch.urls[0].endswith("-0-image.jpg?alt=media")
