"""
Blob storage for product images.

Objects are stored in GridFS under ``products/<epoch-ms>-<index>-<filename>``
and served back through ``/o/<url-encoded path>?alt=media``. The public URL
is the only reference the product keeps, so deletion parses the object path
back out of it.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

import gridfs
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


def object_path(filename: str, index: int, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"products/{now_ms}-{index}-{filename}"


def public_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/o/{quote(path, safe='')}?alt=media"


def path_from_url(url: str) -> str:
    decoded = unquote(url)
    start = decoded.find("/o/")
    end = decoded.find("?alt=")
    if start == -1 or end == -1 or end < start:
        raise StorageError(f"Not a storage URL: {url}")
    return decoded[start + 3:end]


class GridFSStorage:
    def __init__(self, database, collection: str = "blobs"):
        self.fs = gridfs.GridFS(database, collection=collection)

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self.fs.put(data, filename=path, metadata={"contentType": content_type or "application/octet-stream"})

    def get(self, path: str) -> Tuple[bytes, str]:
        try:
            out = self.fs.get_last_version(filename=path)
        except gridfs.NoFile:
            raise StorageError(f"No such object: {path}")
        meta = out.metadata or {}
        return out.read(), meta.get("contentType", "application/octet-stream")

    def delete(self, path: str) -> None:
        found = False
        for f in self.fs.find({"filename": path}):
            self.fs.delete(f._id)
            found = True
        if not found:
            raise StorageError(f"No such object: {path}")


@dataclass
class PendingUpload:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class UploadBatch:
    urls: List[str] = field(default_factory=list)
    # one entry per input file, in input order
    progress: List[int] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)


async def upload_batch(storage, files: List[PendingUpload], base_url: str) -> UploadBatch:
    """Upload all files concurrently.

    Progress and failures are keyed by input position, as filenames may
    repeat. Successful URLs keep the input order; a failed file lands in
    ``failures`` without discarding the others.
    """
    batch = UploadBatch(progress=[0] * len(files))
    now_ms = int(time.time() * 1000)

    async def one(index: int, f: PendingUpload) -> str:
        path = object_path(f.filename, index, now_ms)
        await run_in_threadpool(storage.put, path, f.data, f.content_type)
        batch.progress[index] = 100
        return public_url(base_url, path)

    results = await asyncio.gather(*(one(i, f) for i, f in enumerate(files)), return_exceptions=True)
    for index, (f, result) in enumerate(zip(files, results)):
        if isinstance(result, Exception):
            logger.error("Upload of %s (#%d) failed: %s", f.filename, index, result)
            batch.failures.append({"index": index, "filename": f.filename, "error": str(result)})
        else:
            batch.urls.append(result)
    return batch


def delete_image(storage, url: str) -> bool:
    """Best-effort removal of the object behind ``url``."""
    try:
        storage.delete(path_from_url(url))
        return True
    except Exception as e:
        logger.warning("Could not delete image %s: %s", url, e)
        return False
