# tendermatch/storage.py
import io
import os
import asyncio
import logging
from pathlib import Path
from typing import Tuple
from uuid import uuid4

import aiofiles
from minio import Minio

from tendermatch.config import settings
from tendermatch.errors import TooLarge

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 64


def ensure_dir(path):
    os.makedirs(path, exist_ok=True)


def safe_name(filename: str) -> str:
    # strip any path parts the client sent
    return Path(filename or "uploaded").name


async def read_limited(upload, max_size: int) -> bytes:
    """Read an UploadFile-like object in chunks, failing once max_size is crossed."""
    buf = io.BytesIO()
    written = 0
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        written += len(chunk)
        if written > max_size:
            raise TooLarge(f"Maximum file size is {max_size // (1024 * 1024)}MB")
        buf.write(chunk)
    return buf.getvalue()


class LocalFileStore:
    backend = "local"

    def __init__(self, base_dir: str = None):
        self.base_dir = base_dir or settings.upload_dir
        ensure_dir(self.base_dir)

    async def save(self, upload, max_size: int) -> Tuple[str, str, int]:
        filename = safe_name(upload.filename)
        path = os.path.join(self.base_dir, f"{uuid4()}__{filename}")
        written = 0
        try:
            async with aiofiles.open(path, "wb") as out_file:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_size:
                        raise TooLarge(f"Maximum file size is {max_size // (1024 * 1024)}MB")
                    await out_file.write(chunk)
        except BaseException:
            self._remove_quietly(path)
            raise
        return path, filename, written

    async def read(self, ref: str) -> bytes:
        async with aiofiles.open(ref, "rb") as f:
            return await f.read()

    async def delete(self, ref: str) -> None:
        self._remove_quietly(ref)

    @staticmethod
    def _remove_quietly(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove stored file %s", path)


class MinioFileStore:
    backend = "minio"

    def __init__(self, client: Minio = None, bucket: str = None):
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        self.bucket = bucket or settings.minio_bucket
        self._bucket_checked = False

    def _ensure_bucket(self):
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_checked = True

    async def save(self, upload, max_size: int) -> Tuple[str, str, int]:
        filename = safe_name(upload.filename)
        data = await read_limited(upload, max_size)
        object_name = f"{uuid4()}__{filename}"

        def _put():
            self._ensure_bucket()
            self.client.put_object(self.bucket, object_name, io.BytesIO(data), length=len(data),
                                   content_type=upload.content_type or "application/octet-stream")

        await asyncio.to_thread(_put)
        return f"{self.bucket}/{object_name}", filename, len(data)

    async def read(self, ref: str) -> bytes:
        bucket, object_name = ref.split("/", 1)

        def _get():
            resp = self.client.get_object(bucket, object_name)
            try:
                return resp.read()
            finally:
                resp.close()
                resp.release_conn()

        return await asyncio.to_thread(_get)

    async def delete(self, ref: str) -> None:
        bucket, object_name = ref.split("/", 1)
        try:
            await asyncio.to_thread(self.client.remove_object, bucket, object_name)
        except Exception:
            logger.warning("Failed to remove object %s", ref)


def build_file_store():
    if settings.storage_backend == "minio":
        return MinioFileStore()
    return LocalFileStore()
