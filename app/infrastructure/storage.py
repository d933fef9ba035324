"""Объектное хранилище для исполненных договоров, черновиков и вложений.

Два бэкенда: локальный диск (подписанные ссылки - JWT, которые отдает
``GET /licensing/files/{token}``) и MinIO/S3 (presigned URL).
"""
import asyncio
import io
import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

from minio import Minio
from minio.error import MinioException

from app.core.config import Settings
from app.core.exceptions import NotFound, StorageError
from app.core.security import create_file_token

logger = logging.getLogger(__name__)


def safe_object_key(key: str) -> str:
    """Нормализация ключа объекта для диска и S3"""
    cleaned = re.sub(r"[^A-Za-z0-9/_.-]", "_", key).strip("/")
    parts = [p for p in cleaned.split("/") if p not in ("", ".", "..")]
    if not parts:
        raise StorageError("Empty object key")
    return "/".join(parts)


class ObjectStorage:
    """Граница объектного хранилища"""

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    async def get(self, ref: str) -> bytes:
        raise NotImplementedError

    async def get_signed_url(self, ref: str, ttl_seconds: int) -> str:
        raise NotImplementedError

    async def delete(self, ref: str) -> None:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """Хранение файлов на локальном диске"""

    def __init__(self, root: str, bucket: str = "", public_base_url: str = ""):
        self.root = Path(root)
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, ref: str) -> Path:
        return self.root / safe_object_key(ref)

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        ref = safe_object_key(f"{self.bucket}/{key}" if self.bucket else key)
        path = self.root / ref

        def write():
            os.makedirs(path.parent, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            raise StorageError(f"Failed to store object {ref}: {e}") from e

        logger.info(f"Stored {len(data)} bytes at {ref}")
        return ref

    async def get(self, ref: str) -> bytes:
        path = self.path_for(ref)
        if not path.is_file():
            raise NotFound(f"Object {ref} not found")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read object {ref}: {e}") from e

    async def delete(self, ref: str) -> None:
        path = self.path_for(ref)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete object {ref}: {e}") from e
        logger.info(f"Deleted {ref}")

    async def get_signed_url(self, ref: str, ttl_seconds: int) -> str:
        token = create_file_token(safe_object_key(ref), ttl_seconds)
        return f"{self.public_base_url}/licensing/files/{token}"


class MinioObjectStorage(ObjectStorage):
    """Хранение в MinIO/S3; ссылка имеет вид s3://bucket/key"""

    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket
        self._bucket_checked = False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_checked = True

    @staticmethod
    def _split(ref: str):
        if not ref.startswith("s3://"):
            raise NotFound(f"Invalid object reference {ref}")
        bucket, _, key = ref[len("s3://"):].partition("/")
        if not bucket or not key:
            raise NotFound(f"Invalid object reference {ref}")
        return bucket, key

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        object_name = safe_object_key(key)

        def upload():
            self._ensure_bucket()
            self.client.put_object(
                self.bucket,
                object_name,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )

        try:
            await asyncio.to_thread(upload)
        except MinioException as e:
            raise StorageError(f"Failed to upload {object_name}: {e}") from e

        return f"s3://{self.bucket}/{object_name}"

    async def get(self, ref: str) -> bytes:
        bucket, key = self._split(ref)

        def download() -> bytes:
            response = self.client.get_object(bucket, key)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        try:
            return await asyncio.to_thread(download)
        except MinioException as e:
            raise StorageError(f"Failed to download {ref}: {e}") from e

    async def delete(self, ref: str) -> None:
        bucket, key = self._split(ref)
        try:
            await asyncio.to_thread(self.client.remove_object, bucket, key)
        except MinioException as e:
            raise StorageError(f"Failed to delete {ref}: {e}") from e

    async def get_signed_url(self, ref: str, ttl_seconds: int) -> str:
        bucket, key = self._split(ref)
        try:
            return await asyncio.to_thread(
                self.client.presigned_get_object, bucket, key, expires=timedelta(seconds=ttl_seconds)
            )
        except MinioException as e:
            raise StorageError(f"Failed to sign {ref}: {e}") from e


def build_object_storage(settings: Settings, bucket: Optional[str] = None) -> ObjectStorage:
    """Создание хранилища по настройкам"""
    bucket = bucket or settings.contracts_bucket

    if settings.storage_backend == "minio":
        if not settings.minio_endpoint:
            raise StorageError("MINIO endpoint is not configured")
        client = Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        return MinioObjectStorage(client, bucket)

    if settings.storage_backend != "local":
        raise StorageError(f"Unknown storage backend: {settings.storage_backend}")

    return LocalObjectStorage(settings.upload_dir, bucket, settings.public_base_url)
