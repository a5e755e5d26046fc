import logging
import os
import pathlib
import uuid
from datetime import timedelta
from typing import Optional
from urllib.parse import unquote, urlparse

from google.cloud import storage

logger = logging.getLogger("assistec.storage")

LOCAL_SCHEME = "file://"
GCS_SCHEME = "gs://"


class StorageError(Exception):
    pass


def build_object_name(order_id: str, scope: str, filename: str) -> str:
    safe_name = (filename or "arquivo").replace(" ", "_").replace("/", "_")
    return f"orders/{order_id}/{scope}/{uuid.uuid4().hex}_{safe_name}"


def _split_gcs_url(file_url: str) -> tuple[str, str]:
    bucket_name, _, blob_path = file_url[len(GCS_SCHEME):].partition("/")
    if not bucket_name or not blob_path:
        raise StorageError("URL de arquivo invalida.")
    return bucket_name, blob_path


class StorageClient:
    """Blob storage for evidence files, thumbnails and receipts.

    Objects go to the GCS bucket named by GCS_BUCKET. Without a bucket, or with
    LOCAL_STORAGE=1, they are written under LOCAL_STORAGE_DIR and addressed by
    file:// URIs.
    """

    def __init__(self, bucket_name: Optional[str] = None, local_dir: Optional[str] = None) -> None:
        self.bucket_name = bucket_name or os.getenv("GCS_BUCKET")
        self.use_local = os.getenv("LOCAL_STORAGE", "0") == "1" or not self.bucket_name
        self.base_dir = pathlib.Path(local_dir or os.getenv("LOCAL_STORAGE_DIR", "storage")).resolve()
        self._client: Optional[storage.Client] = None
        if self.use_local:
            self.base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def _blob(self, bucket_name: str, blob_path: str):
        return self.client.bucket(bucket_name).blob(blob_path)

    def upload_bytes(self, content: bytes, dest_path: str, content_type: Optional[str]) -> str:
        if self.use_local:
            target = self.base_dir / dest_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            return target.as_uri()
        self._blob(self.bucket_name, dest_path).upload_from_string(content, content_type=content_type)
        logger.info("uploaded bucket=%s object=%s bytes=%s", self.bucket_name, dest_path, len(content))
        return f"{GCS_SCHEME}{self.bucket_name}/{dest_path}"

    def read_bytes(self, file_url: str) -> bytes:
        if file_url.startswith(LOCAL_SCHEME):
            path = pathlib.Path(unquote(urlparse(file_url).path))
            if not path.exists():
                raise StorageError("Arquivo nao encontrado no armazenamento.")
            return path.read_bytes()
        if file_url.startswith(GCS_SCHEME):
            return self._blob(*_split_gcs_url(file_url)).download_as_bytes()
        raise StorageError("URL de arquivo nao suportada.")

    def generate_signed_url(self, file_url: str, expires_minutes: int = 30) -> str:
        if file_url.startswith(LOCAL_SCHEME):
            return file_url
        if file_url.startswith(GCS_SCHEME):
            blob = self._blob(*_split_gcs_url(file_url))
            return blob.generate_signed_url(expiration=timedelta(minutes=expires_minutes), method="GET")
        raise StorageError("URL de arquivo nao suportada.")


def get_storage() -> StorageClient:
    return StorageClient()
