"""
Local filesystem storage provider for development.
Saves files under LOCAL_STORAGE_DIR instead of Azure Blob Storage.
"""
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..config import settings
from .provider import StorageProvider, clean_path


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, bucket: str, path: str) -> Path:
        return self.base_dir / clean_path(bucket) / clean_path(path)

    def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        target = self._get_path(bucket, path)
        if target.exists() and not upsert:
            raise FileExistsError(f"{bucket}/{path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            f.write(data)
        return clean_path(path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{settings.public_base_url}/files/local/{quote(clean_path(bucket))}/{quote(clean_path(path))}"

    def exists(self, bucket: str, path: str) -> bool:
        return self._get_path(bucket, path).exists()

    def delete(self, bucket: str, path: str) -> None:
        """Missing files are not an error."""
        self._get_path(bucket, path).unlink(missing_ok=True)
