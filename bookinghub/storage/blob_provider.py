from typing import Optional

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import settings
from .provider import StorageProvider, clean_path


class BlobStorageProvider(StorageProvider):
    """One container; the bucket is the first path segment of the blob name."""

    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container

    def _client(self, bucket: str, path: str):
        return self._service.get_blob_client(self._container, f"{clean_path(bucket)}/{clean_path(path)}")

    def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        client = self._client(bucket, path)
        try:
            client.upload_blob(
                data,
                overwrite=upsert,
                content_settings=ContentSettings(content_type=content_type) if content_type else None,
            )
        except ResourceExistsError:
            raise FileExistsError(f"{bucket}/{path}")
        return clean_path(path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return self._client(bucket, path).url

    def exists(self, bucket: str, path: str) -> bool:
        return self._client(bucket, path).exists()

    def delete(self, bucket: str, path: str) -> None:
        """Missing blobs are not an error; any other service failure surfaces as OSError."""
        try:
            self._client(bucket, path).delete_blob()
        except ResourceNotFoundError:
            pass
        except AzureError as e:
            raise OSError(f"Failed to delete {bucket}/{path}: {e}") from e
