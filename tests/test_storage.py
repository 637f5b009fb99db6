"""Storage providers."""

import pytest
from azure.core.exceptions import ResourceNotFoundError, ServiceRequestError

from bookinghub.storage.blob_provider import BlobStorageProvider


class FakeBlob:
    def __init__(self, error=None):
        self.error = error
        self.deleted = False

    def delete_blob(self):
        if self.error is not None:
            raise self.error
        self.deleted = True


class FakeService:
    def __init__(self, blob):
        self.blob = blob
        self.requested = []

    def get_blob_client(self, container, name):
        self.requested.append((container, name))
        return self.blob


def _provider(blob):
    provider = BlobStorageProvider.__new__(BlobStorageProvider)
    provider._service = FakeService(blob)
    provider._container = "media"
    return provider


class TestBlobDelete:
    def test_blob_name_is_bucket_then_path(self):
        blob = FakeBlob()
        provider = _provider(blob)

        provider.delete("avatars", "/u1/me.png")

        assert blob.deleted
        assert provider._service.requested == [("media", "avatars/u1/me.png")]

    def test_missing_blob_is_ignored(self):
        _provider(FakeBlob(ResourceNotFoundError("gone"))).delete("avatars", "u1/me.png")

    def test_service_failure_surfaces_as_os_error(self):
        with pytest.raises(OSError):
            _provider(FakeBlob(ServiceRequestError("timeout"))).delete("avatars", "u1/me.png")


class TestLocalProvider:
    def test_upload_conflict_and_upsert(self, storage):
        storage.upload("avatars", "u1/me.png", b"one")

        with pytest.raises(FileExistsError):
            storage.upload("avatars", "u1/me.png", b"two")
        storage.upload("avatars", "u1/me.png", b"two", upsert=True)

        assert storage._get_path("avatars", "u1/me.png").read_bytes() == b"two"

    def test_delete_missing_is_not_an_error(self, storage):
        storage.delete("avatars", "nobody/none.png")

        assert not storage.exists("avatars", "nobody/none.png")
