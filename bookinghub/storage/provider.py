from typing import Optional


BUCKETS = ("avatars", "backgrounds", "headshots")


class StorageProvider:
    """
    Object storage addressed by (bucket, path).

    `upload` raises FileExistsError when the path is taken and upsert is off.
    """

    def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        raise NotImplementedError

    def get_public_url(self, bucket: str, path: str) -> str:
        raise NotImplementedError

    def exists(self, bucket: str, path: str) -> bool:
        raise NotImplementedError

    def delete(self, bucket: str, path: str) -> None:
        raise NotImplementedError


def clean_path(path: str) -> str:
    return path.lstrip("/").replace("..", "").replace("\\", "/")
