import io
import os
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Form, File, UploadFile
from fastapi.responses import FileResponse
from PIL import Image, UnidentifiedImageError
from slugify import slugify
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile
from ..config import settings
from ..db import get_db
from ..models.models import Profile, StoredFile, TalentProfile
from ..services.permissions import TALENT_MANAGE, has_capability
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import BUCKETS, StorageProvider


router = APIRouter(prefix="/files", tags=["files"])

_PIL_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp", "GIF": "image/gif"}


def get_storage() -> StorageProvider:
    """
    Storage provider from configuration: Azure Blob when configured, else local disk.
    """
    if settings.storage_provider == "blob" or (settings.azure_blob_connection and settings.azure_blob_container):
        return BlobStorageProvider()
    return LocalStorageProvider()


def object_path(owner_id: uuid.UUID, original_name: str) -> str:
    base, ext = os.path.splitext(original_name or "upload")
    return f"{owner_id}/{slugify(base) or 'upload'}{ext.lower()}"


def downscale_image(data: bytes, max_edge: int):
    """Shrink so the longest edge is at most max_edge. Returns (bytes, content_type)."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise HTTPException(status_code=400, detail="File is not a supported image")
    fmt = img.format if img.format in _PIL_FORMATS else "PNG"
    if max(img.size) <= max_edge and img.format in _PIL_FORMATS:
        return data, _PIL_FORMATS[fmt]
    img.thumbnail((max_edge, max_edge))
    if fmt == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue(), _PIL_FORMATS[fmt]


def _register(db: Session, bucket: str, key: str, owner_user_id, content_type: str, size: int, created_by) -> StoredFile:
    row = db.query(StoredFile).filter(StoredFile.bucket == bucket, StoredFile.key == key).first()
    if row is None:
        row = StoredFile(bucket=bucket, key=key)
        db.add(row)
    row.owner_user_id = owner_user_id
    row.content_type = content_type
    row.size_bytes = size
    row.created_by = created_by
    return row


@router.post("/{bucket}")
def upload(
    bucket: str,
    file: UploadFile = File(...),
    upsert: bool = Form(False),
    talent_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
    storage: StorageProvider = Depends(get_storage),
):
    if bucket not in BUCKETS:
        raise HTTPException(status_code=404, detail="Unknown bucket")

    talent: Optional[TalentProfile] = None
    if bucket == "headshots":
        if not talent_id:
            raise HTTPException(status_code=400, detail="talent_id is required for headshots")
        try:
            talent = db.query(TalentProfile).filter(TalentProfile.id == uuid.UUID(talent_id)).first()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid talent_id")
        if talent is None:
            raise HTTPException(status_code=404, detail="Talent not found")
        if not (has_capability(me, TALENT_MANAGE) or talent.user_id == me.user_id):
            raise HTTPException(status_code=403, detail="Forbidden")
        owner_key = talent.id
        owner_user_id = talent.user_id
    else:
        owner_key = me.user_id
        owner_user_id = me.user_id

    raw = file.file.read()
    data, content_type = downscale_image(raw, settings.image_max_edge_px)
    path = object_path(owner_key, file.filename or "upload")
    try:
        key = storage.upload(bucket, path, data, content_type=content_type, upsert=upsert)
    except FileExistsError:
        raise HTTPException(status_code=409, detail="A file already exists at this path")

    url = storage.get_public_url(bucket, key)
    _register(db, bucket, key, owner_user_id, content_type, len(data), me.user_id)
    if bucket == "avatars":
        me.avatar_url = url
    elif bucket == "backgrounds":
        me.background_image_url = url
    else:
        talent.headshot_url = url
    db.commit()
    return {"bucket": bucket, "key": key, "url": url, "content_type": content_type, "size": len(data)}


@router.get("/local/{bucket}/{file_path:path}")
def serve_local_file(bucket: str, file_path: str):
    """Serve files from local storage for development."""
    if bucket not in BUCKETS:
        raise HTTPException(status_code=404, detail="File not found")
    local_storage = LocalStorageProvider()
    file_path_obj = local_storage._get_path(bucket, file_path)

    # Ensure the file is within the storage directory
    storage_base = local_storage.base_dir.resolve()
    if not str(file_path_obj.resolve()).startswith(str(storage_base)):
        raise HTTPException(status_code=403, detail="Access denied")
    if not file_path_obj.exists():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path=str(file_path_obj), filename=file_path_obj.name)
