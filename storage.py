"""
Image storage for product pictures.

Product documents only keep ``(url, publicId)`` pairs; the bytes live in a
storage collaborator. Cloudinary is the production backend, local disk is
available for development.
"""

import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import cloudinary
import cloudinary.uploader
from fastapi import Request

from config import Settings
from errors import ConfigurationError, ValidationFailedError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_IMAGES_PER_REQUEST = 6


@dataclass(frozen=True)
class StoredImage:
    url: str
    public_id: str

    def to_mongo(self) -> dict:
        return {"url": self.url, "publicId": self.public_id}


class ImageStorage(ABC):
    @abstractmethod
    def upload(self, content: bytes, filename: str) -> StoredImage:
        """Store the bytes and return where they can be fetched from."""

    @abstractmethod
    def delete(self, public_id: str) -> bool:
        """Remove a stored image. Returns False when nothing was removed."""


def _is_valid_image_header(content: bytes) -> bool:
    if len(content) < 12:
        return False
    return (
        content.startswith(b"\xff\xd8\xff")  # JPEG
        or content.startswith(b"\x89PNG\r\n\x1a\n")
        or content.startswith((b"GIF87a", b"GIF89a"))
        or content.startswith(b"BM")
        or (content.startswith(b"RIFF") and content[8:12] == b"WEBP")
    )


def validate_image(content: bytes, filename: str) -> None:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationFailedError(
            f"Unsupported file type for {filename!r}. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if len(content) > MAX_IMAGE_BYTES:
        raise ValidationFailedError(f"{filename!r} is larger than 10MB")
    if not _is_valid_image_header(content):
        raise ValidationFailedError(f"{filename!r} is not a valid image")


class CloudinaryStorage(ImageStorage):
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str):
        if not all([cloud_name, api_key, api_secret]):
            raise ConfigurationError(
                "Missing Cloudinary settings: CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET"
            )
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        self.folder = folder

    def upload(self, content: bytes, filename: str) -> StoredImage:
        result = cloudinary.uploader.upload(content, folder=self.folder, resource_type="image")
        return StoredImage(url=result["secure_url"], public_id=result["public_id"])

    def delete(self, public_id: str) -> bool:
        result = cloudinary.uploader.destroy(public_id, resource_type="image")
        return result.get("result") == "ok"


class LocalStorage(ImageStorage):
    """Writes images under ``root`` and serves them from ``{base_url}/uploads``."""

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def upload(self, content: bytes, filename: str) -> StoredImage:
        ext = os.path.splitext(filename or "")[1].lower()
        public_id = f"{uuid.uuid4().hex}{ext}"
        (self.root / public_id).write_bytes(content)
        return StoredImage(url=f"{self.base_url}/uploads/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> bool:
        path = (self.root / public_id).resolve()
        if path.parent != self.root.resolve() or not path.is_file():
            return False
        path.unlink()
        return True


def build_storage(settings: Settings) -> ImageStorage:
    if settings.STORAGE_BACKEND == "local":
        return LocalStorage(settings.UPLOAD_DIR, settings.PUBLIC_BASE_URL)
    return CloudinaryStorage(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET.get_secret_value(),
        folder=settings.CLOUDINARY_FOLDER,
    )


def get_storage(request: Request) -> ImageStorage:
    return request.app.state.storage
