"""Image storage behind a URL-returning interface."""

import abc
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from .errors import ValidationError

logger = structlog.get_logger(__name__)


@dataclass
class ImageUpload:
    filename: str
    content: bytes
    content_type: str


class BlobStore(abc.ABC):
    @abc.abstractmethod
    def save(self, image: ImageUpload) -> str:
        """Store the payload and return a stable URL for it."""

    @abc.abstractmethod
    def delete(self, url: str) -> bool:
        """Remove the blob behind ``url``; False when nothing was there."""


class LocalBlobStore(BlobStore):
    """Writes images to a directory served under ``url_prefix``."""

    def __init__(self, directory: str, url_prefix: str = "/uploads"):
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.directory.mkdir(parents=True, exist_ok=True)

    def save(self, image: ImageUpload) -> str:
        if not (image.content_type or "").startswith("image/"):
            raise ValidationError("Only image files are allowed!")
        safe_name = os.path.basename(image.filename or "upload").replace(" ", "_")
        name = f"{int(time.time() * 1000)}-{safe_name}"
        (self.directory / name).write_bytes(image.content)
        logger.info("blob_saved", name=name, size=len(image.content))
        return f"{self.url_prefix}/{name}"

    def delete(self, url: Optional[str]) -> bool:
        if not url:
            return False
        path = self.directory / os.path.basename(url)
        if not path.is_file():
            return False
        path.unlink()
        logger.info("blob_deleted", name=path.name)
        return True
