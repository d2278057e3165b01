"""
Inventory image storage, keyed per outlet.

Keys look like ``inventory/<outlet_id>/<millis>_<filename>``.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from pydantic import ValidationError

from rental_backend.db import UserRole
from rental_backend.results import BackendError, ErrorKind, Result
from rental_backend.schemas import ImageUpload
from rental_backend.storage import StorageClient

logger = logging.getLogger(__name__)

KEY_PREFIX = "inventory"
ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp")
DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024
DEFAULT_SIGNED_URL_EXPIRES_SECONDS = 3600
LIST_LIMIT = 100

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def build_image_key(outlet_id: str, filename: str, now: Optional[float] = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"{KEY_PREFIX}/{outlet_id}/{millis}_{sanitize_filename(filename)}"


def extract_outlet_id(key: str) -> Optional[str]:
    parts = key.split("/")
    if len(parts) >= 3 and parts[0] == KEY_PREFIX and parts[1]:
        return parts[1]
    return None


def can_access_image(key: str, role: UserRole, outlet_id: Optional[str]) -> bool:
    if role == UserRole.ADMIN:
        return True
    return outlet_id is not None and extract_outlet_id(key) == outlet_id


class ImageService:
    def __init__(
        self,
        storage: StorageClient,
        *,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        signed_url_expires_seconds: int = DEFAULT_SIGNED_URL_EXPIRES_SECONDS,
    ):
        self.storage = storage
        self.max_image_bytes = max_image_bytes
        self.signed_url_expires_seconds = signed_url_expires_seconds

    def _validate(self, upload: ImageUpload) -> Optional[str]:
        if upload.content_type not in ALLOWED_CONTENT_TYPES:
            allowed = ", ".join(t.split("/")[1].upper() for t in ALLOWED_CONTENT_TYPES)
            return f"File type not supported. Please upload {allowed} files."
        if upload.size > self.max_image_bytes:
            return f"File size must be less than {self.max_image_bytes // (1024 * 1024)}MB."
        return None

    def upload_image(self, file: ImageUpload | dict, outlet_id: str) -> Result[str]:
        """Store the image and return its key."""
        try:
            upload = ImageUpload.model_validate(file)
        except ValidationError as exc:
            return Result.failure(ErrorKind.INVALID_INPUT, str(exc))
        if not outlet_id:
            return Result.failure(ErrorKind.INVALID_INPUT, "Outlet is required")
        error = self._validate(upload)
        if error:
            return Result.failure(ErrorKind.INVALID_INPUT, error)

        key = build_image_key(outlet_id, upload.filename)
        try:
            stored_key = self.storage.upload(
                key,
                upload.content,
                content_type=upload.content_type,
                metadata={
                    "outlet_id": outlet_id,
                    "original_filename": upload.filename,
                },
                upsert=False,
            )
        except BackendError as exc:
            logger.error("Error uploading inventory image: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        return Result.success(stored_key or key)

    def get_signed_url(
        self, key: str, expires_seconds: Optional[int] = None
    ) -> Result[str]:
        expires = (
            self.signed_url_expires_seconds if expires_seconds is None else expires_seconds
        )
        if expires <= 0:
            return Result.failure(
                ErrorKind.INVALID_INPUT, "Signed URL expiry must be a positive number of seconds"
            )
        try:
            return Result.success(self.storage.create_signed_url(key, expires))
        except BackendError as exc:
            logger.error("Error creating signed URL for %s: %s", key, exc.message)
            kind = ErrorKind.NOT_FOUND if exc.status_code == 404 else ErrorKind.BACKEND_ERROR
            return Result.failure(kind, exc.message)

    def delete_image(self, key: str) -> Result[None]:
        try:
            self.storage.remove(key)
        except BackendError as exc:
            logger.error("Error deleting inventory image: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        return Result.success()

    def list_images(self, outlet_id: str) -> Result[list[str]]:
        try:
            keys = self.storage.list_objects(f"{KEY_PREFIX}/{outlet_id}/", LIST_LIMIT)
        except BackendError as exc:
            logger.error("Error listing inventory images: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        return Result.success(keys)
