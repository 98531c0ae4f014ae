from __future__ import annotations

import logging
import mimetypes
import random
import string
import time
from enum import Enum
from pathlib import PurePath
from typing import Optional
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool

from tripdesk.backend import BackendError, ObjectStorage
from tripdesk.config import Config
from tripdesk.models import ParticipantOut

logger = logging.getLogger(__name__)

UPLOAD_FAILED = "Failed to upload avatar. Please try again."


def placeholder_avatar_url(full_name: str, config=Config) -> str:
    # Same escaping as encodeURIComponent so links match the ones already stored.
    name = quote(full_name, safe="!~*'()")
    return f"{config.AVATAR_SERVICE_URL}?name={name}&background=random&color=fff&size={config.AVATAR_SIZE}"


def validate_avatar_file(content_type: Optional[str], size: int, max_bytes: int = Config.AVATAR_MAX_BYTES) -> Optional[str]:
    if not content_type or not content_type.startswith("image/"):
        return "Please upload an image file"
    if size > max_bytes:
        return "Image size should be less than 5MB"
    return None


def generate_object_path(filename: str, content_type: Optional[str] = None) -> str:
    ext = PurePath(filename or "").suffix.lstrip(".")
    if not ext and content_type:
        ext = (mimetypes.guess_extension(content_type) or "").lstrip(".")
    token = "".join(random.choices(string.ascii_lowercase + string.digits, k=13))
    name = f"{int(time.time() * 1000)}-{token}"
    return f"avatars/{name}.{ext}" if ext else f"avatars/{name}"


class UploadState(str, Enum):
    idle = "idle"
    file_selected = "file_selected"
    uploading = "uploading"
    succeeded = "succeeded"
    failed = "failed"


class AvatarUpload:
    """Upload control shared by the registration and avatar-edit forms.

    ``select`` validates the file without touching the network; an invalid
    file leaves the control idle with ``error`` set. ``upload`` moves a
    selected file through ``uploading`` to ``succeeded`` or ``failed``.
    """

    def __init__(self, storage: ObjectStorage, config=Config):
        self.storage = storage
        self.bucket = config.AVATAR_BUCKET
        self.max_bytes = config.AVATAR_MAX_BYTES
        self.state = UploadState.idle
        self.error: Optional[str] = None
        self.url: Optional[str] = None
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None
        self._data: bytes = b""

    @property
    def has_file(self) -> bool:
        return self.state in (UploadState.file_selected, UploadState.uploading, UploadState.succeeded)

    def select(self, filename: str, content_type: Optional[str], data: bytes) -> bool:
        self.clear()
        error = validate_avatar_file(content_type, len(data), self.max_bytes)
        if error:
            self.error = error
            return False
        self.filename = filename
        self.content_type = content_type
        self._data = data
        self.state = UploadState.file_selected
        return True

    def clear(self) -> None:
        self.state = UploadState.idle
        self.error = None
        self.url = None
        self.filename = None
        self.content_type = None
        self._data = b""

    async def upload(self) -> Optional[str]:
        if self.state != UploadState.file_selected:
            raise RuntimeError(f"cannot upload from state {self.state.value}")
        self.state = UploadState.uploading
        path = generate_object_path(self.filename or "", self.content_type)
        try:
            await run_in_threadpool(
                self.storage.upload,
                self.bucket,
                path,
                self._data,
                self.content_type,
                "3600",
                False,
            )
        except BackendError as exc:
            logger.error("Error uploading avatar: %s", exc.message)
            return self._fail()
        except Exception:
            logger.exception("Error uploading avatar")
            return self._fail()
        self.url = self.storage.get_public_url(self.bucket, path)
        self.state = UploadState.succeeded
        return self.url

    def _fail(self) -> None:
        self.state = UploadState.failed
        self.error = UPLOAD_FAILED
        return None


async def backfill_avatar(service, participant: ParticipantOut, config=Config) -> Optional[str]:
    """Persist the placeholder for a participant stored without an avatar.

    Safe to run more than once: every run writes the same URL.
    """
    if participant.avatar_url:
        return participant.avatar_url
    url = placeholder_avatar_url(participant.full_name, config)
    result = await service.update_participant_avatar(participant.id, url)
    if not result.success:
        logger.error("Error saving generated avatar for %s: %s", participant.id, result.error)
        return None
    return url
