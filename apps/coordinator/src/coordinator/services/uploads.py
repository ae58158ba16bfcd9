from __future__ import annotations

import base64
import binascii
from pathlib import Path
import re
from uuid import uuid4

from coordinator.models import Clock, utc_now


class UploadError(ValueError):
    pass


_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")
_STORED_NAME = re.compile(r"^[a-zA-Z0-9_]+\.png$")


def clean_file_name(file_name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", file_name).strip("_")
    return cleaned or "template"


class UploadStore:
    def __init__(self, *, upload_dir: Path, clock: Clock = utc_now) -> None:
        self._upload_dir = upload_dir
        self._clock = clock

    def save_base64(self, *, image_base64: str, file_name: str) -> str:
        try:
            image_bytes = base64.b64decode(image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UploadError("image_base64 is not valid base64") from exc
        return self.save(image_bytes=image_bytes, file_name=file_name)

    def save(self, *, image_bytes: bytes, file_name: str) -> str:
        if not image_bytes:
            raise UploadError("image payload is empty")

        timestamp_ms = int(self._clock().timestamp() * 1000)
        stored_name = f"{clean_file_name(file_name)}_{timestamp_ms}_{uuid4().hex[:6]}.png"

        self._upload_dir.mkdir(parents=True, exist_ok=True)
        (self._upload_dir / stored_name).write_bytes(image_bytes)
        return stored_name

    def resolve(self, stored_name: str) -> Path | None:
        if not _STORED_NAME.match(stored_name):
            return None
        path = self._upload_dir / stored_name
        if not path.is_file():
            return None
        return path
