"""Object store for uploaded cup photos (Supabase Storage bucket).

Images arrive from clients as base64 strings or `data:` URLs; they are decoded
here and written under `fortune-images/<owner>/<timestamp>-<filename>`. Any
other reference (a hosted URL, a file name) is kept as given.
"""

import base64
import binascii
import re
import time
from abc import ABC, abstractmethod
from uuid import uuid4

from supabase import Client, create_client

from cupfortune.common.errors import StorageError, ValidationError
from cupfortune.common.logging import logger


DATA_URL_RE = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)
BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp", "image/gif": "gif"}


def is_remote_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def is_encoded_image(value: str) -> bool:
    """True for `data:` URLs and bare base64 payloads, which must be uploaded."""

    if value.startswith("data:"):
        return True
    if is_remote_url(value):
        return False
    return len(value) % 4 == 0 and BASE64_RE.match(value) is not None


def decode_image(value: str) -> tuple[bytes, str]:
    """Decode a base64 image or `data:` URL into `(bytes, mime_type)`."""

    mime = "image/jpeg"
    payload = value
    match = DATA_URL_RE.match(value)
    if match:
        mime = match.group("mime")
        payload = match.group("data")
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid image encoding", details=str(exc)) from exc
    if not content:
        raise ValidationError("Image payload is empty")
    return content, mime


class ObjectStore(ABC):
    @abstractmethod
    def store(self, owner_id: str, content: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        """Persist `content` and return a retrievable URL."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, url: str) -> None:
        raise NotImplementedError

    def store_encoded(self, owner_id: str, value: str) -> str:
        """Store one client-supplied image; references that are not encoded pass through."""

        if not is_encoded_image(value):
            return value
        content, mime = decode_image(value)
        filename = f"{uuid4().hex}.{EXTENSIONS.get(mime, 'jpg')}"
        return self.store(owner_id, content, filename, content_type=mime)


class SupabaseObjectStore(ObjectStore):
    """Writes to one public Supabase Storage bucket."""

    def __init__(self, url: str, service_key: str, bucket: str) -> None:
        self.url = url
        self.service_key = service_key
        self.bucket = bucket
        self._client: Client | None = None

    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(self.url, self.service_key)
        return self._client

    def _object_path(self, url: str) -> str:
        marker = f"/object/public/{self.bucket}/"
        if marker not in url:
            raise StorageError("URL does not belong to the configured bucket", details=url)
        return url.split(marker, 1)[1]

    def store(self, owner_id, content, filename, content_type="image/jpeg"):
        path = f"fortune-images/{owner_id}/{int(time.time() * 1000)}-{filename}"
        try:
            bucket = self.client().storage.from_(self.bucket)
            bucket.upload(path, content, {"content-type": content_type, "upsert": "false"})
            public_url = bucket.get_public_url(path)
        except Exception as exc:
            logger.error("image_upload_failed path=%s error=%s", path, exc)
            raise StorageError("Failed to upload image", details=str(exc)) from exc
        logger.info("image_uploaded path=%s bytes=%s", path, len(content))
        return public_url.rstrip("?")

    def delete(self, url):
        path = self._object_path(url)
        try:
            self.client().storage.from_(self.bucket).remove([path])
        except Exception as exc:
            raise StorageError("Failed to delete image", details=str(exc)) from exc
