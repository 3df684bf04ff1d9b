"""Staged uploads: encoded images held between submission and payment.

Under the pay-then-create policy the photos are not written to the object
store until the reading is paid for. They live here, keyed by fortune id,
for a bounded TTL so an abandoned checkout costs nothing and leaves nothing.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import redis

from cupfortune.common.errors import UpstreamServiceError
from cupfortune.common.logging import logger


class StagedUploadStore(ABC):
    @abstractmethod
    def stage(self, fortune_id: str, images: list[str]) -> datetime:
        """Hold `images` for `fortune_id`; return the expiry time."""
        raise NotImplementedError

    @abstractmethod
    def fetch(self, fortune_id: str) -> list[str] | None:
        raise NotImplementedError

    @abstractmethod
    def discard(self, fortune_id: str) -> None:
        raise NotImplementedError


class RedisStagedUploadStore(StagedUploadStore):
    def __init__(self, redis_url: str, ttl_seconds: int) -> None:
        self.rdb = redis.Redis.from_url(redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    def _key(self, fortune_id: str) -> str:
        return f"staged-upload:fortune:{fortune_id}"

    def stage(self, fortune_id, images):
        try:
            self.rdb.setex(self._key(fortune_id), self.ttl_seconds, json.dumps(images))
        except redis.RedisError as exc:
            raise UpstreamServiceError("Failed to stage images", details=str(exc)) from exc
        logger.info("images_staged fortune_id=%s count=%s ttl_s=%s", fortune_id, len(images), self.ttl_seconds)
        return datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)

    def fetch(self, fortune_id):
        try:
            raw = self.rdb.get(self._key(fortune_id))
        except redis.RedisError as exc:
            raise UpstreamServiceError("Failed to read staged images", details=str(exc)) from exc
        if raw is None:
            return None
        return json.loads(raw)

    def discard(self, fortune_id):
        try:
            self.rdb.delete(self._key(fortune_id))
        except redis.RedisError as exc:
            # Expiry removes it anyway.
            logger.warning("staged_upload_discard_failed fortune_id=%s error=%s", fortune_id, exc)
