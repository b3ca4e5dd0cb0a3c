"""
Featur: Object storage on Google Cloud Storage

The GCS SDK is blocking, so every call runs in ``asyncio.to_thread``.
Uploads and deletes are retried with tenacity exponential backoff, but only
for network/transient failures; anything else (bad credentials, missing
bucket, permission errors) fails on the first attempt.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import structlog
from google.api_core import exceptions as gexc
from google.cloud import storage as gcs_storage
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from featur.errors import StorageError

logger = structlog.get_logger("featur.storage")

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    gexc.ServiceUnavailable,
    gexc.InternalServerError,
    gexc.TooManyRequests,
    gexc.GatewayTimeout,
)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/heic": "heic",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
}


def is_transient_storage_error(exc: BaseException) -> bool:
    """Return True for errors worth retrying (network and 429/5xx)."""
    return isinstance(exc, _TRANSIENT_ERRORS)


def profile_photo_path(uid: str, content_type: str) -> str:
    ext = _EXTENSIONS.get(content_type.lower(), "bin")
    return f"profile_photos/{uid}/{uuid.uuid4().hex}.{ext}"


class MediaStorage:
    """Upload and delete media objects in a single bucket."""

    def __init__(
        self,
        bucket_name: str,
        project_id: str = "",
        public_base_url: str = "https://storage.googleapis.com",
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        client: Optional[gcs_storage.Client] = None,
    ) -> None:
        self._bucket_name = bucket_name
        self._project_id = project_id
        self._public_base_url = public_base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._client = client

    # ── Helpers ────────────────────────────────────────────────────

    def _get_bucket(self):
        if self._client is None:
            self._client = gcs_storage.Client(project=self._project_id or None)
        return self._client.bucket(self._bucket_name)

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{self._bucket_name}/{path}"

    def path_from_url(self, url: str) -> str:
        prefix = f"{self._public_base_url}/{self._bucket_name}/"
        if url.startswith(prefix):
            return url[len(prefix):]
        gs_prefix = f"gs://{self._bucket_name}/"
        if url.startswith(gs_prefix):
            return url[len(gs_prefix):]
        raise StorageError(f"URL is not in bucket {self._bucket_name}: {url}")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(is_transient_storage_error),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=self._backoff_base,
                min=0,
                max=60,
                exp_base=2,
            ),
            reraise=True,
        )

    # ── Public API ─────────────────────────────────────────────────

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        """Upload ``data`` to ``path`` and return its public URL.

        Raises
        ------
        StorageError
            When the upload fails permanently or every retry is exhausted.
        """
        log = logger.bind(path=path, size=len(data))

        def _put() -> None:
            blob = self._get_bucket().blob(path)
            blob.upload_from_string(data, content_type=content_type)

        try:
            async for attempt in self._retrying():
                with attempt:
                    log.debug(
                        "upload_attempt",
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    await asyncio.to_thread(_put)
        except Exception as exc:
            log.error(
                "upload_failed",
                error=str(exc),
                transient=is_transient_storage_error(exc),
            )
            raise StorageError(f"Upload to {path} failed: {exc}") from exc

        url = self.public_url(path)
        log.info("upload_complete", url=url)
        return url

    async def delete(self, url: str) -> None:
        path = self.path_from_url(url)

        def _remove() -> None:
            self._get_bucket().blob(path).delete()

        try:
            async for attempt in self._retrying():
                with attempt:
                    await asyncio.to_thread(_remove)
        except gexc.NotFound:
            logger.info("delete_missing_object", path=path)
            return
        except Exception as exc:
            logger.error("delete_failed", path=path, error=str(exc))
            raise StorageError(f"Delete of {path} failed: {exc}") from exc

        logger.info("delete_complete", path=path)
