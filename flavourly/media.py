"""Best-effort removal of recipe media hosted on an external CDN.

Media bytes live outside the database, so their cleanup cannot join the
delete transaction. It runs after the delete commits; every item is deleted
on its own and a failure is logged and collected, never raised.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol
from urllib.parse import urlparse

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

from .config import Settings, get_settings
from .errors import ExternalCleanupError
from .models import MediaType

logger = logging.getLogger(__name__)

_VERSION_SEGMENT = re.compile(r"^v\d+$")
_EXTENSION = re.compile(r"\.[^/.]+$")


@dataclass(frozen=True)
class MediaItem:
    url: str
    media_type: MediaType = MediaType.IMAGE


class MediaStore(Protocol):
    def delete(self, item: MediaItem) -> None:
        """Remove ``item`` from the store or raise ExternalCleanupError."""


def extract_public_id(url: str) -> Optional[str]:
    """Public id of a Cloudinary delivery URL, or None for any other URL.

    ``https://res.cloudinary.com/demo/image/upload/v1234/recipes/pie.jpg``
    -> ``recipes/pie``
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.hostname or "cloudinary.com" not in parsed.hostname:
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if "upload" not in parts:
        return None
    after_upload = parts[parts.index("upload") + 1:]
    public_id = "/".join(p for p in after_upload if not _VERSION_SEGMENT.match(p))
    public_id = _EXTENSION.sub("", public_id)
    return public_id or None


class CloudinaryMediaStore:
    """Deletes media through the Cloudinary SDK's ``uploader.destroy``."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: float = 10.0,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.timeout = timeout
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    def delete(self, item: MediaItem) -> None:
        public_id = extract_public_id(item.url)
        if public_id is None:
            raise ExternalCleanupError(item.url, f"not a Cloudinary URL: {item.url}")

        try:
            response = cloudinary.uploader.destroy(
                public_id,
                resource_type=item.media_type.value,
                invalidate=True,
                timeout=self.timeout,
            )
        except cloudinary.exceptions.Error as exc:
            raise ExternalCleanupError(item.url, str(exc)) from exc
        result = (response or {}).get("result")
        # "not found" means there is nothing left to remove
        if result not in ("ok", "not found"):
            raise ExternalCleanupError(item.url, f"unexpected destroy result {result!r}")
        logger.info("deleted %s from Cloudinary (%s)", public_id, result)


class DisabledMediaStore:
    def delete(self, item: MediaItem) -> None:
        logger.info("media cleanup disabled; leaving %s in place", item.url)


def build_media_store(settings: Optional[Settings] = None) -> MediaStore:
    settings = settings or get_settings()
    if settings.disable_cloudinary or not settings.cloudinary_configured:
        return DisabledMediaStore()
    return CloudinaryMediaStore(
        settings.cloudinary_cloud_name,
        settings.cloudinary_api_key,
        settings.cloudinary_api_secret,
        timeout=settings.media_delete_timeout_seconds,
    )


def cleanup_media(store: MediaStore, items: Iterable[MediaItem]) -> List[ExternalCleanupError]:
    failures = []
    for item in items:
        try:
            store.delete(item)
        except ExternalCleanupError as exc:
            logger.warning("failed to delete media %s: %s", item.url, exc.message)
            failures.append(exc)
        except Exception as exc:
            logger.exception("unexpected error deleting media %s", item.url)
            failures.append(ExternalCleanupError(item.url, str(exc)))
    return failures
