"""Resolve attachment references (remote URLs or data: URLs) to bytes + MIME type."""

import asyncio
import base64
import binascii
import logging
import re
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

import httpx

from hairlab.errors import FetchError
from hairlab.models import Attachment

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/jpeg"
DEFAULT_VIDEO_MIME = "video/quicktime"

EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}

_DATA_URL = re.compile(r"^data:([\w.+-]+/[\w.+-]+);base64,(.*)$", re.DOTALL)


def is_video_slot(slot: str | None) -> bool:
    return slot is not None and "video" in slot


def guess_mime_type(url: str, slot: str | None, content_type: str | None = None) -> str:
    """Pick a MIME type for a remote attachment.

    The slot decides whether we expect an image or a video. A Content-Type of
    that kind wins, then the file extension, then the per-kind fallback.
    """
    kind = "video" if is_video_slot(slot) else "image"

    if content_type:
        declared = content_type.split(";", 1)[0].strip().lower()
        if declared.startswith(f"{kind}/"):
            return declared

    # Storage URLs often carry the object path URL-encoded (a%2Fb.png)
    path = unquote(urlsplit(url).path)
    suffix = PurePosixPath(path).suffix.lower()
    guessed = EXTENSION_MIME_TYPES.get(suffix)
    if guessed and guessed.startswith(f"{kind}/"):
        return guessed

    return DEFAULT_VIDEO_MIME if kind == "video" else DEFAULT_IMAGE_MIME


def decode_data_url(ref: str, slot: str | None = None) -> Attachment:
    match = _DATA_URL.match(ref)
    if not match:
        raise FetchError("Invalid data URL format", slot=slot)
    try:
        data = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as e:
        raise FetchError(f"Invalid base64 payload in data URL: {e}", slot=slot) from e
    return Attachment(mime_type=match.group(1).lower(), data=data)


class AttachmentFetcher:
    """Stateless fetcher; one shared httpx client is safe across concurrent calls."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 60.0):
        self._client = http_client
        self._timeout = timeout

    async def fetch(self, ref: str, slot: str | None = None) -> Attachment:
        if ref.startswith("data:"):
            return decode_data_url(ref, slot)

        label = slot or "attachment"
        logger.info("[fetch] Fetching %s from %s...", label, ref[:50])
        try:
            if self._client is not None:
                resp = await self._client.get(ref, timeout=self._timeout, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    resp = await client.get(ref)
        except httpx.InvalidURL as e:
            raise FetchError(f"Invalid URL for {label}: {e}", slot=slot) from e
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching {label}", slot=slot) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {label}: {e}", slot=slot) from e

        if not resp.is_success:
            raise FetchError(
                f"Failed to fetch {label}: {resp.status_code} {resp.reason_phrase}",
                slot=slot,
                status=resp.status_code,
            )

        mime_type = guess_mime_type(ref, slot, resp.headers.get("content-type"))
        logger.info("[fetch] Fetched %s (%s, %d bytes)", label, mime_type, len(resp.content))
        return Attachment(mime_type=mime_type, data=resp.content)

    async def fetch_all(
        self,
        refs: dict[str, str],
        required: tuple[str, ...],
        optional: tuple[str, ...] = (),
    ) -> dict[str, Attachment]:
        """Fetch every ref concurrently.

        Any required failure fails the whole batch. Optional failures are
        logged and left out of the result.
        """
        slots = [slot for slot in required + optional if refs.get(slot)]
        missing = [slot for slot in required if not refs.get(slot)]
        if missing:
            raise FetchError(f"Missing required attachments: {', '.join(missing)}", slot=missing[0])

        results = await asyncio.gather(
            *(self.fetch(refs[slot], slot) for slot in slots),
            return_exceptions=True,
        )

        resolved: dict[str, Attachment] = {}
        for slot, result in zip(slots, results):
            if isinstance(result, FetchError):
                if slot in required:
                    raise result
                logger.warning("[fetch] Skipping optional %s: %s", slot, result)
                continue
            if isinstance(result, BaseException):
                raise result
            resolved[slot] = result
        return resolved
