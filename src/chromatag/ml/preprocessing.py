"""Image materialization.

Turns an ``ImageSource`` into the single ``ResolvedImage`` every stage
works from: data URLs are decoded in place, http(s) URLs are downloaded,
and the bytes are decoded, EXIF-rotated and converted to an RGB array.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlsplit

import httpx
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from chromatag.classification.types import BytesSource, ResolvedImage, UrlSource
from chromatag.errors import ImageFetchError, UnsupportedInputFormat

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from chromatag.classification.types import ImageSource
    from chromatag.config import Settings

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = frozenset({"http", "https"})


class ImageLoader(Protocol):
    """Protocol for fetching and decoding images."""

    def fetch(self, url: str) -> bytes:
        """Download an http(s) URL.

        Raises:
            ImageFetchError: If the download fails or exceeds size limits.
        """
        ...

    def decode(self, content: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an HxWx3 RGB uint8 array.

        Raises:
            UnsupportedInputFormat: If the bytes are not a supported image.
        """
        ...


class PillowImageLoader:
    """Fetches with httpx and decodes with Pillow."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self._max_file_size = settings.max_file_size
        self._max_pixels = settings.max_image_pixels
        self._client = client if client is not None else httpx.Client(
            timeout=settings.fetch_timeout,
            follow_redirects=True,
        )

    def fetch(self, url: str) -> bytes:
        """Stream the body, stopping as soon as it passes ``max_file_size``."""
        chunks: list[bytes] = []
        received = 0
        try:
            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                declared = response.headers.get("content-length")
                if declared is not None and declared.isdigit() and int(declared) > self._max_file_size:
                    raise ImageFetchError(f"Image exceeds {self._max_file_size} bytes")
                for chunk in response.iter_bytes():
                    received += len(chunk)
                    if received > self._max_file_size:
                        raise ImageFetchError(f"Image exceeds {self._max_file_size} bytes")
                    chunks.append(chunk)
        except httpx.HTTPStatusError as exc:
            raise ImageFetchError(f"Image URL returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"Could not fetch image: {exc}") from exc

        logger.debug("Fetched %d bytes from %s", received, url)
        return b"".join(chunks)

    def decode(self, content: bytes) -> NDArray[np.uint8]:
        if len(content) > self._max_file_size:
            raise UnsupportedInputFormat(f"Image exceeds {self._max_file_size} bytes")
        try:
            with Image.open(io.BytesIO(content)) as image:
                width, height = image.size
                if width * height > self._max_pixels:
                    raise UnsupportedInputFormat(f"Image has {width * height} pixels, limit is {self._max_pixels}")
                rgb = ImageOps.exif_transpose(image).convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise UnsupportedInputFormat(f"Unrecognized image data: {exc}") from exc
        except OSError as exc:
            raise UnsupportedInputFormat(f"Corrupt image data: {exc}") from exc
        return np.asarray(rgb, dtype=np.uint8)

    def close(self) -> None:
        self._client.close()


def _decode_data_url(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if not header.startswith("data:image/") or ";base64" not in header or not payload:
        raise UnsupportedInputFormat("Only base64 data:image URLs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UnsupportedInputFormat(f"Invalid base64 payload: {exc}") from exc


def source_bytes(source: ImageSource, loader: ImageLoader) -> tuple[bytes, str | None]:
    """Return the encoded bytes behind a source and its URL, if any."""
    match source:
        case BytesSource(data=data):
            if not isinstance(data, bytes | bytearray | memoryview) or len(data) == 0:
                raise UnsupportedInputFormat("Image buffer is empty")
            return bytes(data), None
        case UrlSource(url=url):
            if not isinstance(url, str):
                raise UnsupportedInputFormat("Image URL must be a string")
            url = url.strip()
            if url.startswith("data:"):
                return _decode_data_url(url), None
            parts = urlsplit(url)
            if parts.scheme not in _HTTP_SCHEMES or not parts.netloc:
                raise UnsupportedInputFormat(f"Not a well-formed image URL: {url[:80]}")
            return loader.fetch(url), url
        case _:
            raise UnsupportedInputFormat(f"Unsupported image source: {type(source).__name__}")


def resolve_image(source: ImageSource, loader: ImageLoader) -> ResolvedImage:
    """Resolve a source once into bytes plus decoded pixels."""
    content, url = source_bytes(source, loader)
    pixels = loader.decode(content)
    return ResolvedImage(content=content, pixels=pixels, url=url)
