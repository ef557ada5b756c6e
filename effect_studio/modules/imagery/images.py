"""
Image Store

Write-once, read-many image storage keyed by opaque image ids.

put() validates and normalizes incoming bytes (size limit, decodability,
format allow-list, longest-side bound) before anything is written. Blob
bytes live in an IStorage backend; the store keeps the metadata index.
"""

import io
import uuid
import asyncio
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from effect_studio.core.exceptions import (
    InvalidImage,
    UnsupportedFormat,
    TooLarge,
    ImageNotFound,
)
from effect_studio.core.logging import get_logger
from effect_studio.core.metrics import record_upload
from effect_studio.core.storage import IStorage
from effect_studio.modules.imagery.models import ImageBlob, ImageFormat

logger = get_logger(__name__)

# PIL format name -> stored format
ALLOWED_FORMATS = {
    "JPEG": ImageFormat.JPEG,
    # Multi-picture JPEG (most phone cameras); a plain JPEG stream to decoders
    "MPO": ImageFormat.JPEG,
    "PNG": ImageFormat.PNG,
    "WEBP": ImageFormat.WEBP,
}

_DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    SyntaxError,
    ValueError,
)


def _normalize(
    data: bytes,
    max_dimension: int,
    jpeg_quality: int
) -> Tuple[bytes, ImageFormat, int, int]:
    """
    Decode, check and downscale an image.

    Returns (bytes, format, width, height). Bytes are returned untouched
    unless the image exceeds max_dimension, in which case it is resized to
    fit (aspect preserved) and re-encoded as JPEG.
    """
    try:
        with Image.open(io.BytesIO(data)) as probe:
            probe.verify()
        image = Image.open(io.BytesIO(data))
        image.load()
    except _DECODE_ERRORS as e:
        raise InvalidImage(f"File is not a decodable image: {e}") from e

    image_format = ALLOWED_FORMATS.get(image.format or "")
    if image_format is None:
        raise UnsupportedFormat(
            (image.format or "unknown").lower(),
            [f.value for f in ALLOWED_FORMATS.values()]
        )

    width, height = image.size
    if max(width, height) <= max_dimension:
        return data, image_format, width, height

    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=jpeg_quality, optimize=True)
    return buffer.getvalue(), ImageFormat.JPEG, image.width, image.height


class ImageStore:
    """Validating image store over a blob backend."""

    def __init__(
        self,
        storage: IStorage,
        max_size_bytes: int = 10 * 1024 * 1024,
        max_dimension: int = 2048,
        jpeg_quality: int = 85,
        ttl_seconds: int = 0
    ):
        self.storage = storage
        self.max_size_bytes = max_size_bytes
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality
        self.ttl_seconds = ttl_seconds
        self._index: Dict[str, ImageBlob] = {}

    async def put(
        self,
        data: bytes,
        declared_mime: Optional[str] = None,
        folder: str = "uploads"
    ) -> ImageBlob:
        """
        Validate, normalize and persist an image.

        Raises:
            TooLarge: byte size over the limit (checked before decoding)
            InvalidImage: bytes do not decode as an image
            UnsupportedFormat: decoded format not JPEG/PNG/WebP
        """
        if len(data) > self.max_size_bytes:
            record_upload("too_large")
            raise TooLarge(len(data), self.max_size_bytes)
        if not data:
            record_upload("invalid")
            raise InvalidImage("Empty image payload")

        try:
            payload, image_format, width, height = await asyncio.to_thread(
                _normalize, data, self.max_dimension, self.jpeg_quality
            )
        except InvalidImage:
            record_upload("invalid")
            raise
        except UnsupportedFormat:
            record_upload("unsupported")
            raise

        if declared_mime and declared_mime != image_format.content_type and payload is data:
            logger.info(
                "image_mime_mismatch",
                declared=declared_mime,
                detected=image_format.content_type
            )

        image_id = uuid.uuid4().hex
        storage_key = f"{folder}/{image_id}.{image_format.extension}"
        await self.storage.save(storage_key, payload, content_type=image_format.content_type)

        blob = ImageBlob(
            image_id=image_id,
            storage_key=storage_key,
            format=image_format,
            width=width,
            height=height,
            byte_size=len(payload),
            created_at=datetime.utcnow(),
        )
        self._index[image_id] = blob
        record_upload("stored")

        logger.info(
            "image_stored",
            image_id=image_id,
            folder=folder,
            format=image_format.value,
            width=width,
            height=height,
            byte_size=len(payload),
            normalized=payload is not data
        )
        return blob

    def _is_expired(self, blob: ImageBlob, now: Optional[datetime] = None) -> bool:
        if self.ttl_seconds <= 0:
            return False
        now = now or datetime.utcnow()
        return now - blob.created_at > timedelta(seconds=self.ttl_seconds)

    def metadata(self, image_id: str) -> ImageBlob:
        blob = self._index.get(image_id)
        if blob is None or self._is_expired(blob):
            raise ImageNotFound(image_id)
        return blob

    async def exists(self, image_id: str) -> bool:
        try:
            blob = self.metadata(image_id)
        except ImageNotFound:
            return False
        return await self.storage.exists(blob.storage_key)

    async def get(self, image_id: str) -> bytes:
        """Read image bytes. Raises ImageNotFound if absent, expired or vanished."""
        _, data = await self.get_with_metadata(image_id)
        return data

    async def get_with_metadata(self, image_id: str) -> Tuple[ImageBlob, bytes]:
        blob = self.metadata(image_id)
        try:
            data = await self.storage.read(blob.storage_key)
        except FileNotFoundError:
            # Swept or removed underneath us
            self._index.pop(image_id, None)
            raise ImageNotFound(image_id) from None
        return blob, data

    async def delete(self, image_id: str) -> bool:
        """Best-effort delete; in-flight jobs do not depend on it."""
        blob = self._index.pop(image_id, None)
        if blob is None:
            return False
        return await self.storage.delete(blob.storage_key)

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete blobs older than the TTL. Returns the number removed."""
        if self.ttl_seconds <= 0:
            return 0

        now = now or datetime.utcnow()
        expired = [
            image_id for image_id, blob in list(self._index.items())
            if self._is_expired(blob, now)
        ]
        removed = 0
        for image_id in expired:
            if await self.delete(image_id):
                removed += 1

        if expired:
            logger.info("images_swept", expired=len(expired), removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._index)
