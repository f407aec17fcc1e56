"""
Image processor for metadata extraction, normalization and derivatives.

Handles EXIF capture time and GPS extraction, conversion of HEIC/HEIF
sources to JPEG, and WebP encoding of the primary image and thumbnails.
"""

import hashlib
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional, Tuple

import pillow_heif
from PIL import ExifTags, Image, ImageOps

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

RESTRICTED_FORMATS = {"heic", "heif"}

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

# EXIF tag ids
TAG_DATETIME = 306
TAG_DATETIME_ORIGINAL = 36867
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4


@dataclass
class ImageMetadata:
    """Metadata extracted from an image file."""
    taken_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    from_exif: bool = False

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class NormalizedImage:
    """Source bytes in a baseline raster format."""
    content: bytes
    extension: str
    converted: bool = False


class MediaProcessingError(Exception):
    """Exception raised during media processing."""
    pass


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _gps_to_degrees(value, ref) -> Optional[float]:
    if not value or len(value) != 3:
        return None
    degrees, minutes, seconds = (float(part) for part in value)
    result = degrees + minutes / 60.0 + seconds / 3600.0
    # 0/0 rationals (no GPS fix) decode to NaN
    if not math.isfinite(result):
        return None
    if isinstance(ref, bytes):
        ref = ref.decode(errors="ignore")
    if ref and ref.strip().upper() in ("S", "W"):
        result = -result
    return result


class ImageProcessor:
    """
    Image processor for the ingestion pipeline.

    Capture times are naive wall-clock values, matching EXIF semantics.
    """

    def __init__(
        self,
        thumb_big_size: int = 400,
        thumb_small_size: int = 200,
        webp_quality: int = 90,
        thumb_quality: int = 80,
        heic_jpeg_quality: int = 92,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.thumb_big_size = thumb_big_size
        self.thumb_small_size = thumb_small_size
        self.webp_quality = webp_quality
        self.thumb_quality = thumb_quality
        self.heic_jpeg_quality = heic_jpeg_quality
        self.clock = clock

    def extract_metadata(self, content: bytes) -> ImageMetadata:
        """
        Extract capture time and coordinates from EXIF.

        Never raises: missing or unreadable metadata yields the current
        time and no coordinates.
        """
        try:
            with Image.open(BytesIO(content)) as image:
                exif = image.getexif()
                exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
                gps_ifd = exif.get_ifd(ExifTags.IFD.GPSInfo)

            raw_taken_at = exif_ifd.get(TAG_DATETIME_ORIGINAL) or exif.get(TAG_DATETIME)
            taken_at = None
            if raw_taken_at:
                taken_at = datetime.strptime(
                    str(raw_taken_at).strip("\x00 "), EXIF_DATETIME_FORMAT)

            latitude = longitude = None
            if gps_ifd:
                latitude = _gps_to_degrees(
                    gps_ifd.get(GPS_LATITUDE), gps_ifd.get(GPS_LATITUDE_REF))
                longitude = _gps_to_degrees(
                    gps_ifd.get(GPS_LONGITUDE), gps_ifd.get(GPS_LONGITUDE_REF))
                if (latitude is None or longitude is None
                        or not -90.0 <= latitude <= 90.0
                        or not -180.0 <= longitude <= 180.0):
                    latitude = longitude = None
        except Exception as e:
            logger.warning(f"Failed to extract EXIF, using defaults: {e}")
            return ImageMetadata(taken_at=self.clock())

        if taken_at is None:
            logger.info("No EXIF capture time, using current time")
            return ImageMetadata(
                taken_at=self.clock(), latitude=latitude, longitude=longitude)

        return ImageMetadata(
            taken_at=taken_at,
            latitude=latitude,
            longitude=longitude,
            from_exif=True,
        )

    def normalize(self, content: bytes, filename: str) -> NormalizedImage:
        """
        Convert restricted formats (HEIC/HEIF) to JPEG; pass others through.

        Raises:
            MediaProcessingError: If the bytes are not a decodable image
        """
        extension = Path(filename).suffix.lower().lstrip(".")
        try:
            with Image.open(BytesIO(content)) as image:
                image_format = (image.format or "").lower()
                if extension in RESTRICTED_FORMATS or image_format in RESTRICTED_FORMATS:
                    converted = image.convert("RGB")
                    buffer = BytesIO()
                    converted.save(
                        buffer, format="JPEG", quality=self.heic_jpeg_quality)
                    return NormalizedImage(buffer.getvalue(), "jpg", converted=True)
                image.verify()
        except Exception as e:
            raise MediaProcessingError(f"Failed to decode image {filename}: {e}") from e

        if not extension:
            extension = "jpg" if image_format == "jpeg" else image_format or "bin"
        return NormalizedImage(content, extension)

    def load(self, content: bytes) -> Image.Image:
        """
        Decode an image with EXIF orientation applied, in a WebP-compatible mode.

        Raises:
            MediaProcessingError: If the image cannot be decoded
        """
        try:
            image = Image.open(BytesIO(content))
            image = ImageOps.exif_transpose(image)
            if image.mode not in ("RGB", "RGBA"):
                has_alpha = image.mode in ("LA", "PA") or (
                    image.mode == "P" and "transparency" in image.info)
                image = image.convert("RGBA" if has_alpha else "RGB")
            return image
        except Exception as e:
            raise MediaProcessingError(f"Failed to load image: {e}") from e

    def encode_webp(self, image: Image.Image, quality: Optional[int] = None) -> bytes:
        """
        Encode an image as WebP.

        Raises:
            MediaProcessingError: If encoding fails or produces no data
        """
        try:
            buffer = BytesIO()
            image.save(
                buffer,
                format="WEBP",
                quality=quality or self.webp_quality,
                method=6,
            )
        except Exception as e:
            raise MediaProcessingError(f"WebP encoding failed: {e}") from e
        data = buffer.getvalue()
        if not data:
            raise MediaProcessingError("WebP encoding produced an empty file")
        return data

    def thumbnail(self, image: Image.Image, size: int) -> Tuple[bytes, Tuple[int, int]]:
        """
        Fit the image inside a size x size box, never upscaling.

        Returns:
            Encoded WebP bytes and the thumbnail dimensions
        """
        thumb = image.copy()
        thumb.thumbnail((size, size), Image.Resampling.LANCZOS)
        return self.encode_webp(thumb, self.thumb_quality), thumb.size
