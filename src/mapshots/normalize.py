"""Crop and compress captured surfaces into storage-ready JPEG artifacts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageChops, UnidentifiedImageError

from mapshots.errors import UnsupportedImage

logger = logging.getLogger(__name__)

MIN_QUALITY = 60
MAX_QUALITY = 70


def trim_border(image: Image.Image, threshold: int = 10) -> Image.Image:
    """Crop away a uniform border matching the top-left pixel.

    Pixels within `threshold` of the border color count as border. A
    borderless image is returned unchanged.
    """
    background = Image.new(image.mode, image.size, image.getpixel((0, 0)))
    diff = ImageChops.difference(image, background)
    if threshold > 0:
        diff = ImageChops.add(diff, diff, 2.0, -threshold)
    bbox = diff.getbbox()
    if bbox is None or bbox == (0, 0, image.width, image.height):
        return image
    return image.crop(bbox)


def normalize_image(raw: bytes, *, quality: int = MIN_QUALITY, trim_threshold: int = 10) -> bytes:
    quality = max(MIN_QUALITY, min(MAX_QUALITY, int(quality)))
    try:
        with Image.open(BytesIO(raw)) as opened:
            opened.load()
            exif = opened.info.get("exif")
            icc_profile = opened.info.get("icc_profile")
            image = opened if opened.mode in ("RGB", "L") else opened.convert("RGB")
            image = trim_border(image.copy(), trim_threshold)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise UnsupportedImage(f"cannot decode image ({len(raw)} bytes): {exc}") from exc

    save_kwargs: dict[str, object] = {
        "format": "JPEG",
        "quality": quality,
        "optimize": True,
        "progressive": True,
    }
    if exif:
        save_kwargs["exif"] = exif
    if icc_profile:
        save_kwargs["icc_profile"] = icc_profile
    out = BytesIO()
    image.save(out, **save_kwargs)
    normalized = out.getvalue()

    if raw:
        reduction = (len(raw) - len(normalized)) / len(raw) * 100
        logger.debug(
            "Normalized image: %.2f%% reduction (%d -> %d bytes)",
            reduction,
            len(raw),
            len(normalized),
        )
    return normalized


@dataclass(frozen=True)
class ImageNormalizer:
    quality: int = MIN_QUALITY
    trim_threshold: int = 10

    def normalize(self, raw: bytes) -> bytes:
        return normalize_image(raw, quality=self.quality, trim_threshold=self.trim_threshold)
