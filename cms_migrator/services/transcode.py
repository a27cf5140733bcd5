"""WebP transcoding with Pillow."""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from cms_migrator.constants import TRANSCODABLE_EXTENSIONS
from cms_migrator.exceptions import TransferError

WEBP_CONTENT_TYPE = "image/webp"


@dataclass(frozen=True)
class TranscodedImage:
    data: bytes
    extension: str
    content_type: str


def is_webp(data: bytes) -> bool:
    """Check the RIFF/WEBP magic bytes."""
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def needs_transcoding(extension: str, data: bytes) -> bool:
    """True for raster formats other than WebP. SVG is never transcoded."""
    return extension.lower() in TRANSCODABLE_EXTENSIONS and not is_webp(data)


def transcode_image(data: bytes, quality: int) -> TranscodedImage:
    """
    Re-encode an image buffer as WebP.

    Palette and CMYK images are converted first; animated images keep all
    of their frames.

    Raises:
        TransferError: With reason ``transcode_error`` if Pillow cannot
            decode or encode the image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            buffer = io.BytesIO()
            if getattr(image, "is_animated", False):
                image.save(buffer, format="WEBP", quality=quality, save_all=True)
            else:
                if image.mode in ("P", "LA", "PA"):
                    image = image.convert("RGBA")
                elif image.mode not in ("RGB", "RGBA"):
                    image = image.convert("RGB")
                image.save(buffer, format="WEBP", quality=quality)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise TransferError(f"Could not transcode image: {e}", reason="transcode_error") from e

    return TranscodedImage(buffer.getvalue(), "webp", WEBP_CONTENT_TYPE)
