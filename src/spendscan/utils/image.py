"""Receipt photo normalization before it is sent to the hosted model."""

import io
import logging

from PIL import Image, ImageOps

from spendscan.models import ReceiptImage

logger = logging.getLogger(__name__)

MAX_IMAGE_EDGE = 1200
JPEG_QUALITY = 80


def normalize_image(
    image: ReceiptImage,
    max_edge: int = MAX_IMAGE_EDGE,
    quality: int = JPEG_QUALITY,
) -> ReceiptImage:
    """
    Downscale and recompress a receipt photo.

    The longer edge is bounded by ``max_edge`` (aspect ratio kept) and the result
    is re-encoded as JPEG at ``quality``. If the image cannot be processed the
    original payload is returned unchanged, so a bad decode never blocks a scan.

    Args:
        image: Image to normalize
        max_edge: Maximum length of the longer edge in pixels
        quality: JPEG quality (1-95)

    Returns:
        The normalized image, or ``image`` itself if processing failed
    """
    try:
        with Image.open(io.BytesIO(image.data)) as opened:
            img = ImageOps.exif_transpose(opened)
            if img.mode != "RGB":
                img = img.convert("RGB")

            width, height = img.size
            long_side = max(width, height)
            if long_side > max_edge:
                scale = max_edge / long_side
                new_size = (
                    max(1, round(width * scale)),
                    max(1, round(height * scale)),
                )
                img = img.resize(new_size, Image.Resampling.LANCZOS)
                logger.debug(
                    "Resized image %dx%d -> %dx%d", width, height, *img.size
                )

            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=quality, optimize=True)
    except Exception as e:
        logger.warning("Image normalization failed (%s), sending original", e)
        return image

    compressed = buf.getvalue()
    logger.debug(
        "Image size: %d KB -> %d KB", len(image.data) // 1024, len(compressed) // 1024
    )
    return ReceiptImage(data=compressed, mime_type="image/jpeg")
