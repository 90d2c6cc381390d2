"""Image normalization: validate, resize and re-encode provider output"""

import logging
from io import BytesIO
from typing import Any, Dict, Optional, Union

from PIL import Image, ImageCms, ImageColor, ImageOps, UnidentifiedImageError

from models.failure import Failure, FailureKind
from models.images import BinaryImage, ReferenceImage
from models.requests import OutputFormat

logger = logging.getLogger("ImageProcessor")

MAX_BYTES = 100_000_000
MAX_PIXELS = 64_000_000
JPEG_QUALITY = 92
WEBP_QUALITY = 92
DEFAULT_BACKGROUND = "#ffffff"

ACCEPTED_MIMES = ("image/png", "image/jpeg", "image/webp")

_PIL_FORMAT_MIMES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def get_image_metadata(image_bytes: bytes) -> Dict[str, Any]:
    """Extract width, height and mime type from image bytes.

    Raises:
        ValueError: If the bytes cannot be identified as an image
    """
    if not image_bytes:
        raise ValueError("Empty image data")
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return {
                "width": img.width,
                "height": img.height,
                "mime": _PIL_FORMAT_MIMES.get(img.format or "", "application/octet-stream"),
            }
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValueError(f"Unable to read image: {e}")


def load_reference(data: bytes, filename: str = "") -> ReferenceImage:
    """Build a ReferenceImage from uploaded bytes, verifying they decode.

    Raises:
        ValueError: If the bytes are not a supported, decodable image
    """
    if len(data) > MAX_BYTES:
        raise ValueError("Reference image too large")
    info = get_image_metadata(data)
    if info["mime"] not in ACCEPTED_MIMES:
        raise ValueError(f"Unsupported reference image type: {info['mime']}")
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"Reference image is corrupt: {e}")
    return ReferenceImage(
        data=data,
        mime=info["mime"],
        width=info["width"],
        height=info["height"],
        filename=filename,
    )


def _canonical_mode(img: Image.Image) -> Image.Image:
    """Convert any decoded mode to RGB, or RGBA when the source carries alpha"""
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (
        img.mode in ("P", "L", "RGB") and "transparency" in img.info
    )
    target = "RGBA" if has_alpha else "RGB"
    if img.mode != target:
        img = img.convert(target)
    return img


def _to_srgb(img: Image.Image, icc_profile: Optional[bytes]) -> Image.Image:
    if not icc_profile:
        return img
    try:
        source = ImageCms.ImageCmsProfile(BytesIO(icc_profile))
        srgb = ImageCms.createProfile("sRGB")
        return ImageCms.profileToProfile(img, source, srgb, outputMode=img.mode)
    except (ImageCms.PyCMSError, OSError) as e:
        logger.warning(f"Failed to convert embedded color profile to sRGB: {e}")
        return img


def _flatten(img: Image.Image, background: str) -> Image.Image:
    """Composite an RGBA image onto an opaque background color"""
    try:
        color = ImageColor.getrgb(background)[:3]
    except ValueError:
        logger.warning("Invalid background color %r, using %s", background, DEFAULT_BACKGROUND)
        color = ImageColor.getrgb(DEFAULT_BACKGROUND)[:3]
    flattened = Image.new("RGB", img.size, color)
    flattened.paste(img, mask=img.split()[-1])
    return flattened


def normalize(
    data: bytes,
    target_format: Union[OutputFormat, str],
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
    background: str = DEFAULT_BACKGROUND,
) -> Union[BinaryImage, Failure]:
    """Decode, sanitize and re-encode image bytes.

    Metadata and color profiles are stripped, the image is brought to sRGB,
    resized to exactly (target_width, target_height) when both are given and
    differ from the source, and flattened onto `background` when the target
    format has no alpha channel. The input bytes are never modified.

    Args:
        data: Encoded image bytes
        target_format: png, webp or jpeg (unknown values fall back to png)
        target_width: Optional exact output width
        target_height: Optional exact output height
        background: Flattening color for formats without alpha

    Returns:
        BinaryImage with the final dimensions and canonical mime, or a Failure
    """
    if not data:
        return Failure(FailureKind.INVALID_INPUT, "Empty image data")
    if len(data) > MAX_BYTES:
        return Failure(FailureKind.INVALID_INPUT, "Input too large")

    try:
        fmt = OutputFormat.coerce(target_format)
    except ValueError:
        logger.warning(f"Unknown target format {target_format!r}, falling back to png")
        fmt = OutputFormat.PNG

    try:
        with Image.open(BytesIO(data)) as loaded:
            if loaded.width * loaded.height > MAX_PIXELS:
                return Failure(FailureKind.INVALID_INPUT, "Image exceeds pixel limit")
            loaded.load()
            icc_profile = loaded.info.get("icc_profile")
            img = ImageOps.exif_transpose(loaded)
            img = _canonical_mode(img)
    except Image.DecompressionBombError:
        return Failure(FailureKind.INVALID_INPUT, "Image exceeds pixel limit")
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Failed to decode image: {e}")
        return Failure(FailureKind.INVALID_INPUT, "Failed to read image")

    img = _to_srgb(img, icc_profile)

    if target_width and target_height and (target_width, target_height) != img.size:
        img = img.resize((int(target_width), int(target_height)), Image.Resampling.LANCZOS)

    if not fmt.supports_alpha and img.mode == "RGBA":
        img = _flatten(img, background)

    output = BytesIO()
    try:
        if fmt is OutputFormat.JPEG:
            img.save(output, format="JPEG", quality=JPEG_QUALITY, optimize=True)
        elif fmt is OutputFormat.WEBP:
            img.save(output, format="WEBP", quality=WEBP_QUALITY, method=5)
        else:
            img.save(output, format="PNG", optimize=True)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to encode image as {fmt.value}: {e}")
        return Failure(FailureKind.INVALID_INPUT, "Failed to convert image")

    width, height = img.size
    return BinaryImage(data=output.getvalue(), mime=fmt.mime, width=width, height=height)


def create_preview(data: bytes, max_dim: int = 512, quality: int = 70) -> bytes:
    """Downscaled WebP thumbnail for inline display in tool responses.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    try:
        with Image.open(BytesIO(data)) as loaded:
            img = _canonical_mode(ImageOps.exif_transpose(loaded))
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Failed to read image: {e}")

    img.thumbnail((max_dim, max_dim), Image.Resampling.LANCZOS)
    output = BytesIO()
    img.save(output, format="WEBP", quality=quality, method=4)
    return output.getvalue()
