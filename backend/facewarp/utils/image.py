"""Image decoding, validation and encoding utilities.

The warp core works on RGBA arrays, so everything decoded here comes out as
an (H, W, 4) uint8 array in RGBA channel order.
"""

import base64
import io
from typing import Literal, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

# Register HEIF/HEIC support with Pillow (for iPhone images)
try:
    import pillow_heif
    pillow_heif.register_heif_opener()
except ImportError:
    pass  # pillow-heif not installed, HEIC support disabled

from facewarp.config import get_settings

# Magic bytes for supported formats
JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
WEBP_MAGIC = b"RIFF"
WEBP_MAGIC2 = b"WEBP"
# HEIC/HEIF uses ISO Base Media File Format with ftyp box
HEIC_FTYP = b"ftyp"
HEIC_BRANDS = (b"heic", b"heix", b"hevc", b"hevx", b"mif1", b"msf1")

ImageFormat = Literal["jpeg", "png", "webp", "heic"]


class ImageValidationError(Exception):
    """Exception raised for image validation errors."""

    def __init__(self, code: str, message: str, details: Optional[dict] = None):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def validate_magic_bytes(data: bytes) -> ImageFormat:
    """
    Validate image format by checking magic bytes.

    Args:
        data: Raw image data bytes

    Returns:
        Image format ('jpeg', 'png', 'webp', or 'heic')

    Raises:
        ImageValidationError: If format is not supported
    """
    if data.startswith(JPEG_MAGIC):
        return "jpeg"
    elif data.startswith(PNG_MAGIC):
        return "png"
    elif data.startswith(WEBP_MAGIC) and len(data) > 11 and data[8:12] == WEBP_MAGIC2:
        return "webp"
    elif len(data) > 12 and data[4:8] == HEIC_FTYP and data[8:12] in HEIC_BRANDS:
        return "heic"
    else:
        raise ImageValidationError(
            code="INVALID_IMAGE_FORMAT",
            message="Only JPEG, PNG, WebP, and HEIC formats are supported",
        )


def validate_image_size(data: bytes) -> None:
    """
    Validate image file size.

    Raises:
        ImageValidationError: If image exceeds size limit
    """
    settings = get_settings()
    if len(data) > settings.max_image_size_bytes:
        raise ImageValidationError(
            code="IMAGE_TOO_LARGE",
            message=f"Image size must be under {settings.max_image_size_mb}MB",
            details={"max_size_mb": settings.max_image_size_mb, "actual_size_mb": len(data) / (1024 * 1024)},
        )


def pil_to_rgba(pil_img: Image.Image) -> np.ndarray:
    """Convert any Pillow image to an (H, W, 4) uint8 RGBA array."""
    if pil_img.mode != "RGBA":
        pil_img = pil_img.convert("RGBA")
    return np.ascontiguousarray(np.asarray(pil_img, dtype=np.uint8))


def bytes_to_rgba(data: bytes) -> np.ndarray:
    """
    Decode image bytes to an RGBA array.

    Raises:
        ImageValidationError: If the data cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as pil_img:
            pil_img.load()
            return pil_to_rgba(pil_img)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageValidationError(
            code="INVALID_IMAGE_FORMAT",
            message="Failed to decode image",
            details={"error": str(e)},
        )


def rgba_to_png_bytes(array: np.ndarray) -> bytes:
    """Encode an (H, W, 4) RGBA array as PNG."""
    # OpenCV expects BGRA
    bgra = cv2.cvtColor(np.ascontiguousarray(array, dtype=np.uint8), cv2.COLOR_RGBA2BGRA)
    ok, buffer = cv2.imencode(".png", bgra)
    if not ok:
        raise ValueError("Failed to encode PNG")
    return buffer.tobytes()


def rgba_to_base64(array: np.ndarray) -> str:
    """Encode an RGBA array as a base64 PNG string."""
    return bytes_to_base64(rgba_to_png_bytes(array))


def bytes_to_base64(data: bytes) -> str:
    """
    Convert bytes to base64 string.

    Args:
        data: Raw bytes

    Returns:
        Base64 encoded string
    """
    return base64.b64encode(data).decode("utf-8")


def resize_image_if_needed(img: np.ndarray, max_dimension: Optional[int] = None) -> np.ndarray:
    """
    Resize image if it exceeds maximum dimension.

    Args:
        img: Image array
        max_dimension: Maximum dimension (width or height). Uses config default if None.

    Returns:
        Resized image or original if within limits
    """
    if max_dimension is None:
        max_dimension = get_settings().max_image_dimension

    h, w = img.shape[:2]
    if max(h, w) <= max_dimension:
        return img

    scale = max_dimension / max(h, w)
    new_w = max(1, int(w * scale))
    new_h = max(1, int(h * scale))
    return cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_AREA)


def validate_image(data: bytes) -> Tuple[ImageFormat, np.ndarray]:
    """
    Validate and load an uploaded image.

    Args:
        data: Raw image data bytes

    Returns:
        Tuple of (format, RGBA array)

    Raises:
        ImageValidationError: If validation fails
    """
    validate_image_size(data)
    image_format = validate_magic_bytes(data)
    rgba = bytes_to_rgba(data)
    return image_format, resize_image_if_needed(rgba)


def load_rgba_file(path: str) -> np.ndarray:
    """Read an image file from disk as RGBA."""
    with open(path, "rb") as f:
        data = f.read()
    return bytes_to_rgba(data)


def save_rgba_file(path: str, array: np.ndarray) -> None:
    """Write an RGBA array to disk as PNG."""
    with open(path, "wb") as f:
        f.write(rgba_to_png_bytes(array))
