import io
import logging
from pathlib import Path
from typing import NamedTuple, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from sigmatch.errors import ImageDecodeError

logger = logging.getLogger(__name__)

ImageInput = Union[str, Path, bytes, bytearray, np.ndarray, Image.Image]


class Rect(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    def to_dict(self):
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_any(cls, value) -> "Rect":
        """Build a Rect from a Rect, a 4-tuple or a ``{x, y, width, height}`` dict."""
        if isinstance(value, dict):
            value = (value["x"], value["y"], value["width"], value["height"])
        x, y, w, h = (int(round(v)) for v in value)
        if w <= 0 or h <= 0:
            raise ValueError(f"Rectangle must have a positive size, got {w}x{h}")
        return cls(x, y, w, h)


def _decode_bytes(data: bytes) -> Image.Image:
    if not data:
        raise ImageDecodeError("Empty image buffer")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError(f"Failed to decode image: {e}") from e


def load_pixels(image_input: ImageInput) -> np.ndarray:
    """Return raw pixels in OpenCV order (gray, BGR or BGRA).

    Accepts a file path, encoded bytes, a PIL image or a numpy array.
    """
    if isinstance(image_input, np.ndarray):
        image = image_input
    elif isinstance(image_input, Image.Image):
        image = _pil_to_array(image_input)
    elif isinstance(image_input, (bytes, bytearray)):
        image = _pil_to_array(_decode_bytes(bytes(image_input)))
    elif isinstance(image_input, (str, Path)):
        try:
            data = Path(image_input).read_bytes()
        except OSError as e:
            raise ImageDecodeError(f"Cannot read image file {image_input}: {e}") from e
        image = _pil_to_array(_decode_bytes(data))
    else:
        raise ValueError(
            "Input must be a file path, bytes, numpy array, or PIL Image object"
        )

    if image is None or image.size == 0:
        raise ImageDecodeError("Invalid image array provided")
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3, 4)):
        raise ImageDecodeError(f"Unsupported image shape {image.shape}")
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    return image


def _pil_to_array(img: Image.Image) -> np.ndarray:
    if img.mode == "L":
        return np.array(img)
    rgb = np.array(img.convert("RGB"))
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def to_grayscale(image_input: ImageInput) -> np.ndarray:
    """Decode ``image_input`` into a uint8 intensity buffer (BT.601 luma)."""
    image = load_pixels(image_input)
    if image.ndim == 2:
        return np.ascontiguousarray(image)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def to_brightness(image_input: ImageInput) -> np.ndarray:
    """Mean channel intensity per pixel, as float32."""
    image = load_pixels(image_input)
    if image.ndim == 2:
        return image.astype(np.float32)
    return image[:, :, :3].astype(np.float32).mean(axis=2)


def crop(image: np.ndarray, rect: Rect) -> np.ndarray:
    """Crop ``rect`` out of ``image``, clipped to the image bounds."""
    h, w = image.shape[:2]
    x0 = min(max(rect.x, 0), w)
    y0 = min(max(rect.y, 0), h)
    x1 = min(max(rect.x + rect.width, 0), w)
    y1 = min(max(rect.y + rect.height, 0), h)
    return image[y0:y1, x0:x1]


def clamp_rect(x0: int, y0: int, x1: int, y1: int, width: int, height: int) -> Rect:
    """Clamp the corner box ``(x0, y0)-(x1, y1)`` to a ``width`` x ``height`` page."""
    x0 = max(0, x0)
    y0 = max(0, y0)
    x1 = min(width, x1)
    y1 = min(height, y1)
    return Rect(int(x0), int(y0), int(max(0, x1 - x0)), int(max(0, y1 - y0)))


def ink_image(mask: np.ndarray) -> np.ndarray:
    """Dark ink on a white background, the way reports show extracted strokes."""
    return np.where(mask > 0, 0, 255).astype(np.uint8)


def encode_mask_png(mask: np.ndarray, invert: bool = True) -> bytes:
    img = ink_image(mask) if invert else mask
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ValueError("Image encoding failed")
    return buf.tobytes()
