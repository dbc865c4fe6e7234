# preprocess.py
# Normalise incoming images (PIL or numpy) into an HxWx3 uint8 RGB buffer.
import io
from typing import Tuple
import numpy as np
from PIL import Image

# transparent pixels are composited onto this before quantization
DEFAULT_BACKGROUND: Tuple[int, int, int] = (255, 255, 255)


def _image_to_rgba(img: Image.Image) -> Image.Image:
    if img.mode == "RGBA":
        return img
    return img.convert("RGBA")


def load_image_bytes(data: bytes) -> Image.Image:
    """Decode an uploaded file; raises ValueError if Pillow cannot read it."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Unreadable image: {e}") from e
    return img


def image_to_rgb_array(image, background: Tuple[int, int, int] = DEFAULT_BACKGROUND) -> np.ndarray:
    """
    image: PIL image, HxW gray, HxWx3 RGB or HxWx4 RGBA array
    returns: HxWx3 uint8, alpha flattened onto ``background``
    """
    if isinstance(image, Image.Image):
        rgba = _image_to_rgba(image)
        canvas = Image.new("RGBA", rgba.size, tuple(background) + (255,))
        canvas.alpha_composite(rgba)
        return np.array(canvas.convert("RGB"), dtype=np.uint8)

    arr = np.asarray(image)
    if arr.ndim == 2:
        arr = np.repeat(arr[:, :, None], 3, axis=2)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"Expected an HxWx3 or HxWx4 image, got shape {arr.shape}")
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.shape[2] == 4:
        alpha = arr[:, :, 3:4].astype(np.float64) / 255.0
        bg = np.asarray(background, dtype=np.float64)
        blended = arr[:, :, :3].astype(np.float64) * alpha + bg * (1.0 - alpha)
        return np.rint(blended).astype(np.uint8)
    return np.ascontiguousarray(arr)


def image_size(image) -> Tuple[int, int]:
    """(width, height) without converting the pixels."""
    if isinstance(image, Image.Image):
        return image.size
    arr = np.asarray(image)
    if arr.ndim < 2:
        raise ValueError(f"Expected an image array, got shape {arr.shape}")
    return int(arr.shape[1]), int(arr.shape[0])
