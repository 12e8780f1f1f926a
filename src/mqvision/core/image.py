"""Image decoding and downscaling before inference."""

from typing import Optional

import cv2
import numpy as np

from mqvision.types import BGRImage


def decode_image(data: bytes) -> Optional[BGRImage]:
    """Decode an encoded image (JPEG, PNG, ...) into a BGR array.

    Returns:
        BGR image, or None if the bytes are not a decodable image.
    """
    if not data:
        return None
    buffer = np.frombuffer(data, dtype=np.uint8)
    return cv2.imdecode(buffer, cv2.IMREAD_COLOR)


def fit_within(image: BGRImage, max_dimension: int) -> BGRImage:
    """Downscale so the longest side is at most ``max_dimension``.

    Images already within bounds are returned unchanged. A non-positive
    ``max_dimension`` disables scaling.
    """
    height, width = image.shape[:2]
    longest = max(height, width)
    if max_dimension <= 0 or longest <= max_dimension:
        return image

    scale = max_dimension / longest
    size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def encode_jpeg(image: BGRImage, quality: int = 90) -> bytes:
    """Encode a BGR array as JPEG.

    Raises:
        ValueError: If OpenCV cannot encode the image.
    """
    success, encoded = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        raise ValueError("Failed to encode image as JPEG")
    return encoded.tobytes()
