import base64
import binascii
import re
from typing import Optional, Tuple

import cv2
import numpy as np

from app.core.exceptions import ImageDecodeError, NoPayload, PayloadTooLarge
from app.utils.logger import log

DATA_URL_PATTERN = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)


def strip_data_url(payload: str) -> str:
    """Remove a ``data:<mime-type>;base64,`` prefix if present."""
    matches = DATA_URL_PATTERN.match(payload)
    if matches:
        return matches.group(2)
    return payload


def decode_base64_payload(payload: Optional[str], max_bytes: Optional[int] = None) -> bytes:
    """Decode a base64 (or data URL) image payload to raw bytes."""
    if payload is None or not payload.strip():
        raise NoPayload()

    data = "".join(strip_data_url(payload.strip()).split())
    # base64 inflates by 4/3, so the encoded length bounds the decoded size
    if max_bytes is not None and len(data) * 3 // 4 > max_bytes:
        log.warn(f"Image payload rejected, encoded length {len(data)}")
        raise PayloadTooLarge()

    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        log.warn("Image payload is not valid base64")
        raise ImageDecodeError()

    if len(raw) == 0:
        raise ImageDecodeError("Empty image data.")
    return raw


def decode_image(image_data: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, WebP, ...) to a BGR pixel buffer."""
    nparr = np.frombuffer(image_data, np.uint8)
    img = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if img is None:
        log.warn("Invalid image data")
        raise ImageDecodeError("Invalid image format.")
    log.bug(f"Image decoded, size: {img.shape}")
    return img


def decode_image_payload(
    payload: Optional[str], max_bytes: Optional[int] = None
) -> Tuple[bytes, np.ndarray]:
    """Decode a base64 image payload into its raw bytes and pixel buffer."""
    image_data = decode_base64_payload(payload, max_bytes=max_bytes)
    return image_data, decode_image(image_data)


def crop_box(img: np.ndarray, box: Tuple[float, float, float, float]) -> np.ndarray:
    """Cut a bounding box out of an image, clipped to the image bounds."""
    h, w = img.shape[:2]
    x1, y1, x2, y2 = box
    x1, x2 = max(0, int(x1)), min(w, int(round(x2)))
    y1, y2 = max(0, int(y1)), min(h, int(round(y2)))
    if x2 <= x1 or y2 <= y1:
        raise ValueError(f"Empty crop for box {box} in image of size {w}x{h}")
    return img[y1:y2, x1:x2]


def encode_png(img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ValueError("PNG encoding failed")
    return buf.tobytes()
