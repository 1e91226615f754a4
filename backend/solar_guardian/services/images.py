import base64
import binascii
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from ..core.config import settings

logger = logging.getLogger("solar_guardian.images")

CAPTURES = "captures"
PANEL_CROPS = "panel_crops"

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_file_part(value: str) -> str:
    return _UNSAFE.sub("_", value)


def timestamp_suffix(now: datetime) -> str:
    return now.strftime("%Y%m%d_%H%M%S")


def decode_base64_image(raw: str) -> bytes:
    # Accept both bare base64 and data URLs ("data:image/jpeg;base64,....")
    data = raw.split(",", 1)[1] if "," in raw else raw
    return base64.b64decode(data, validate=True)


class ImageStore:
    """Writes decoded Pi images under a root directory and hands back web references."""

    def __init__(self, root: Optional[str] = None, url_prefix: Optional[str] = None):
        self.root = Path(root or settings.PI_SAVE_DIR)
        self.url_prefix = (url_prefix or settings.PI_IMAGES_URL_PREFIX).rstrip("/")

    def save(self, subdir: str, filename: str, raw_b64: Optional[str]) -> Optional[str]:
        """Store one image; a decode or write failure is logged and yields ``None``."""
        if not raw_b64:
            return None
        try:
            payload = decode_base64_image(raw_b64)
            target_dir = self.root / subdir
            target_dir.mkdir(parents=True, exist_ok=True)
            (target_dir / filename).write_bytes(payload)
        except (binascii.Error, ValueError, OSError) as exc:
            logger.warning("Failed to save %s/%s: %s", subdir, filename, exc)
            return None
        logger.debug("Saved image %s/%s (%d bytes)", subdir, filename, len(payload))
        return f"{self.url_prefix}/{subdir}/{filename}"

    def discard(self, refs: Iterable[Optional[str]]) -> int:
        """Delete files previously returned by ``save``; unknown references are ignored."""
        removed = 0
        for ref in refs:
            if not ref or not ref.startswith(self.url_prefix + "/"):
                continue
            path = self.root / ref[len(self.url_prefix) + 1:]
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed to remove %s: %s", path, exc)
        return removed


def get_image_store() -> ImageStore:
    return ImageStore()
