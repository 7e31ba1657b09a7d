"""
Cover image pipeline: resize, JPEG re-encode and storage on the local filesystem.
"""

import asyncio
import io
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import structlog
from PIL import Image, UnidentifiedImageError

from api.errors import ImageProcessingError

logger = structlog.get_logger(__name__)

# URL prefix under which stored images are served
IMAGES_ROUTE = "images"


class ImageUpload:
    """Raw upload bytes with the client supplied file name."""

    def __init__(self, data: bytes, filename: str):
        self.data = data
        self.filename = filename

    def __repr__(self) -> str:
        return f"ImageUpload(filename={self.filename!r}, size={len(self.data)})"


class ImageProcessor:
    """
    Compresses uploaded cover images and manages the stored files.

    Files are named ``{epochMillis}-{originalName}`` inside ``images_dir``;
    the returned storage path is relative (``images/<file>``) whatever the
    directory is, since the static ``/images`` mount serves it.
    """

    def __init__(self, images_dir: str = "images", max_width: int = 800, quality: int = 80):
        self.images_dir = Path(images_dir)
        self.max_width = max_width
        self.quality = quality

    @staticmethod
    def build_filename(original_name: str) -> str:
        """Timestamp-prefixed file name, stripped of any directory part."""
        name = Path(original_name or "image").name.replace(" ", "_") or "image"
        return f"{int(time.time() * 1000)}-{name}"

    async def process(
        self,
        data: bytes,
        original_name: str,
        max_width: Optional[int] = None,
        quality: Optional[int] = None,
    ) -> str:
        """
        Resize and store an uploaded image.

        Args:
            data: Raw upload bytes
            original_name: File name supplied by the client
            max_width: Maximum width in pixels (defaults to the configured one)
            quality: JPEG quality (defaults to the configured one)

        Returns:
            URL-quoted relative storage path of the written file

        Raises:
            ImageProcessingError: If the bytes are not an image or the write fails
        """
        filename = self.build_filename(original_name)
        output_path = self.images_dir / filename
        await asyncio.to_thread(
            self._compress,
            data,
            output_path,
            max_width or self.max_width,
            quality or self.quality,
        )
        logger.info("Image stored", filename=filename, size=len(data))
        return f"{IMAGES_ROUTE}/{quote(filename)}"

    def _compress(self, data: bytes, output_path: Path, max_width: int, quality: int) -> None:
        try:
            with Image.open(io.BytesIO(data)) as image:
                if image.width > max_width:
                    height = max(1, round(image.height * max_width / image.width))
                    image = image.resize((max_width, height), Image.Resampling.LANCZOS)
                if image.mode != "RGB":
                    image = image.convert("RGB")
                output_path.parent.mkdir(parents=True, exist_ok=True)
                image.save(output_path, format="JPEG", quality=quality, optimize=True)
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            logger.warning("Unsupported image data", filename=output_path.name, error=str(e))
            raise ImageProcessingError("Unsupported image data", detail=str(e))
        except OSError as e:
            logger.error("Failed to write image", path=str(output_path), error=str(e))
            raise ImageProcessingError("Image could not be saved", detail=str(e))

    def path_for_url(self, image_url: str) -> Optional[Path]:
        """Local file referenced by an image URL, if it points into the images mount."""
        marker = f"/{IMAGES_ROUTE}/"
        if not image_url or marker not in image_url:
            return None
        filename = Path(unquote(image_url.split(marker, 1)[1])).name
        return self.images_dir / filename if filename not in ("", "..") else None

    async def delete(self, image_url: str) -> bool:
        """
        Best-effort removal of the file behind image_url.

        Failures are logged, never raised.
        """
        path = self.path_for_url(image_url)
        if path is None:
            return False
        try:
            await asyncio.to_thread(path.unlink)
            logger.info("Image deleted", path=str(path))
            return True
        except OSError as e:
            logger.error("Failed to delete image", path=str(path), error=str(e))
            return False
