"""Utility helpers shared by the web app and the CLI."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, TypeVar

from PIL import Image, UnidentifiedImageError

from .errors import ValidationError

T = TypeVar("T")

DEFAULT_MIME_TYPE = "image/jpeg"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure global logging style for CLI and server use.

    Args:
        level: Logging level passed to ``logging.basicConfig``.
    """

    if os.getenv("GEMINI_DEBUG"):
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="[%(levelname)s] %(message)s",
    )


@dataclass(frozen=True)
class ImageInput:
    """An uploaded product photo, held in memory."""

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    filename: str = "image.jpg"

    @classmethod
    def from_bytes(cls, data: bytes, filename: str = "image.jpg", mime_type: Optional[str] = None) -> "ImageInput":
        """Validate ``data`` as an image and sniff its mime type.

        Raises:
            ValidationError: If the payload is empty or not a readable image.
        """

        if not data:
            raise ValidationError("No image provided", details=f"{filename} is empty")
        try:
            with Image.open(BytesIO(data)) as img:
                fmt = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise ValidationError("Uploaded file is not a readable image", details=f"{filename}: {exc}") from exc

        sniffed = Image.MIME.get(fmt or "", None)
        return cls(data=data, mime_type=sniffed or mime_type or DEFAULT_MIME_TYPE, filename=filename)

    @classmethod
    def from_path(cls, path: Path) -> "ImageInput":
        if not path.exists():
            raise FileNotFoundError(f"Image file not found: {path}")
        return cls.from_bytes(path.read_bytes(), filename=path.name)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of ``items`` with at most ``size`` entries."""

    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


__all__ = ["setup_logging", "ImageInput", "chunked"]
