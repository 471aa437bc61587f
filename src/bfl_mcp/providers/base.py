"""Shared types for talking to the image generation provider."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class ImageFormat(Enum):
    """Supported image formats."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"
    UNKNOWN = "unknown"

    @property
    def mime_type(self) -> str:
        """Get MIME type for this format."""
        return {
            ImageFormat.JPEG: "image/jpeg",
            ImageFormat.PNG: "image/png",
            ImageFormat.WEBP: "image/webp",
            ImageFormat.GIF: "image/gif",
            ImageFormat.UNKNOWN: "application/octet-stream",
        }[self]


def detect_image_format(data: bytes) -> ImageFormat:
    """Detect image format from magic bytes."""
    if len(data) < 4:
        return ImageFormat.UNKNOWN

    # JPEG: FFD8FF
    if data[:3] == b'\xff\xd8\xff':
        return ImageFormat.JPEG
    # PNG: 89504E47 0D0A1A0A
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return ImageFormat.PNG
    # WebP: RIFF....WEBP
    if data[:4] == b'RIFF' and len(data) >= 12 and data[8:12] == b'WEBP':
        return ImageFormat.WEBP
    # GIF: GIF87a or GIF89a
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return ImageFormat.GIF

    return ImageFormat.UNKNOWN


class JobStatus(Enum):
    """Lifecycle state of a generation request.

    READY and ERROR are terminal.
    """
    PENDING = "Pending"
    READY = "Ready"
    ERROR = "Error"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.PENDING


@dataclass(frozen=True)
class SubmittedJob:
    """Provider acknowledgement of a submission."""
    id: str
    polling_url: str


@dataclass(frozen=True)
class StatusReport:
    """One observation of a job's state on the provider side."""
    id: str
    status: JobStatus
    result_url: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ProviderModel:
    """A model variant and the provider endpoint that serves it."""
    id: str
    name: str
    description: str
    endpoint: str
    parameters: Tuple[str, ...] = ()
    default_output_format: str = "jpeg"
