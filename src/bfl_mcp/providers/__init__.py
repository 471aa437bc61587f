"""Image generation provider client."""

from .base import (
    ImageFormat,
    JobStatus,
    ProviderModel,
    StatusReport,
    SubmittedJob,
    detect_image_format,
)
from .bfl import BFLClient

__all__ = [
    "ImageFormat",
    "JobStatus",
    "ProviderModel",
    "StatusReport",
    "SubmittedJob",
    "detect_image_format",
    "BFLClient",
]
