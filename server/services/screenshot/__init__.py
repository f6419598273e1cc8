"""Screenshot capture worker for the background task queue."""

from services.screenshot.service import ScreenshotService, normalize_screenshot_target
from services.screenshot.exceptions import (
    ScreenshotError,
    InvalidTargetError,
    CaptureFailedError,
    ScreenshotTooLargeError,
    StorageNotConfiguredError,
)

__all__ = [
    "ScreenshotService",
    "normalize_screenshot_target",
    "ScreenshotError",
    "InvalidTargetError",
    "CaptureFailedError",
    "ScreenshotTooLargeError",
    "StorageNotConfiguredError",
]
