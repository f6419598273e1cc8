"""Screenshot capture exception hierarchy."""


class ScreenshotError(Exception):
    """Base exception for all screenshot-related errors."""


class InvalidTargetError(ScreenshotError):
    """Website URL could not be turned into a capture target."""

    def __init__(self, website_url: str):
        self.website_url = website_url
        super().__init__("Invalid website URL")


class CaptureFailedError(ScreenshotError):
    """Capture API returned a non-success response."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Screenshot fetch failed: {status_code}")


class ScreenshotTooLargeError(ScreenshotError):
    """Captured image exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Screenshot too large: {size} bytes (limit {limit})")


class StorageNotConfiguredError(ScreenshotError):
    """Supabase credentials are missing."""
