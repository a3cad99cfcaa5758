"""Browser automation for capturing attendance screenshots."""

from .runner import ArtifactCapture, BrowserSession, CaptureOutcome, FailureReason

__all__ = ["ArtifactCapture", "BrowserSession", "CaptureOutcome", "FailureReason"]
