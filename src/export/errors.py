"""Errors raised while exporting timeline audio."""
from __future__ import annotations


class AudioExportError(RuntimeError):
    """Base error for export failures."""


class AudioExtractionError(AudioExportError):
    """Raised when a clip's source cannot be decoded."""

    def __init__(self, message: str, file_name: str, recoverable: bool = False) -> None:
        super().__init__(message)
        self.file_name = file_name
        self.recoverable = recoverable


class AudioEncodingError(AudioExportError):
    """Raised when no encoder accepts the requested output format."""


__all__ = ["AudioEncodingError", "AudioExportError", "AudioExtractionError"]
