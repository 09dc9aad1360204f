"""Exception types shared across the converter."""

from __future__ import annotations


class S95CError(Exception):
    """Base class for converter errors."""


class ConfigurationError(S95CError, ValueError):
    """Invalid run configuration. Raised before any file is touched."""


class ProbeError(S95CError):
    """ffprobe failed or produced output that could not be understood."""


class EncodeError(S95CError):
    """ffmpeg failed, timed out, or produced output that fails verification."""


class PathContainmentError(S95CError):
    """A computed destination would fall outside the destination root."""
