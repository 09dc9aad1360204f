"""S95C audio converter: re-encode TV-incompatible audio tracks to FLAC."""

__version__ = "0.1.0"
