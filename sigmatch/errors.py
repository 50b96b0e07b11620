"""Custom exceptions used across sigmatch."""

__all__ = ["ImageDecodeError"]


class ImageDecodeError(ValueError):
    """Raised when an input raster cannot be decoded into pixels."""

    pass
