"""Signed direct-to-S3 uploads."""

__version__ = "0.1.0"
