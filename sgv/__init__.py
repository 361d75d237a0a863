"""sgv: versioning and release pipeline for multi-platform game builds."""

__version__ = "0.3.0"
