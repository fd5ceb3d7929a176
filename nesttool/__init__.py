"""NestFi vault membership toolchain."""

__version__ = "0.3.0"
