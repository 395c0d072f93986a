"""genstudio - video and image generation backend."""

__version__ = "1.0.0"
