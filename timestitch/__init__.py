"""TimeStitch: offline change queue and sync core for a photo journal."""

__version__ = "0.1.0"
