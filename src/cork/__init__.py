"""The Cork: an offline-first wine cellar with real-time cloud sync."""

__version__ = "0.3.0"
