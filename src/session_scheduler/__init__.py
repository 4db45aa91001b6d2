"""Long-horizon command scheduler with drift tracking and crash recovery."""

__version__ = "0.1.0"
