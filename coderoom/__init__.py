"""Real-time collaborative code rooms."""

__version__ = "0.1.0"
