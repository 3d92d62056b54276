"""Background engine for a terminal GitHub dashboard."""

__version__ = "0.1.0"
