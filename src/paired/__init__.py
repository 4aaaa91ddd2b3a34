"""Local agent hub: single-flight startup, supervision and message routing."""

__version__ = "0.3.0"
