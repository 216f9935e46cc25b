"""Route optimization and dispatch planning for municipal waste collection."""

__version__ = "0.1.0"
