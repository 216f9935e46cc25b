"""Route group exports."""

from . import dispatch, health, zones

__all__ = ["dispatch", "health", "zones"]
