"""Error taxonomy shared by the dispatch engine and the API layer."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for dispatch engine failures."""


class ValidationError(DispatchError, ValueError):
    """Input rejected before any computation or state change."""


class NotFoundError(DispatchError, LookupError):
    """A plan, stop, truck or directions result does not exist."""


class CollaboratorUnavailable(DispatchError):
    """The road-routing service failed, timed out or returned no route."""
