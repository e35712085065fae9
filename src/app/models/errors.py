"""Errors raised synchronously to callers of the tracking and planning core."""

from __future__ import annotations


class InvalidPlanRequest(ValueError):
    """Planning input is malformed (non-positive capacity, empty route)."""


class NoPlanPossibleError(ValueError):
    """No consolidation plan can be built because the candidate pool is empty."""


class TripNotFoundError(ValueError):
    """The referenced trip is unknown to the core."""


class TripStateError(ValueError):
    """The requested operation is not legal for the trip's current state."""
