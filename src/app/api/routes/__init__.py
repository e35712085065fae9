"""Route group exports."""

from . import consolidation, health, notifications, tracking, traffic, trips

__all__ = ["consolidation", "health", "notifications", "tracking", "traffic", "trips"]
