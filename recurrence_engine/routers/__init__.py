"""Routers package for the recurrence engine control surface."""

from .recurrence import router as recurrence_router

__all__ = ["recurrence_router"]
