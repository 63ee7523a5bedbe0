"""Venue quoting, selection and execution."""

from .types import Quote, ExecutionResult, RouteDecision, UNDEFINED_PERCENT
from .venues import Venue, SimulatedVenue
from .router import VenueRouter, create_router

__all__ = [
    "Quote",
    "ExecutionResult",
    "RouteDecision",
    "UNDEFINED_PERCENT",
    "Venue",
    "SimulatedVenue",
    "VenueRouter",
    "create_router",
]
