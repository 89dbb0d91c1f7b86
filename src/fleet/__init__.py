"""
Fleet & Luggage Policy Module

Vehicles fix the seat capacity a trip starts with; luggage policies fix what
a passenger pays for bags. Policies are bag-count based: the first bag is
free and each extra bag costs a flat fee, up to a per-policy cap.

Key Components:
- service.py: Vehicle capacity, policy lookup, luggage fee, default policy
- router.py: FastAPI endpoints for fleet lookups
- schemas.py: Pydantic models for request/response structures
"""

from .router import router
from .service import FleetService, calculate_luggage_fee
from .schemas import VehicleCapacity, LuggagePolicyResponse, LuggageFeeQuote

__all__ = [
    "router",
    "FleetService",
    "calculate_luggage_fee",
    "VehicleCapacity",
    "LuggagePolicyResponse",
    "LuggageFeeQuote"
]
