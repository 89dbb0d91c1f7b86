from pydantic import BaseModel
from typing import Optional
from decimal import Decimal

class VehicleCapacity(BaseModel):
    """Seat capacity of a vehicle"""
    vehicle_id: int
    capacity: int
    status: Optional[str] = None

class LuggagePolicyResponse(BaseModel):
    """Bag-count luggage policy"""
    id: int
    driver_id: int
    name: str
    description: Optional[str] = None
    bag_weight_kg: Decimal
    fee_per_extra_bag: Decimal
    max_extra_bags: int
    max_bag_size: Optional[str] = None
    is_default: bool = False

    class Config:
        from_attributes = True

class LuggageFeeQuote(BaseModel):
    """Luggage fee for a number of bags under a policy"""
    policy_id: Optional[int] = None
    number_of_bags: int
    free_bags: int = 1
    extra_bags: int
    fee: Decimal
    currency: str
