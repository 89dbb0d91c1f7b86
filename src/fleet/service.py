import logging
from sqlalchemy.orm import Session
from typing import Optional
from decimal import Decimal

from src.exceptions import LuggageLimitExceededError, NotFoundError, AccessDeniedError
from src.models import Vehicle, LuggagePolicy
from src.routes.fare_service import to_money

logger = logging.getLogger(__name__)

FREE_BAGS = 1


def calculate_luggage_fee(policy: Optional[LuggagePolicy], number_of_bags: int) -> Decimal:
    """Fee for ``number_of_bags``: the first bag is free, each extra bag costs
    ``fee_per_extra_bag``. Over-limit requests are rejected, never clamped.

    Without a policy only the free bag is allowed.
    """
    if number_of_bags < 0:
        raise LuggageLimitExceededError("Number of bags cannot be negative")

    extra_bags = max(0, number_of_bags - FREE_BAGS)
    if extra_bags == 0:
        return to_money(0)

    if policy is None:
        raise LuggageLimitExceededError(
            f"This trip allows only {FREE_BAGS} free bag; {number_of_bags} requested"
        )

    if extra_bags > policy.max_extra_bags:
        raise LuggageLimitExceededError(
            f"At most {policy.max_extra_bags} extra bag(s) allowed; {extra_bags} requested"
        )

    return to_money(Decimal(extra_bags) * Decimal(policy.fee_per_extra_bag))


class FleetService:
    def __init__(self, db: Session):
        self.db = db

    def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        return self.db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()

    def get_vehicle_capacity(self, vehicle_id: int) -> Optional[int]:
        """Seat capacity of a vehicle, or None if it does not exist"""
        vehicle = self.get_vehicle(vehicle_id)
        return vehicle.capacity if vehicle else None

    def get_luggage_policy(self, policy_id: int) -> Optional[LuggagePolicy]:
        return self.db.query(LuggagePolicy).filter(LuggagePolicy.id == policy_id).first()

    def get_default_luggage_policy(self, driver_id: int) -> Optional[LuggagePolicy]:
        return self.db.query(LuggagePolicy).filter(
            LuggagePolicy.driver_id == driver_id,
            LuggagePolicy.is_default == True
        ).order_by(LuggagePolicy.id).first()

    def calculate_luggage_fee(self, policy: Optional[LuggagePolicy], number_of_bags: int) -> Decimal:
        return calculate_luggage_fee(policy, number_of_bags)

    def set_default_luggage_policy(self, driver_id: int, policy_id: int) -> LuggagePolicy:
        """Make a policy the driver's default; any previous default is cleared"""
        policy = self.get_luggage_policy(policy_id)
        if not policy:
            raise NotFoundError("Luggage policy not found")
        if policy.driver_id != driver_id:
            raise AccessDeniedError("Luggage policy does not belong to this driver")

        self.db.query(LuggagePolicy).filter(
            LuggagePolicy.driver_id == driver_id,
            LuggagePolicy.id != policy_id,
            LuggagePolicy.is_default == True
        ).update({LuggagePolicy.is_default: False}, synchronize_session=False)

        policy.is_default = True
        self.db.commit()
        self.db.refresh(policy)

        logger.info("Driver %s default luggage policy set to %s", driver_id, policy_id)
        return policy
