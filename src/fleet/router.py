from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from src.config import settings
from src.database import get_db
from src.exceptions import BookingError, to_http_exception
from src.fleet.schemas import VehicleCapacity, LuggagePolicyResponse, LuggageFeeQuote
from src.fleet.service import FleetService, FREE_BAGS

router = APIRouter()

@router.get("/vehicles/{vehicle_id}/capacity", response_model=VehicleCapacity)
def get_vehicle_capacity(vehicle_id: int, db: Session = Depends(get_db)):
    """Get the seat capacity of a vehicle"""
    vehicle = FleetService(db).get_vehicle(vehicle_id)
    if not vehicle:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vehicle not found"
        )
    return VehicleCapacity(vehicle_id=vehicle.id, capacity=vehicle.capacity, status=vehicle.status)

@router.get("/luggage-policies/{policy_id}", response_model=LuggagePolicyResponse)
def get_luggage_policy(policy_id: int, db: Session = Depends(get_db)):
    """Get a luggage policy"""
    policy = FleetService(db).get_luggage_policy(policy_id)
    if not policy:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Luggage policy not found"
        )
    return policy

@router.get("/luggage-policies/{policy_id}/fee", response_model=LuggageFeeQuote)
def quote_luggage_fee(
    policy_id: int,
    bags: int = Query(..., description="Total number of bags, including the free one"),
    db: Session = Depends(get_db)
):
    """Quote the luggage fee for a number of bags"""
    service = FleetService(db)
    policy = service.get_luggage_policy(policy_id)
    if not policy:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Luggage policy not found"
        )

    try:
        fee = service.calculate_luggage_fee(policy, bags)
    except BookingError as e:
        raise to_http_exception(e)

    return LuggageFeeQuote(
        policy_id=policy.id,
        number_of_bags=bags,
        free_bags=FREE_BAGS,
        extra_bags=max(0, bags - FREE_BAGS),
        fee=fee,
        currency=settings.CURRENCY
    )

@router.put("/drivers/{driver_id}/default-luggage-policy/{policy_id}", response_model=LuggagePolicyResponse)
def set_default_luggage_policy(driver_id: int, policy_id: int, db: Session = Depends(get_db)):
    """Make a luggage policy the driver's default"""
    try:
        return FleetService(db).set_default_luggage_policy(driver_id, policy_id)
    except BookingError as e:
        raise to_http_exception(e)
