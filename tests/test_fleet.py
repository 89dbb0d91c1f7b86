from decimal import Decimal
from types import SimpleNamespace

import pytest

from src.exceptions import LuggageLimitExceededError, AccessDeniedError
from src.fleet.service import FleetService, calculate_luggage_fee
from src.models import LuggagePolicy

POLICY = SimpleNamespace(fee_per_extra_bag=Decimal("5.00"), max_extra_bags=2)


def test_first_bag_is_free():
    assert calculate_luggage_fee(POLICY, 0) == Decimal("0.00")
    assert calculate_luggage_fee(POLICY, 1) == Decimal("0.00")


def test_extra_bags_are_charged_per_bag():
    assert calculate_luggage_fee(POLICY, 3) == Decimal("10.00")


def test_bags_over_limit_are_rejected_not_clamped():
    with pytest.raises(LuggageLimitExceededError):
        calculate_luggage_fee(POLICY, 4)


def test_negative_bags_rejected():
    with pytest.raises(LuggageLimitExceededError):
        calculate_luggage_fee(POLICY, -1)


def test_no_policy_allows_only_the_free_bag():
    assert calculate_luggage_fee(None, 1) == Decimal("0.00")
    with pytest.raises(LuggageLimitExceededError):
        calculate_luggage_fee(None, 2)


def test_vehicle_capacity(db, factory):
    driver = factory.driver()
    vehicle = factory.vehicle(driver, capacity=14)
    assert FleetService(db).get_vehicle_capacity(vehicle.id) == 14
    assert FleetService(db).get_vehicle_capacity(9999) is None


def test_set_default_policy_keeps_one_default(db, factory):
    driver = factory.driver()
    first = factory.policy(driver, is_default=True)
    second = factory.policy(driver)
    service = FleetService(db)

    service.set_default_luggage_policy(driver.id, second.id)

    db.expire_all()
    defaults = db.query(LuggagePolicy).filter(
        LuggagePolicy.driver_id == driver.id, LuggagePolicy.is_default == True
    ).all()
    assert [p.id for p in defaults] == [second.id]
    assert service.get_default_luggage_policy(driver.id).id == second.id
    assert first.id != second.id


def test_set_default_policy_requires_ownership(db, factory):
    owner = factory.driver()
    other = factory.driver()
    policy = factory.policy(owner)
    with pytest.raises(AccessDeniedError):
        FleetService(db).set_default_luggage_policy(other.id, policy.id)
