from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import src.models  # noqa: F401
from src.bookings.hold_service import HoldService
from src.bookings.schemas import HoldCreate, PassengerContact
from src.clock import utc_now
from src.database import Base, get_db
from src.main import app
from src.trips.service import TripService
from src.models import (
    Profile, Vehicle, LuggagePolicy, RouteTemplate, RouteTemplateCity,
    RouteTemplateStation, IntercityFare, Trip, TripStation, TempBooking
)


# ────────────────────────── fixtures ────────────────────────────────────────

@pytest.fixture
def engine(tmp_path):
    """Fresh file-backed SQLite database per test."""
    test_engine = create_engine(
        f"sqlite:///{tmp_path}/test.db",
        connect_args={"check_same_thread": False, "timeout": 15}
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def factory(db):
    return Factory(db)


# ────────────────────────── factories ───────────────────────────────────────

class Factory:
    """Builds drivers, routes and trips with sensible defaults."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def driver(self, name="Test Driver", rating=None):
        n = self._next()
        return self._save(Profile(
            full_name=name, email=f"driver{n}@example.com", phone="555-0100",
            role="driver", rating=Decimal(str(rating)) if rating is not None else None
        ))

    def vehicle(self, driver, capacity=4):
        return self._save(Vehicle(
            driver_id=driver.id, make="Ford", model="Transit", type="van",
            capacity=capacity, features=["wifi"]
        ))

    def policy(self, driver, fee="5.00", max_extra_bags=2, is_default=False):
        return self._save(LuggagePolicy(
            driver_id=driver.id, name="Standard", bag_weight_kg=Decimal("23"),
            fee_per_extra_bag=Decimal(fee), max_extra_bags=max_extra_bags,
            is_default=is_default
        ))

    def route(self, driver, cities=("A", "B", "C"), fares=None, base_price="50.00", country="CA"):
        """Route template with one station per city; fares maps (from, to) -> price"""
        template = self._save(RouteTemplate(
            driver_id=driver.id, name="-".join(cities), estimated_duration="5h",
            base_price=Decimal(base_price), status="active"
        ))
        for order, name in enumerate(cities, start=1):
            city = RouteTemplateCity(
                route_template_id=template.id, city_name=name,
                country_code=country, sequence_order=order
            )
            self.db.add(city)
            self.db.flush()
            self.db.add(RouteTemplateStation(
                route_template_city_id=city.id, station_name=f"{name} Central",
                station_address=f"1 Main St, {name}"
            ))
        for (a, b), price in (fares or {}).items():
            self.db.add(IntercityFare(
                route_template_id=template.id, from_city=a, to_city=b, price=Decimal(str(price))
            ))
        self.db.commit()
        self.db.refresh(template)
        return template

    def trip(self, template, vehicle, policy=None, departure=None, arrival=None,
             status="scheduled", available_seats=None):
        departure = departure or utc_now().replace(microsecond=0) + timedelta(days=2)
        trip = Trip(
            route_template_id=template.id, driver_id=template.driver_id,
            vehicle_id=vehicle.id, luggage_policy_id=policy.id if policy else None,
            departure_time=departure, arrival_time=arrival, status=status,
            available_seats=vehicle.capacity if available_seats is None else available_seats
        )
        self.db.add(trip)
        self.db.flush()
        for city in template.cities:
            for station in city.stations:
                self.db.add(TripStation(
                    trip_id=trip.id, route_template_city_id=city.id, station_id=station.id,
                    city_name=city.city_name, country_code=city.country_code,
                    sequence_order=city.sequence_order,
                    is_pickup_point=True, is_dropoff_point=True
                ))
        self.db.commit()
        self.db.refresh(trip)
        return trip

    def scenario(self, capacity=4, fares=None, cities=("A", "B", "C"), fee="5.00",
                 max_extra_bags=2, rating=None, departure=None, arrival=None, country="CA"):
        """Driver, vehicle, luggage policy, route and one scheduled trip"""
        driver = self.driver(rating=rating)
        vehicle = self.vehicle(driver, capacity=capacity)
        policy = self.policy(driver, fee=fee, max_extra_bags=max_extra_bags)
        template = self.route(
            driver, cities=cities,
            fares=fares if fares is not None else {("A", "B"): 10, ("B", "C"): 15},
            country=country
        )
        trip = self.trip(template, vehicle, policy, departure=departure, arrival=arrival)
        return trip

    def return_trip(self, trip, discount=None, hours_later=48):
        """Trip back along the reversed route, optionally linked at a discount"""
        cities = [city.city_name for city in trip.route_template.cities][::-1]
        fares = {(fare.to_city, fare.from_city): fare.price for fare in trip.route_template.fares}
        template = self.route(trip.driver, cities=cities, fares=fares)
        back = self.trip(
            template, trip.vehicle, trip.luggage_policy,
            departure=trip.departure_time + timedelta(hours=hours_later)
        )
        if discount is not None:
            TripService(self.db).link_return_trip(trip.id, back.id, Decimal(discount), trip.driver_id)
            self.db.refresh(trip)
        return back

    def station(self, trip, city_name):
        return self.db.query(TripStation).filter(
            TripStation.trip_id == trip.id, TripStation.city_name == city_name
        ).first()

    def hold_request(self, trip, from_city="A", to_city="C", seats=("1A",), bags=0):
        return HoldCreate(
            trip_id=trip.id,
            pickup_station_id=self.station(trip, from_city).id,
            dropoff_station_id=self.station(trip, to_city).id,
            seats=list(seats),
            number_of_bags=bags,
            passenger=PassengerContact(
                full_name="Pat Passenger", email="pat@example.com", phone="555-0199"
            )
        )

    def hold(self, trip, from_city="A", to_city="C", seats=("1A",), bags=0, payment_intent_id=None):
        service = HoldService(self.db)
        hold = service.create_hold(self.hold_request(trip, from_city, to_city, seats, bags))
        if payment_intent_id:
            hold = service.attach_payment_intent(hold.id, payment_intent_id)
        return hold

    def expire(self, hold_id, minutes_ago=1):
        record = self.db.query(TempBooking).filter(TempBooking.id == hold_id).first()
        record.expires_at = utc_now() - timedelta(minutes=minutes_ago)
        self.db.commit()
        return record

    def reload(self, model, obj_id):
        self.db.expire_all()
        return self.db.query(model).filter(model.id == obj_id).first()
