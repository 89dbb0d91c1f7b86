from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text, ForeignKey, Numeric, JSON,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship

from src.clock import utc_now
from src.database import Base

# SQLite only autoincrements INTEGER primary keys
IdType = BigInteger().with_variant(Integer, "sqlite")

# ================================
# Profiles
# ================================
class Profile(Base):
    __tablename__ = "profiles"

    id = Column(IdType, primary_key=True, index=True)
    full_name = Column(String(255))
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50))
    role = Column(String(20), nullable=False, default="passenger", index=True)
    rating = Column(Numeric(3, 2))
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    vehicles = relationship("Vehicle", back_populates="driver")
    luggage_policies = relationship("LuggagePolicy", back_populates="driver")
    route_templates = relationship("RouteTemplate", back_populates="driver")
    trips = relationship("Trip", back_populates="driver")

# ================================
# Fleet & Luggage Policies
# ================================
class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(IdType, primary_key=True, index=True)
    driver_id = Column(IdType, ForeignKey("profiles.id"), nullable=False, index=True)
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer)
    license_plate = Column(String(20))
    type = Column(String(50))
    capacity = Column(Integer, nullable=False)
    features = Column(JSON, default=list)
    seat_map = Column(JSON)
    status = Column(String(20), default="active", index=True)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    driver = relationship("Profile", back_populates="vehicles")

class LuggagePolicy(Base):
    """Bag-count luggage pricing: the first bag is always free.

    Column names replace the original form fields:
    freeWeightKg -> bag_weight_kg, excessFeePerKg -> fee_per_extra_bag,
    maxBags -> max_extra_bags.
    """
    __tablename__ = "luggage_policies"

    id = Column(IdType, primary_key=True, index=True)
    driver_id = Column(IdType, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    bag_weight_kg = Column(Numeric(6, 2), nullable=False)
    fee_per_extra_bag = Column(Numeric(10, 2), nullable=False, default=0)
    max_extra_bags = Column(Integer, nullable=False, default=0)
    max_bag_size = Column(String(100))
    is_default = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    driver = relationship("Profile", back_populates="luggage_policies")

# ================================
# Route Templates, Cities, Stations & Fares
# ================================
class RouteTemplate(Base):
    __tablename__ = "route_templates"

    id = Column(IdType, primary_key=True, index=True)
    driver_id = Column(IdType, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    estimated_duration = Column(String(50))
    base_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default="draft", index=True)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    driver = relationship("Profile", back_populates="route_templates")
    cities = relationship(
        "RouteTemplateCity",
        back_populates="route_template",
        order_by="RouteTemplateCity.sequence_order"
    )
    fares = relationship("IntercityFare", back_populates="route_template")
    trips = relationship("Trip", back_populates="route_template")

class RouteTemplateCity(Base):
    __tablename__ = "route_template_cities"
    __table_args__ = (
        UniqueConstraint("route_template_id", "sequence_order", name="uq_route_city_sequence"),
    )

    id = Column(IdType, primary_key=True, index=True)
    route_template_id = Column(IdType, ForeignKey("route_templates.id"), nullable=False, index=True)
    city_name = Column(String(255), nullable=False)
    country_code = Column(String(2), nullable=False)
    sequence_order = Column(Integer, nullable=False)

    # Relationships
    route_template = relationship("RouteTemplate", back_populates="cities")
    stations = relationship("RouteTemplateStation", back_populates="city")

class RouteTemplateStation(Base):
    __tablename__ = "route_template_stations"

    id = Column(IdType, primary_key=True, index=True)
    route_template_city_id = Column(IdType, ForeignKey("route_template_cities.id"), nullable=False, index=True)
    station_name = Column(String(255), nullable=False)
    station_address = Column(String(500), default="")

    # Relationships
    city = relationship("RouteTemplateCity", back_populates="stations")

class IntercityFare(Base):
    __tablename__ = "route_template_pricing"
    __table_args__ = (
        UniqueConstraint("route_template_id", "from_city", "to_city", name="uq_fare_segment"),
    )

    id = Column(IdType, primary_key=True, index=True)
    route_template_id = Column(IdType, ForeignKey("route_templates.id"), nullable=False, index=True)
    from_city = Column(String(255), nullable=False)
    to_city = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    # Relationships
    route_template = relationship("RouteTemplate", back_populates="fares")

# ================================
# Trips
# ================================
class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_trip_available_seats"),
    )

    id = Column(IdType, primary_key=True, index=True)
    route_template_id = Column(IdType, ForeignKey("route_templates.id"), nullable=False, index=True)
    driver_id = Column(IdType, ForeignKey("profiles.id"), nullable=False, index=True)
    vehicle_id = Column(IdType, ForeignKey("vehicles.id"), nullable=False)
    luggage_policy_id = Column(IdType, ForeignKey("luggage_policies.id"))
    departure_time = Column(DateTime, nullable=False, index=True)
    arrival_time = Column(DateTime)
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    available_seats = Column(Integer, nullable=False)
    return_trip_id = Column(IdType, ForeignKey("trips.id"))
    round_trip_discount = Column(Numeric(4, 3))
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    route_template = relationship("RouteTemplate", back_populates="trips")
    driver = relationship("Profile", back_populates="trips")
    vehicle = relationship("Vehicle")
    luggage_policy = relationship("LuggagePolicy")
    return_trip = relationship("Trip", remote_side=[id])
    stations = relationship(
        "TripStation",
        back_populates="trip",
        order_by="TripStation.sequence_order"
    )
    reservations = relationship("Reservation", back_populates="trip")

class TripStation(Base):
    __tablename__ = "trip_stations"

    id = Column(IdType, primary_key=True, index=True)
    trip_id = Column(IdType, ForeignKey("trips.id"), nullable=False, index=True)
    route_template_city_id = Column(IdType, ForeignKey("route_template_cities.id"), nullable=False)
    station_id = Column(IdType, ForeignKey("route_template_stations.id"), nullable=False)
    city_name = Column(String(255), nullable=False)
    country_code = Column(String(2), nullable=False)
    sequence_order = Column(Integer, nullable=False)
    is_pickup_point = Column(Boolean, default=True)
    is_dropoff_point = Column(Boolean, default=True)
    estimated_time = Column(DateTime)

    # Relationships
    trip = relationship("Trip", back_populates="stations")
    station = relationship("RouteTemplateStation")

# ================================
# Holds, Reservations & Seats
# ================================
class TempBooking(Base):
    __tablename__ = "temp_bookings"

    id = Column(String(36), primary_key=True)
    trip_id = Column(IdType, ForeignKey("trips.id"), nullable=False, index=True)
    passenger_id = Column(IdType, ForeignKey("profiles.id"))
    passenger_name = Column(String(255), nullable=False)
    passenger_email = Column(String(255), nullable=False)
    passenger_phone = Column(String(50), nullable=False)
    pickup_station_id = Column(IdType, ForeignKey("trip_stations.id"), nullable=False)
    dropoff_station_id = Column(IdType, ForeignKey("trip_stations.id"), nullable=False)
    selected_seats = Column(JSON, nullable=False)
    number_of_bags = Column(Integer, nullable=False, default=0)
    segment_price = Column(Numeric(10, 2), nullable=False)
    luggage_fee = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False)
    booking_reference = Column(String(20), nullable=False, index=True)
    payment_intent_id = Column(String(255), index=True)
    booking_group_id = Column(String(64), index=True)
    status = Column(String(20), default="pending", nullable=False, index=True)
    failure_reason = Column(String(50))
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)

class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(IdType, primary_key=True, index=True)
    trip_id = Column(IdType, ForeignKey("trips.id"), nullable=False, index=True)
    passenger_id = Column(IdType, ForeignKey("profiles.id"), index=True)
    pickup_station_id = Column(IdType, ForeignKey("trip_stations.id"), nullable=False)
    dropoff_station_id = Column(IdType, ForeignKey("trip_stations.id"), nullable=False)
    number_of_bags = Column(Integer, nullable=False, default=0)
    segment_price = Column(Numeric(10, 2), nullable=False)
    luggage_fee = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False)
    passenger_name = Column(String(255), nullable=False)
    passenger_email = Column(String(255), nullable=False)
    passenger_phone = Column(String(50), nullable=False)
    booking_reference = Column(String(20), unique=True, nullable=False, index=True)
    # Plain string, not a foreign key: holds are deleted by cleanup
    temp_booking_id = Column(String(36), unique=True, index=True)
    booking_group_id = Column(String(64), index=True)
    linked_reservation_id = Column(IdType, ForeignKey("reservations.id"))
    status = Column(String(20), default="pending", nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    trip = relationship("Trip", back_populates="reservations")
    pickup_station = relationship("TripStation", foreign_keys=[pickup_station_id])
    dropoff_station = relationship("TripStation", foreign_keys=[dropoff_station_id])
    booked_seats = relationship("BookedSeat", back_populates="reservation", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="reservation")

class BookedSeat(Base):
    __tablename__ = "booked_seats"
    __table_args__ = (
        UniqueConstraint("trip_id", "seat_number", name="uq_trip_seat"),
    )

    id = Column(IdType, primary_key=True, index=True)
    reservation_id = Column(IdType, ForeignKey("reservations.id"), nullable=False, index=True)
    trip_id = Column(IdType, ForeignKey("trips.id"), nullable=False, index=True)
    seat_number = Column(String(20), nullable=False)

    # Relationships
    reservation = relationship("Reservation", back_populates="booked_seats")

# ================================
# Payments
# ================================
class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("payment_intent_id", "temp_booking_id", name="uq_payment_intent_hold"),
    )

    id = Column(IdType, primary_key=True, index=True)
    reservation_id = Column(IdType, ForeignKey("reservations.id"), index=True)
    temp_booking_id = Column(String(36), index=True)
    payment_intent_id = Column(String(255), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)
    paid_at = Column(DateTime)
    failure_reason = Column(String(255))
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    reservation = relationship("Reservation", back_populates="payments")
