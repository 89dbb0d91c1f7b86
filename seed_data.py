#!/usr/bin/env python3

from datetime import timedelta
from decimal import Decimal

from src.clock import utc_now
from src.database import SessionLocal, init_db
from src.models import (
    Profile, Vehicle, LuggagePolicy, RouteTemplate, RouteTemplateCity,
    RouteTemplateStation, IntercityFare, Trip, TripStation, TempBooking,
    Reservation, BookedSeat, Payment
)

ROUTE_CITIES = [
    # (city, country, stations)
    ("Toronto", "CA", [("Union Station", "65 Front St W"), ("Yorkdale", "3401 Dufferin St")]),
    ("Kingston", "CA", [("Kingston Bus Terminal", "1175 John Counter Blvd")]),
    ("Montreal", "CA", [("Gare d'autocars", "1717 Rue Berri")]),
    ("Quebec City", "CA", [("Gare du Palais", "320 Rue Abraham-Martin")]),
]

FARES = [
    ("Toronto", "Kingston", Decimal("35.00")),
    ("Kingston", "Montreal", Decimal("40.00")),
    ("Montreal", "Quebec City", Decimal("30.00")),
    ("Toronto", "Montreal", Decimal("69.00")),
]

def create_seed_data():
    db = SessionLocal()

    try:
        print("🚀 Creating seed data for the intercity booking platform...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        for model in (
            Payment, BookedSeat, Reservation, TempBooking, TripStation, Trip,
            IntercityFare, RouteTemplateStation, RouteTemplateCity, RouteTemplate,
            LuggagePolicy, Vehicle, Profile
        ):
            db.query(model).delete()

        # 1. Create Profiles
        print("Creating profiles...")
        driver = Profile(
            full_name="Amara Mensah", email="amara.driver@example.com",
            phone="+1-416-555-0101", role="driver", rating=Decimal("4.80")
        )
        second_driver = Profile(
            full_name="Louis Tremblay", email="louis.driver@example.com",
            phone="+1-514-555-0199", role="driver", rating=Decimal("4.30")
        )
        passenger = Profile(
            full_name="Jordan Lee", email="jordan@example.com",
            phone="+1-647-555-0123", role="passenger"
        )
        profiles = [driver, second_driver, passenger]
        db.add_all(profiles)
        db.flush()

        # 2. Create Vehicles
        print("Creating vehicles...")
        vehicles = [
            Vehicle(
                driver_id=driver.id, make="Mercedes-Benz", model="Sprinter", year=2022,
                license_plate="CAXK 204", type="van", capacity=12,
                features=["wifi", "usb_charging", "air_conditioning"]
            ),
            Vehicle(
                driver_id=second_driver.id, make="Ford", model="Transit", year=2021,
                license_plate="QCZ 118", type="van", capacity=10,
                features=["air_conditioning"]
            ),
        ]
        db.add_all(vehicles)
        db.flush()

        # 3. Create Luggage Policies
        print("Creating luggage policies...")
        policies = [
            LuggagePolicy(
                driver_id=driver.id, name="Standard", description="One free bag, up to two extra",
                bag_weight_kg=Decimal("23"), fee_per_extra_bag=Decimal("10.00"),
                max_extra_bags=2, max_bag_size="158 cm linear", is_default=True
            ),
            LuggagePolicy(
                driver_id=second_driver.id, name="Light", description="Carry-on only beyond the free bag",
                bag_weight_kg=Decimal("15"), fee_per_extra_bag=Decimal("5.00"),
                max_extra_bags=1, is_default=True
            ),
        ]
        db.add_all(policies)
        db.flush()

        # 4. Create Route Templates
        print("Creating route templates...")
        templates = []
        for owner in (driver, second_driver):
            template = RouteTemplate(
                driver_id=owner.id, name="Toronto - Quebec City Express",
                estimated_duration="9h 30m", base_price=Decimal("95.00"), status="active"
            )
            db.add(template)
            db.flush()
            templates.append(template)

            for order, (city_name, country, stations) in enumerate(ROUTE_CITIES, start=1):
                city = RouteTemplateCity(
                    route_template_id=template.id, city_name=city_name,
                    country_code=country, sequence_order=order
                )
                db.add(city)
                db.flush()
                db.add_all([
                    RouteTemplateStation(
                        route_template_city_id=city.id, station_name=name, station_address=address
                    )
                    for name, address in stations
                ])

            db.add_all([
                IntercityFare(route_template_id=template.id, from_city=a, to_city=b, price=price)
                for a, b, price in FARES
            ])
        db.flush()

        # 5. Create Trips
        print("Creating trips...")
        trips = []
        departure = utc_now().replace(hour=12, minute=0, second=0, microsecond=0) + timedelta(days=1)
        for template, vehicle, policy, offset in zip(templates, vehicles, policies, (0, 2)):
            trip = Trip(
                route_template_id=template.id, driver_id=template.driver_id, vehicle_id=vehicle.id,
                luggage_policy_id=policy.id,
                departure_time=departure + timedelta(hours=offset),
                arrival_time=departure + timedelta(hours=offset + 9, minutes=30),
                status="scheduled", available_seats=vehicle.capacity
            )
            db.add(trip)
            db.flush()
            trips.append(trip)

            for city in template.cities:
                for station in city.stations:
                    db.add(TripStation(
                        trip_id=trip.id, route_template_city_id=city.id, station_id=station.id,
                        city_name=city.city_name, country_code=city.country_code,
                        sequence_order=city.sequence_order,
                        is_pickup_point=city.sequence_order < len(ROUTE_CITIES),
                        is_dropoff_point=city.sequence_order > 1
                    ))

        # Commit all changes
        db.commit()
        print("✅ Successfully created seed data!")
        print(f"Created:")
        print(f"  - {len(profiles)} profiles")
        print(f"  - {len(vehicles)} vehicles")
        print(f"  - {len(policies)} luggage policies")
        print(f"  - {len(templates)} route templates")
        print(f"  - {len(trips)} trips")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    init_db()
    create_seed_data()
