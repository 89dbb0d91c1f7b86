from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from src.models import RouteTemplate, RouteTemplateCity, IntercityFare
from src.routes.schemas import RouteCity, RouteStation, FareRow, RouteTemplateDetail

class RouteCatalogService:
    """Read-only access to route templates, their cities and fares"""

    def __init__(self, db: Session):
        self.db = db

    def get_route_template(self, route_template_id: int) -> Optional[RouteTemplate]:
        return self.db.query(RouteTemplate).filter(
            RouteTemplate.id == route_template_id
        ).first()

    def get_route_template_cities(self, route_template_id: int) -> List[RouteCity]:
        """Ordered cities of a template with their stations"""
        cities = self.db.query(RouteTemplateCity).options(
            joinedload(RouteTemplateCity.stations)
        ).filter(
            RouteTemplateCity.route_template_id == route_template_id
        ).order_by(RouteTemplateCity.sequence_order).all()

        return [
            RouteCity(
                id=city.id,
                city_name=city.city_name,
                country_code=city.country_code,
                sequence_order=city.sequence_order,
                stations=[
                    RouteStation(
                        id=station.id,
                        station_name=station.station_name,
                        station_address=station.station_address or ""
                    )
                    for station in sorted(city.stations, key=lambda s: s.id)
                ]
            )
            for city in cities
        ]

    def get_intercity_fares(self, route_template_id: int) -> List[FareRow]:
        fares = self.db.query(IntercityFare).filter(
            IntercityFare.route_template_id == route_template_id
        ).order_by(IntercityFare.id).all()

        return [
            FareRow(from_city=f.from_city, to_city=f.to_city, price=f.price)
            for f in fares
        ]

    def get_route_template_detail(self, route_template_id: int) -> Optional[RouteTemplateDetail]:
        template = self.get_route_template(route_template_id)
        if not template:
            return None

        return RouteTemplateDetail(
            id=template.id,
            driver_id=template.driver_id,
            name=template.name,
            estimated_duration=template.estimated_duration,
            base_price=template.base_price,
            status=template.status,
            cities=self.get_route_template_cities(route_template_id),
            fares=self.get_intercity_fares(route_template_id)
        )
