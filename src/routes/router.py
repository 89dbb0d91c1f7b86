from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List

from src.database import get_db
from src.exceptions import BookingError, to_http_exception
from src.routes.schemas import RouteTemplateDetail, RouteCity, FareRow, SegmentQuote
from src.routes.service import RouteCatalogService
from src.routes.fare_service import SegmentPricingService

router = APIRouter()

def _get_template_or_404(catalog: RouteCatalogService, route_template_id: int):
    template = catalog.get_route_template(route_template_id)
    if not template:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Route template not found"
        )
    return template

@router.get("/{route_template_id}", response_model=RouteTemplateDetail)
def get_route_template(route_template_id: int, db: Session = Depends(get_db)):
    """Get a route template with its cities, stations and fares"""
    detail = RouteCatalogService(db).get_route_template_detail(route_template_id)
    if not detail:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Route template not found"
        )
    return detail

@router.get("/{route_template_id}/cities", response_model=List[RouteCity])
def get_route_template_cities(route_template_id: int, db: Session = Depends(get_db)):
    """Get the ordered cities of a route template"""
    catalog = RouteCatalogService(db)
    _get_template_or_404(catalog, route_template_id)
    return catalog.get_route_template_cities(route_template_id)

@router.get("/{route_template_id}/fares", response_model=List[FareRow])
def get_intercity_fares(route_template_id: int, db: Session = Depends(get_db)):
    """Get the directional fare table of a route template"""
    catalog = RouteCatalogService(db)
    _get_template_or_404(catalog, route_template_id)
    return catalog.get_intercity_fares(route_template_id)

@router.get("/{route_template_id}/segment-price", response_model=SegmentQuote)
def get_segment_price(
    route_template_id: int,
    from_city: str = Query(..., min_length=1),
    to_city: str = Query(..., min_length=1),
    db: Session = Depends(get_db)
):
    """Price a segment of a route template"""
    catalog = RouteCatalogService(db)
    template = _get_template_or_404(catalog, route_template_id)

    try:
        return SegmentPricingService(db).quote_template_segment(template, from_city, to_city)
    except BookingError as e:
        raise to_http_exception(e)
