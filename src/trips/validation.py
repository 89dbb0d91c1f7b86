from typing import List, Optional
from datetime import date, datetime

from src.trips.schemas import TripSearchRequest, ValidationIssue
from src.routes.fare_service import normalize_city

SORT_KEYS = ("price", "departure", "duration", "rating")
DATE_BASES = ("utc", "destination")


def parse_search_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` date; raises ValueError when malformed"""
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


class TripSearchValidator:
    """Validates trip search requests"""

    def validate_search_request(self, request: TripSearchRequest) -> List[ValidationIssue]:
        """Validate a segment search request"""
        errors = []

        if not request.from_city or not request.from_city.strip():
            errors.append(ValidationIssue(
                error_code="MISSING_FROM_CITY",
                error_message="Origin city is required",
                field="from_city"
            ))

        if not request.to_city or not request.to_city.strip():
            errors.append(ValidationIssue(
                error_code="MISSING_TO_CITY",
                error_message="Destination city is required",
                field="to_city"
            ))
        elif request.from_city and normalize_city(request.from_city) == normalize_city(request.to_city):
            errors.append(ValidationIssue(
                error_code="SAME_CITY",
                error_message="Origin and destination cities cannot be the same",
                field="to_city"
            ))

        date_issue = self.validate_date(request.departure_date, "departure_date")
        if date_issue:
            errors.append(date_issue)

        if request.min_seats < 1:
            errors.append(ValidationIssue(
                error_code="INVALID_MIN_SEATS",
                error_message="Minimum seats must be at least 1",
                field="min_seats"
            ))

        if request.max_price is not None and request.max_price < 0:
            errors.append(ValidationIssue(
                error_code="INVALID_MAX_PRICE",
                error_message="Maximum price cannot be negative",
                field="max_price"
            ))

        if request.sort_by not in SORT_KEYS:
            errors.append(ValidationIssue(
                error_code="INVALID_SORT",
                error_message=f"sort_by must be one of: {', '.join(SORT_KEYS)}",
                field="sort_by"
            ))

        if request.date_basis not in DATE_BASES:
            errors.append(ValidationIssue(
                error_code="INVALID_DATE_BASIS",
                error_message=f"date_basis must be one of: {', '.join(DATE_BASES)}",
                field="date_basis"
            ))

        return errors

    def validate_date(self, value: Optional[str], field: str) -> Optional[ValidationIssue]:
        if value is None:
            return None
        try:
            parse_search_date(value)
        except ValueError:
            return ValidationIssue(
                error_code="INVALID_DATE",
                error_message=f"'{value}' is not a valid date, expected YYYY-MM-DD",
                field=field
            )
        return None
