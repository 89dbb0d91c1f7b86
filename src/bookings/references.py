import secrets
import string
from sqlalchemy.orm import Session

from src.config import settings
from src.models import TempBooking, Reservation

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
MAX_ATTEMPTS = 20


def random_booking_reference(length: int = None) -> str:
    length = length or settings.BOOKING_REFERENCE_LENGTH
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def generate_booking_reference(db: Session) -> str:
    """Booking reference not used by any hold or reservation.

    The unique constraint on reservations.booking_reference still backs this up.
    """
    for _ in range(MAX_ATTEMPTS):
        reference = random_booking_reference()
        taken = db.query(TempBooking.id).filter(
            TempBooking.booking_reference == reference
        ).first() or db.query(Reservation.id).filter(
            Reservation.booking_reference == reference
        ).first()
        if not taken:
            return reference
    raise RuntimeError("Could not generate a unique booking reference")
