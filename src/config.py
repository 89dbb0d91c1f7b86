from pydantic_settings import BaseSettings
from typing import Dict, List, Optional

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./intercity.db"
    DB_ECHO: bool = False

    # Application
    PROJECT_NAME: str = "Intercity Booking Platform"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Booking
    HOLD_TTL_MINUTES: int = 30
    BOOKING_REFERENCE_LENGTH: int = 8
    CURRENCY: str = "CAD"

    # Payments
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # Search
    SEARCH_TIMEZONE: str = "UTC"
    COUNTRY_TIMEZONES: Dict[str, str] = {
        "CA": "America/Toronto",
        "US": "America/New_York",
        "GH": "Africa/Accra",
        "NG": "Africa/Lagos",
        "GB": "Europe/London",
        "FR": "Europe/Paris",
    }

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
