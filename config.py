import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "")
    secret_key: str = os.getenv("SESSION_SECRET", "default-dev-secret-change-in-production")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Dispatch
    auto_assign_radius_meters: int = 15000
    nearby_search_limit: int = 50

    # Presence sweep: drivers silent for longer than the threshold are flipped offline
    presence_sweep_interval_seconds: int = 30
    presence_stale_after_seconds: int = 60

    # Planned distance estimation at order creation
    use_road_distance: bool = False
    osrm_base_url: str = "https://router.project-osrm.org"
    road_distance_timeout_seconds: float = 5.0

    realtime_queue_size: int = 100

    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv("TWILIO_PHONE_NUMBER", "")
    default_country_code: str = "+91"
    # Upper bound for each Twilio API call made while a request waits
    sms_timeout_seconds: float = 10.0

    class Config:
        env_file = ".env"

settings = Settings()
