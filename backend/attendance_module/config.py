import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("ATTENDANCE_DATABASE_URL", "")
    jwt_secret: str = os.getenv("ATTENDANCE_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("ATTENDANCE_JWT_ALGORITHM", "HS256")
    default_gps_radius_m: int = int(os.getenv("ATTENDANCE_DEFAULT_GPS_RADIUS_M", "100"))
    heatmap_limit: int = int(os.getenv("ATTENDANCE_HEATMAP_LIMIT", "20"))
    recent_logs_limit: int = int(os.getenv("ATTENDANCE_RECENT_LOGS_LIMIT", "50"))
    mobile_link_ttl_hours: int = int(os.getenv("ATTENDANCE_MOBILE_LINK_TTL_HOURS", "24"))
    mobile_link_base: str = os.getenv("ATTENDANCE_MOBILE_LINK_BASE", "http://localhost:8000")
    whatsapp_api_base: str = os.getenv("WHATSAPP_API_BASE", "https://graph.facebook.com/v17.0")
    notify_timeout_seconds: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))
    notify_workers: int = int(os.getenv("NOTIFY_WORKERS", "4"))


settings = Settings()

# Per-school keys in system_settings
GPS_ALERTS_KEY = "attendance_gps_alerts"
GPS_RADIUS_KEY = "attendance_gps_radius"
ALERT_METHOD_KEY = "attendance_alert_method"
LATE_ALERT_KEY = "attendance_late_alert"
LATE_THRESHOLD_KEY = "attendance_late_threshold"

ATTENDANCE_CONFIG_KEYS = (
    GPS_ALERTS_KEY,
    GPS_RADIUS_KEY,
    ALERT_METHOD_KEY,
    LATE_ALERT_KEY,
    LATE_THRESHOLD_KEY,
)

WHATSAPP_API_KEY = "whatsapp_api_key"
WHATSAPP_PHONE_NUMBER_ID_KEY = "whatsapp_phone_number_id"
WHATSAPP_BUSINESS_ACCOUNT_ID_KEY = "whatsapp_business_account_id"
WHATSAPP_ENABLED_KEY = "whatsapp_enabled"

DEFAULT_ALERT_METHOD = "dashboard"
EXTERNAL_ALERT_METHODS = {"whatsapp", "arattai"}
