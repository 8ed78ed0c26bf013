import logging
from collections.abc import Iterator
from concurrent.futures import Executor
from contextlib import contextmanager
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import alerts, sessions
from .config import (
    ALERT_METHOD_KEY,
    GPS_ALERTS_KEY,
    GPS_RADIUS_KEY,
    LATE_ALERT_KEY,
    LATE_THRESHOLD_KEY,
    WHATSAPP_API_KEY,
    WHATSAPP_BUSINESS_ACCOUNT_ID_KEY,
    WHATSAPP_ENABLED_KEY,
    WHATSAPP_PHONE_NUMBER_ID_KEY,
    settings,
)
from .dashboard import DashboardAggregator, DashboardSnapshot
from .directory import SettingsStore
from .errors import InvalidRequest, StorageError
from .models import GpsAttendanceSession, GpsCheckIn, PrincipalAlert, utcnow
from .notifications import NotificationDispatcher
from .recorder import CheckInResult, GpsAttendanceRecorder
from .recorder import get_recent_check_ins as _recent_check_ins
from .security import create_mobile_link_token

logger = logging.getLogger(__name__)

CONFIG_FIELDS = {
    "enable_gps_alerts": GPS_ALERTS_KEY,
    "gps_radius": GPS_RADIUS_KEY,
    "alert_method": ALERT_METHOD_KEY,
    "enable_late_alert": LATE_ALERT_KEY,
    "late_threshold": LATE_THRESHOLD_KEY,
}


@contextmanager
def _writing(db: Session, action: str) -> Iterator[None]:
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to {action}: {exc}")
        raise StorageError(f"Failed to {action}") from exc


def record_check_in(
    db: Session,
    *,
    school_id: int,
    teacher_id: int | None,
    latitude: Any,
    longitude: Any,
    biometric_verified: bool = False,
    biometric_data: str | None = None,
    device_info: dict[str, Any] | None = None,
    user_profile_id: int | None = None,
    dispatcher: NotificationDispatcher | None = None,
    executor: Executor | None = None,
) -> CheckInResult:
    recorder = GpsAttendanceRecorder(db, dispatcher=dispatcher, executor=executor)
    return recorder.record_check_in(
        school_id=school_id,
        teacher_id=teacher_id,
        latitude=latitude,
        longitude=longitude,
        biometric_verified=biometric_verified,
        biometric_data=biometric_data,
        device_info=device_info,
        user_profile_id=user_profile_id,
    )


def get_recent_check_ins(db: Session, *, school_id: int, limit: int | None = None) -> list[GpsCheckIn]:
    if limit is not None and limit <= 0:
        raise InvalidRequest("limit must be positive")
    return _recent_check_ins(db, school_id=school_id, limit=limit)


def get_dashboard_snapshot(db: Session, *, school_id: int, day: date | None = None) -> DashboardSnapshot:
    return DashboardAggregator(db).snapshot(school_id=school_id, day=day or utcnow().date())


def list_alerts(
    db: Session,
    *,
    school_id: int,
    unacknowledged_only: bool = False,
    severity: str | None = None,
    limit: int = 50,
) -> list[PrincipalAlert]:
    return alerts.list_alerts(
        db,
        school_id=school_id,
        unacknowledged_only=unacknowledged_only,
        severity=severity,
        limit=limit,
    )


def acknowledge_alert(
    db: Session,
    *,
    school_id: int,
    alert_id: int,
    user_id: int,
    action_taken: str | None = None,
) -> PrincipalAlert:
    with _writing(db, "acknowledge alert"):
        alert = alerts.acknowledge_alert(
            db, school_id=school_id, alert_id=alert_id, user_id=user_id, action_taken=action_taken
        )
    db.refresh(alert)
    logger.info(f"Alert {alert_id} acknowledged by user {user_id}")
    return alert


def resolve_alert(db: Session, *, school_id: int, alert_id: int) -> PrincipalAlert:
    with _writing(db, "resolve alert"):
        alert = alerts.resolve_alert(db, school_id=school_id, alert_id=alert_id)
    db.refresh(alert)
    logger.info(f"Alert {alert_id} resolved")
    return alert


def generate_mobile_link(
    db: Session,
    *,
    school_id: int,
    teacher_id: int,
    user_profile_id: int | None = None,
    base_url: str | None = None,
) -> GpsAttendanceSession:
    token, expires_at = create_mobile_link_token(school_id, teacher_id)
    base = (base_url or settings.mobile_link_base).rstrip("/")
    mobile_link = f"{base}/mobile-attendance?token={token}"

    with _writing(db, "create GPS attendance session"):
        session = sessions.create_pending_session(
            db,
            school_id=school_id,
            teacher_id=teacher_id,
            mobile_link=mobile_link,
            link_expires_at=expires_at,
            teacher_user_profile_id=user_profile_id,
        )
    db.refresh(session)
    logger.info(f"Mobile link generated for teacher {teacher_id} (session {session.id})")
    return session


def close_session(db: Session, *, school_id: int, session_id: int) -> GpsAttendanceSession:
    with _writing(db, "close GPS attendance session"):
        session = sessions.close_session(db, school_id=school_id, session_id=session_id)
    db.refresh(session)
    return session


def expire_sessions(db: Session, *, school_id: int) -> int:
    with _writing(db, "expire GPS attendance sessions"):
        count = sessions.expire_sessions(db, school_id=school_id)
    if count:
        logger.info(f"Expired {count} GPS attendance session(s) in school {school_id}")
    return count


def list_sessions(db: Session, *, school_id: int, teacher_id: int | None = None) -> list[GpsAttendanceSession]:
    return sessions.list_sessions(db, school_id=school_id, teacher_id=teacher_id)


def get_attendance_config(db: Session, *, school_id: int) -> dict[str, str | None]:
    values = SettingsStore(db).get_settings(school_id, CONFIG_FIELDS.values())
    return {field: values.get(key) for field, key in CONFIG_FIELDS.items()}


def update_attendance_config(db: Session, *, school_id: int, values: dict[str, Any]) -> None:
    store = SettingsStore(db)
    with _writing(db, "update attendance config"):
        for field, key in CONFIG_FIELDS.items():
            if values.get(field) is not None:
                store.set_setting(school_id, key, str(values[field]))


def _mask(secret: str | None) -> str | None:
    return "****" + secret[-4:] if secret else None


def get_whatsapp_config(db: Session, *, school_id: int) -> dict[str, Any]:
    values = SettingsStore(db).get_settings(
        school_id,
        (WHATSAPP_API_KEY, WHATSAPP_PHONE_NUMBER_ID_KEY, WHATSAPP_BUSINESS_ACCOUNT_ID_KEY, WHATSAPP_ENABLED_KEY),
    )
    return {
        "whatsapp_api_key": _mask(values.get(WHATSAPP_API_KEY)),
        "whatsapp_phone_number_id": values.get(WHATSAPP_PHONE_NUMBER_ID_KEY),
        "whatsapp_business_account_id": values.get(WHATSAPP_BUSINESS_ACCOUNT_ID_KEY),
        "whatsapp_enabled": (values.get(WHATSAPP_ENABLED_KEY) or "").lower() == "true",
    }


def update_whatsapp_config(
    db: Session,
    *,
    school_id: int,
    api_key: str | None,
    phone_number_id: str | None,
    business_account_id: str | None,
    enabled: bool,
) -> None:
    store = SettingsStore(db)
    with _writing(db, "update WhatsApp config"):
        store.set_setting(school_id, WHATSAPP_PHONE_NUMBER_ID_KEY, phone_number_id)
        store.set_setting(school_id, WHATSAPP_BUSINESS_ACCOUNT_ID_KEY, business_account_id)
        store.set_setting(school_id, WHATSAPP_ENABLED_KEY, "true" if enabled else "false")
        # A masked key echoed back from the GET endpoint leaves the stored key alone.
        if api_key and "****" not in api_key:
            store.set_setting(school_id, WHATSAPP_API_KEY, api_key)
