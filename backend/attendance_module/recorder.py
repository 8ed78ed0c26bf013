import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .alerts import AlertGenerator
from .config import GPS_RADIUS_KEY, settings
from .directory import SchoolDirectory, SettingsStore
from .errors import InvalidRequest, StorageError
from .geo import ZoneClassification, classify, distance_meters, to_coordinate
from .models import GpsAttendanceSession, GpsCheckIn, PrincipalAlert, utcnow
from .notifications import NotificationDispatcher
from .sessions import SessionAggregator

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    check_in: GpsCheckIn
    classification: ZoneClassification
    alert: PrincipalAlert | None = None
    session: GpsAttendanceSession | None = None

    @property
    def distance(self) -> float:
        return round(self.classification.distance_meters, 2)

    @property
    def zone_status(self) -> str:
        return self.classification.zone_status.value

    @property
    def out_of_range(self) -> bool:
        return self.classification.out_of_range

    @property
    def alert_created(self) -> bool:
        return self.alert is not None


def _require(value: Any, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidRequest(f"{name} is required")


class GpsAttendanceRecorder:
    def __init__(
        self,
        db: Session,
        *,
        dispatcher: NotificationDispatcher | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.db = db
        self.schools = SchoolDirectory(db)
        self.settings_store = SettingsStore(db)
        self.alerts = AlertGenerator(db, dispatcher=dispatcher, executor=executor)
        self.sessions = SessionAggregator(db)

    def record_check_in(
        self,
        *,
        school_id: int,
        teacher_id: int,
        latitude,
        longitude,
        biometric_verified: bool = False,
        biometric_data: str | None = None,
        device_info: dict[str, Any] | None = None,
        user_profile_id: int | None = None,
        now: datetime | None = None,
    ) -> CheckInResult:
        _require(school_id, "school_id")
        _require(teacher_id, "teacher_id")
        _require(latitude, "latitude")
        _require(longitude, "longitude")
        lat = to_coordinate(latitude, "latitude")
        lng = to_coordinate(longitude, "longitude")
        now = now or utcnow()

        try:
            classification = self._classify(school_id, lat, lng)

            check_in = GpsCheckIn(
                school_id=school_id,
                teacher_id=teacher_id,
                teacher_user_profile_id=user_profile_id,
                latitude=lat,
                longitude=lng,
                marked_at=now,
                distance_from_school=round(classification.distance_meters, 2),
                zone_status=classification.zone_status.value,
                out_of_range=classification.out_of_range,
                biometric_verified=bool(biometric_verified),
                biometric_data=biometric_data,
                device_info=device_info,
                created_at=now,
            )
            self.db.add(check_in)
            self.db.flush()

            alert = None
            if classification.out_of_range:
                alert = self.alerts.create_gps_alert(
                    school_id=school_id,
                    teacher_id=teacher_id,
                    classification=classification,
                    gps_log_id=check_in.id,
                )

            session = self.sessions.record_check_in(
                school_id=school_id,
                teacher_id=teacher_id,
                in_range=not classification.out_of_range,
                now=now,
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to record GPS check-in for teacher {teacher_id} in school {school_id}: {exc}")
            raise StorageError("Failed to record GPS attendance") from exc

        logger.info(
            f"GPS check-in {check_in.id}: teacher {teacher_id}, school {school_id}, "
            f"{classification.zone_status.value} at {classification.distance_meters:.2f}m"
        )
        if alert is not None:
            # Committed above, so a delivery problem must not fail the check-in.
            try:
                self.alerts.dispatch(alert)
            except Exception as exc:
                logger.error(f"Could not dispatch alert {alert.id}: {exc!r}")

        return CheckInResult(check_in=check_in, classification=classification, alert=alert, session=session)

    def _classify(self, school_id: int, lat: float, lng: float) -> ZoneClassification:
        location = self.schools.get_location(school_id)
        if location is None:
            # Kept as-is: an unset location measures from (0, 0), which always lands in red.
            logger.warning(f"School {school_id} has no registered location, measuring from (0, 0)")
            location = (0.0, 0.0)

        radius = self.settings_store.get_positive_number(school_id, GPS_RADIUS_KEY)
        if radius is None:
            logger.warning(
                f"School {school_id} has no usable {GPS_RADIUS_KEY}, using {settings.default_gps_radius_m}m"
            )

        distance = distance_meters(location[0], location[1], lat, lng)
        return classify(distance, radius)


def get_recent_check_ins(db: Session, *, school_id: int, limit: int | None = None) -> list[GpsCheckIn]:
    limit = limit or settings.recent_logs_limit
    return (
        db.query(GpsCheckIn)
        .filter(GpsCheckIn.school_id == school_id)
        .order_by(GpsCheckIn.marked_at.desc(), GpsCheckIn.id.desc())
        .limit(limit)
        .all()
    )
