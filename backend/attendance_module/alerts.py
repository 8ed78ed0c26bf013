import enum
import logging
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from .config import ALERT_METHOD_KEY, DEFAULT_ALERT_METHOD, EXTERNAL_ALERT_METHODS
from .directory import SettingsStore, TeacherDirectory
from .errors import NotFound, NotificationError
from .geo import ZoneClassification
from .models import AlertSeverity, AlertType, PrincipalAlert, ZoneStatus, utcnow
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

PRINCIPAL_ROLE = "principal"


class AlertKind(str, enum.Enum):
    GPS_NEAR_RANGE = "gps_near_range"
    GPS_FAR_OUT_OF_RANGE = "gps_far_out_of_range"


@dataclass(frozen=True)
class AlertTemplate:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    related_entity_type: str

    def render(self, **values) -> str:
        return self.message.format(**values)


_GPS_MESSAGE = "Teacher {teacher_name} marked attendance {distance}m from school ({zone} zone)"

ALERT_TEMPLATES: dict[AlertKind, AlertTemplate] = {
    AlertKind.GPS_NEAR_RANGE: AlertTemplate(
        alert_type=AlertType.GPS_OUT_OF_RANGE,
        severity=AlertSeverity.MEDIUM,
        title="Out-of-Range GPS Attendance",
        message=_GPS_MESSAGE,
        related_entity_type="teacher",
    ),
    AlertKind.GPS_FAR_OUT_OF_RANGE: AlertTemplate(
        alert_type=AlertType.GPS_OUT_OF_RANGE,
        severity=AlertSeverity.HIGH,
        title="Out-of-Range GPS Attendance",
        message=_GPS_MESSAGE,
        related_entity_type="teacher",
    ),
}

_ZONE_ALERTS = {
    ZoneStatus.ORANGE: AlertKind.GPS_NEAR_RANGE,
    ZoneStatus.RED: AlertKind.GPS_FAR_OUT_OF_RANGE,
}


def whole_meters(distance: float) -> int:
    """Round to whole meters with halves going up, so 150.5 reads as 151."""
    return int(Decimal(distance).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def alert_kind_for(classification: ZoneClassification) -> AlertKind | None:
    return _ZONE_ALERTS.get(classification.zone_status)


class AlertGenerator:
    """Turns out-of-range check-ins into principal alerts and hands them to a channel.

    ``create_gps_alert`` only adds the alert to the caller's session; the caller
    commits. ``dispatch`` must run after that commit: delivery failures are
    logged and never undo the alert.
    """

    def __init__(
        self,
        db: Session,
        *,
        dispatcher: NotificationDispatcher | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.executor = executor
        self.settings_store = SettingsStore(db)
        self.teachers = TeacherDirectory(db)

    def create_gps_alert(
        self,
        *,
        school_id: int,
        teacher_id: int,
        classification: ZoneClassification,
        gps_log_id: int,
    ) -> PrincipalAlert | None:
        kind = alert_kind_for(classification)
        if kind is None:
            return None
        template = ALERT_TEMPLATES[kind]

        message = template.render(
            teacher_name=self.teachers.get_display_name(teacher_id),
            distance=whole_meters(classification.distance_meters),
            zone=classification.zone_status.value,
        )
        method = self.settings_store.get_setting(school_id, ALERT_METHOD_KEY) or DEFAULT_ALERT_METHOD

        alert = PrincipalAlert(
            school_id=school_id,
            alert_type=template.alert_type.value,
            severity=template.severity.value,
            title=template.title,
            message=message,
            related_entity_type=template.related_entity_type,
            related_entity_id=teacher_id,
            gps_log_id=gps_log_id,
            sent_via=method if method in EXTERNAL_ALERT_METHODS else DEFAULT_ALERT_METHOD,
            acknowledged=False,
            resolved=False,
            created_at=utcnow(),
        )
        self.db.add(alert)
        self.db.flush()
        logger.info(f"Alert {alert.id} ({alert.severity}) created for teacher {teacher_id} in school {school_id}")
        return alert

    def dispatch(self, alert: PrincipalAlert) -> None:
        if alert.sent_via not in EXTERNAL_ALERT_METHODS:
            return
        if self.dispatcher is None:
            logger.warning(f"Alert {alert.id} wants {alert.sent_via} but no dispatcher is configured")
            return

        if self.executor is None:
            self._send(alert.id, alert.school_id, alert.message)
            return
        future = self.executor.submit(self._send, alert.id, alert.school_id, alert.message)
        future.add_done_callback(_log_unexpected_failure)

    def _send(self, alert_id: int, school_id: int, message: str) -> None:
        try:
            result = self.dispatcher.send(school_id, PRINCIPAL_ROLE, message)
        except NotificationError as exc:
            logger.warning(f"Notification for alert {alert_id} failed: {exc}")
            return
        except Exception as exc:
            # The alert is already committed; delivery problems are only logged.
            logger.error(f"Notification for alert {alert_id} crashed: {exc!r}")
            return
        if not result.success:
            logger.warning(f"Notification for alert {alert_id} not delivered: {result.error}")


def _log_unexpected_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error(f"Notification worker crashed: {exc!r}")


def _get_alert(db: Session, *, alert_id: int, school_id: int) -> PrincipalAlert:
    alert = (
        db.query(PrincipalAlert)
        .filter(PrincipalAlert.id == alert_id, PrincipalAlert.school_id == school_id)
        .first()
    )
    if alert is None:
        raise NotFound("Alert not found")
    return alert


def acknowledge_alert(
    db: Session,
    *,
    school_id: int,
    alert_id: int,
    user_id: int,
    action_taken: str | None = None,
) -> PrincipalAlert:
    alert = _get_alert(db, alert_id=alert_id, school_id=school_id)
    alert.acknowledged = True
    alert.acknowledged_by = user_id
    alert.acknowledged_at = utcnow()
    alert.action_taken = action_taken or None
    return alert


def resolve_alert(db: Session, *, school_id: int, alert_id: int) -> PrincipalAlert:
    alert = _get_alert(db, alert_id=alert_id, school_id=school_id)
    alert.resolved = True
    alert.resolved_at = utcnow()
    return alert


def list_alerts(
    db: Session,
    *,
    school_id: int,
    unacknowledged_only: bool = False,
    severity: str | None = None,
    limit: int = 50,
) -> list[PrincipalAlert]:
    query = db.query(PrincipalAlert).filter(PrincipalAlert.school_id == school_id)
    if unacknowledged_only:
        query = query.filter(PrincipalAlert.acknowledged.is_(False))
    if severity:
        query = query.filter(PrincipalAlert.severity == severity)
    return query.order_by(PrincipalAlert.created_at.desc(), PrincipalAlert.id.desc()).limit(limit).all()
