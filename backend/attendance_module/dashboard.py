"""Principal's point-in-time attendance dashboard."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import settings
from .models import (
    AlertSeverity,
    AttendanceRecord,
    GpsCheckIn,
    PrincipalAlert,
    SchoolClass,
    Student,
    Teacher,
    ZoneStatus,
    utcnow,
)

CRITICAL_SEVERITIES = (AlertSeverity.HIGH.value, AlertSeverity.CRITICAL.value)


@dataclass
class ClassAttendance:
    class_name: str
    total_students: int
    present: int
    absent: int
    percentage: float


@dataclass
class HeatmapPoint:
    lat: float
    lng: float
    zone_status: str
    teacher_id: int
    marked_at: datetime


@dataclass
class DashboardSnapshot:
    total_students_expected: int = 0
    total_students_present: int = 0
    total_students_absent: int = 0
    total_students_late: int = 0
    attendance_percentage: float = 0.0
    total_teachers_expected: int = 0
    total_teachers_present: int = 0
    teachers_in_range: int = 0
    teachers_near_range: int = 0
    teachers_out_of_range: int = 0
    alerts_generated: int = 0
    critical_alerts: int = 0
    classwise_data: list[ClassAttendance] = field(default_factory=list)
    gps_heatmap_data: list[HeatmapPoint] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)


def _percentage(part: int, whole: int, digits: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, digits)


class DashboardAggregator:
    def __init__(self, db: Session, *, heatmap_limit: int | None = None) -> None:
        self.db = db
        self.heatmap_limit = min(heatmap_limit or settings.heatmap_limit, 20)

    def snapshot(self, *, school_id: int, day: date) -> DashboardSnapshot:
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)
        snapshot = DashboardSnapshot()

        self._fill_students(snapshot, school_id, day)
        self._fill_teachers(snapshot, school_id, start, end)
        self._fill_alerts(snapshot, school_id, start, end)
        snapshot.gps_heatmap_data = self._heatmap(school_id, start, end)
        return snapshot

    def _fill_students(self, snapshot: DashboardSnapshot, school_id: int, day: date) -> None:
        students = self.db.query(Student.id, Student.class_id).filter(Student.school_id == school_id).all()
        records = (
            self.db.query(AttendanceRecord.student_id, AttendanceRecord.class_id, AttendanceRecord.status)
            .filter(AttendanceRecord.school_id == school_id, AttendanceRecord.attendance_date == day)
            .all()
        )

        present = sum(1 for r in records if r.status == "present")
        snapshot.total_students_expected = len(students)
        snapshot.total_students_present = present
        snapshot.total_students_absent = max(len(students) - present, 0)
        snapshot.total_students_late = sum(1 for r in records if r.status == "late")
        snapshot.attendance_percentage = _percentage(present, len(students), 2)

        classes = self.db.query(SchoolClass).filter(SchoolClass.school_id == school_id).order_by(SchoolClass.id).all()
        for cls in classes:
            class_size = sum(1 for s in students if s.class_id == cls.id)
            class_present = sum(1 for r in records if r.class_id == cls.id and r.status == "present")
            snapshot.classwise_data.append(
                ClassAttendance(
                    class_name=f"{cls.name} - {cls.section}",
                    total_students=class_size,
                    present=class_present,
                    absent=max(class_size - class_present, 0),
                    percentage=_percentage(class_present, class_size, 1),
                )
            )

    def _fill_teachers(self, snapshot: DashboardSnapshot, school_id: int, start: datetime, end: datetime) -> None:
        snapshot.total_teachers_expected = self.db.query(func.count(Teacher.id)).filter(Teacher.school_id == school_id).scalar()

        rows = (
            self.db.query(GpsCheckIn.teacher_id, GpsCheckIn.zone_status)
            .filter(
                GpsCheckIn.school_id == school_id,
                GpsCheckIn.marked_at >= start,
                GpsCheckIn.marked_at < end,
            )
            .order_by(GpsCheckIn.marked_at, GpsCheckIn.id)
            .all()
        )

        # Later rows overwrite earlier ones: each teacher counts once, by latest zone.
        latest_zone = {row.teacher_id: row.zone_status for row in rows}
        zones = list(latest_zone.values())
        snapshot.total_teachers_present = len(latest_zone)
        snapshot.teachers_in_range = zones.count(ZoneStatus.GREEN.value)
        snapshot.teachers_near_range = zones.count(ZoneStatus.ORANGE.value)
        snapshot.teachers_out_of_range = zones.count(ZoneStatus.RED.value)

    def _fill_alerts(self, snapshot: DashboardSnapshot, school_id: int, start: datetime, end: datetime) -> None:
        severities = [
            row.severity
            for row in self.db.query(PrincipalAlert.severity).filter(
                PrincipalAlert.school_id == school_id,
                PrincipalAlert.created_at >= start,
                PrincipalAlert.created_at < end,
            )
        ]
        snapshot.alerts_generated = len(severities)
        snapshot.critical_alerts = sum(1 for s in severities if s in CRITICAL_SEVERITIES)

    def _heatmap(self, school_id: int, start: datetime, end: datetime) -> list[HeatmapPoint]:
        check_ins = (
            self.db.query(GpsCheckIn)
            .filter(
                GpsCheckIn.school_id == school_id,
                GpsCheckIn.marked_at >= start,
                GpsCheckIn.marked_at < end,
            )
            .order_by(GpsCheckIn.marked_at.desc(), GpsCheckIn.id.desc())
            .limit(self.heatmap_limit)
            .all()
        )
        return [
            HeatmapPoint(
                lat=c.latitude,
                lng=c.longitude,
                zone_status=c.zone_status,
                teacher_id=c.teacher_id,
                marked_at=c.marked_at,
            )
            for c in check_ins
        ]
