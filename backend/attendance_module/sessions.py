import logging
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import GpsAttendanceSession, SessionStatus, utcnow

logger = logging.getLogger(__name__)

FINISHED_STATUSES = {SessionStatus.COMPLETED.value, SessionStatus.EXPIRED.value}


class SessionAggregator:
    """Keeps the running check-in counters of a teacher's active GPS session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_active(self, *, school_id: int, teacher_id: int) -> GpsAttendanceSession | None:
        # The unique index allows one active row; legacy data may hold more, newest wins.
        return (
            self.db.query(GpsAttendanceSession)
            .filter(
                GpsAttendanceSession.school_id == school_id,
                GpsAttendanceSession.teacher_id == teacher_id,
                GpsAttendanceSession.status == SessionStatus.ACTIVE.value,
            )
            .order_by(GpsAttendanceSession.session_started.desc().nulls_last(), GpsAttendanceSession.id.desc())
            .first()
        )

    def record_check_in(
        self,
        *,
        school_id: int,
        teacher_id: int,
        in_range: bool,
        now: datetime | None = None,
    ) -> GpsAttendanceSession | None:
        now = now or utcnow()
        session = self.find_active(school_id=school_id, teacher_id=teacher_id)
        if session is None:
            session = self._activate_pending(school_id=school_id, teacher_id=teacher_id, now=now)
        if session is None:
            return None

        # Single UPDATE so concurrent check-ins cannot lose an increment.
        self.db.query(GpsAttendanceSession).filter(GpsAttendanceSession.id == session.id).update(
            {
                GpsAttendanceSession.total_check_ins: GpsAttendanceSession.total_check_ins + 1,
                GpsAttendanceSession.in_range_check_ins: GpsAttendanceSession.in_range_check_ins + (1 if in_range else 0),
                GpsAttendanceSession.out_of_range_check_ins: GpsAttendanceSession.out_of_range_check_ins
                + (0 if in_range else 1),
            },
            synchronize_session=False,
        )
        self.db.refresh(session)
        return session

    def _activate_pending(self, *, school_id: int, teacher_id: int, now: datetime) -> GpsAttendanceSession | None:
        pending = (
            self.db.query(GpsAttendanceSession)
            .filter(
                GpsAttendanceSession.school_id == school_id,
                GpsAttendanceSession.teacher_id == teacher_id,
                GpsAttendanceSession.status == SessionStatus.PENDING.value,
                or_(GpsAttendanceSession.link_expires_at.is_(None), GpsAttendanceSession.link_expires_at > now),
            )
            .order_by(GpsAttendanceSession.created_at.desc(), GpsAttendanceSession.id.desc())
            .first()
        )
        if pending is None:
            return None

        try:
            with self.db.begin_nested():
                pending.status = SessionStatus.ACTIVE.value
                pending.session_started = now
                self.db.flush()
        except IntegrityError:
            logger.info(f"Teacher {teacher_id} already has an active session, using it")
            return self.find_active(school_id=school_id, teacher_id=teacher_id)

        logger.info(f"GPS session {pending.id} activated for teacher {teacher_id}")
        return pending


def create_pending_session(
    db: Session,
    *,
    school_id: int,
    teacher_id: int,
    mobile_link: str,
    link_expires_at: datetime,
    teacher_user_profile_id: int | None = None,
) -> GpsAttendanceSession:
    session = GpsAttendanceSession(
        school_id=school_id,
        teacher_id=teacher_id,
        teacher_user_profile_id=teacher_user_profile_id,
        mobile_link=mobile_link,
        link_expires_at=link_expires_at,
        status=SessionStatus.PENDING.value,
        total_check_ins=0,
        in_range_check_ins=0,
        out_of_range_check_ins=0,
        created_at=utcnow(),
    )
    db.add(session)
    db.flush()
    return session


def close_session(db: Session, *, school_id: int, session_id: int, now: datetime | None = None) -> GpsAttendanceSession:
    session = (
        db.query(GpsAttendanceSession)
        .filter(GpsAttendanceSession.id == session_id, GpsAttendanceSession.school_id == school_id)
        .first()
    )
    if session is None:
        raise NotFound("Session not found")
    if session.status in FINISHED_STATUSES:
        return session

    session.status = SessionStatus.COMPLETED.value
    session.session_ended = now or utcnow()
    logger.info(f"GPS session {session.id} closed for teacher {session.teacher_id}")
    return session


def expire_sessions(db: Session, *, school_id: int, now: datetime | None = None) -> int:
    now = now or utcnow()
    count = (
        db.query(GpsAttendanceSession)
        .filter(
            GpsAttendanceSession.school_id == school_id,
            GpsAttendanceSession.status.in_([SessionStatus.PENDING.value, SessionStatus.ACTIVE.value]),
            GpsAttendanceSession.link_expires_at.is_not(None),
            GpsAttendanceSession.link_expires_at <= now,
        )
        .update({GpsAttendanceSession.status: SessionStatus.EXPIRED.value}, synchronize_session=False)
    )
    return count or 0


def list_sessions(db: Session, *, school_id: int, teacher_id: int | None = None) -> list[GpsAttendanceSession]:
    query = db.query(GpsAttendanceSession).filter(GpsAttendanceSession.school_id == school_id)
    if teacher_id is not None:
        query = query.filter(GpsAttendanceSession.teacher_id == teacher_id)
    return query.order_by(GpsAttendanceSession.created_at.desc(), GpsAttendanceSession.id.desc()).all()
