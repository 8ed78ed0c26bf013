"""Read-side collaborators: school locations, per-school settings, people."""

import logging
import math

from sqlalchemy.orm import Session

from .models import School, SystemSetting, Teacher, UserProfile, utcnow

logger = logging.getLogger(__name__)


class SchoolDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_location(self, school_id: int) -> tuple[float, float] | None:
        school = self.db.query(School).filter(School.id == school_id).first()
        if school is None or school.latitude is None or school.longitude is None:
            return None
        return school.latitude, school.longitude


class SettingsStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _row(self, school_id: int, key: str) -> SystemSetting | None:
        return (
            self.db.query(SystemSetting)
            .filter(SystemSetting.school_id == school_id, SystemSetting.setting_key == key)
            .first()
        )

    def get_setting(self, school_id: int, key: str) -> str | None:
        row = self._row(school_id, key)
        return row.setting_value if row else None

    def get_settings(self, school_id: int, keys) -> dict[str, str | None]:
        rows = (
            self.db.query(SystemSetting)
            .filter(SystemSetting.school_id == school_id, SystemSetting.setting_key.in_(list(keys)))
            .all()
        )
        return {row.setting_key: row.setting_value for row in rows}

    def set_setting(self, school_id: int, key: str, value: str | None) -> None:
        # Caller owns the commit.
        row = self._row(school_id, key)
        if row is None:
            self.db.add(SystemSetting(school_id=school_id, setting_key=key, setting_value=value))
        else:
            row.setting_value = value
            row.updated_at = utcnow()

    def get_positive_number(self, school_id: int, key: str) -> float | None:
        """Return the setting as a positive float, or None when unset or unusable."""
        raw = self.get_setting(school_id, key)
        if raw is None or str(raw).strip() == "":
            return None
        try:
            value = float(raw)
        except ValueError:
            logger.warning(f"Ignoring non-numeric {key}={raw!r} for school {school_id}")
            return None
        if not math.isfinite(value) or value <= 0:
            logger.warning(f"Ignoring non-positive {key}={raw!r} for school {school_id}")
            return None
        return value


class TeacherDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_display_name(self, teacher_id: int) -> str:
        profile = (
            self.db.query(UserProfile)
            .join(Teacher, Teacher.user_profile_id == UserProfile.id)
            .filter(Teacher.id == teacher_id)
            .first()
        )
        return profile.name if profile else "Unknown"


class ContactDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_phone(self, school_id: int, role: str) -> str | None:
        profile = (
            self.db.query(UserProfile)
            .filter(
                UserProfile.school_id == school_id,
                UserProfile.role == role,
                UserProfile.phone.isnot(None),
            )
            .order_by(UserProfile.id)
            .first()
        )
        return profile.phone if profile else None
