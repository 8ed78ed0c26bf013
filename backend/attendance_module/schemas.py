from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RecordCheckInRequest(BaseModel):
    # Left optional so that missing values surface as InvalidRequest (400), not 422.
    teacher_id: int | None = None
    latitude: float | str | None = None
    longitude: float | str | None = None
    biometric_verified: bool = False
    biometric_data: str | None = None
    device_info: dict[str, Any] | None = None


class CheckInOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    school_id: int
    teacher_id: int
    latitude: float
    longitude: float
    marked_at: datetime
    distance_from_school: float
    zone_status: str
    out_of_range: bool
    biometric_verified: bool
    device_info: dict[str, Any] | None = None


class RecordCheckInResponse(BaseModel):
    success: bool = True
    check_in: CheckInOut
    distance: float
    zone_status: str
    out_of_range: bool
    alert_created: bool
    alert_id: int | None = None


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    school_id: int
    alert_type: str
    severity: str
    title: str
    message: str
    related_entity_type: str | None = None
    related_entity_id: int | None = None
    gps_log_id: int | None = None
    sent_via: str | None = None
    acknowledged: bool
    acknowledged_by: int | None = None
    acknowledged_at: datetime | None = None
    action_taken: str | None = None
    resolved: bool
    resolved_at: datetime | None = None
    created_at: datetime


class AcknowledgeAlertRequest(BaseModel):
    alert_id: int
    action_taken: str | None = Field(default=None, max_length=2000)


class ResolveAlertRequest(BaseModel):
    alert_id: int


class AlertActionResponse(BaseModel):
    success: bool = True
    alert: AlertOut


class ClassAttendanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    class_name: str
    total_students: int
    present: int
    absent: int
    percentage: float


class HeatmapPointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lat: float
    lng: float
    zone_status: str
    teacher_id: int
    marked_at: datetime


class DashboardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_students_expected: int
    total_students_present: int
    total_students_absent: int
    total_students_late: int
    attendance_percentage: float
    total_teachers_expected: int
    total_teachers_present: int
    teachers_in_range: int
    teachers_near_range: int
    teachers_out_of_range: int
    alerts_generated: int
    critical_alerts: int
    classwise_data: list[ClassAttendanceOut]
    gps_heatmap_data: list[HeatmapPointOut]
    last_updated: datetime


class MobileLinkRequest(BaseModel):
    teacher_id: int


class MobileLinkResponse(BaseModel):
    mobile_link: str
    session_id: int
    link_expires_at: datetime


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    school_id: int
    teacher_id: int
    status: str
    total_check_ins: int
    in_range_check_ins: int
    out_of_range_check_ins: int
    mobile_link: str | None = None
    link_expires_at: datetime | None = None
    session_started: datetime | None = None
    session_ended: datetime | None = None


class ExpireSessionsResponse(BaseModel):
    expired: int


class AttendanceConfig(BaseModel):
    enable_gps_alerts: str | None = None
    gps_radius: str | None = None
    alert_method: str | None = None
    enable_late_alert: str | None = None
    late_threshold: str | None = None


class WhatsAppConfigIn(BaseModel):
    whatsapp_api_key: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_business_account_id: str | None = None
    whatsapp_enabled: bool = False


class WhatsAppConfigOut(BaseModel):
    whatsapp_api_key: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_business_account_id: str | None = None
    whatsapp_enabled: bool = False


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None
