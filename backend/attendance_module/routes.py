from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from . import services
from .database import get_db_session
from .errors import AttendanceError, InvalidCoordinate, InvalidRequest, NotFound
from .middleware import PRINCIPAL_ROLES, CurrentUser, get_current_user, require_roles
from .recorder import CheckInResult
from .schemas import (
    AcknowledgeAlertRequest,
    AlertActionResponse,
    AlertOut,
    AttendanceConfig,
    CheckInOut,
    DashboardOut,
    ExpireSessionsResponse,
    MobileLinkRequest,
    MobileLinkResponse,
    RecordCheckInRequest,
    RecordCheckInResponse,
    ResolveAlertRequest,
    SessionOut,
    SuccessResponse,
    WhatsAppConfigIn,
    WhatsAppConfigOut,
)
from .security import AuthError, decode_mobile_link_token

router = APIRouter(prefix="/api/attendance", tags=["GPS Attendance"])


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (InvalidRequest, InvalidCoordinate) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AttendanceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


def _notification_deps(request: Request) -> dict:
    state = request.app.state
    return {
        "dispatcher": getattr(state, "notification_dispatcher", None),
        "executor": getattr(state, "notification_executor", None),
    }


def _check_in_response(result: CheckInResult) -> RecordCheckInResponse:
    return RecordCheckInResponse(
        check_in=CheckInOut.model_validate(result.check_in),
        distance=result.distance,
        zone_status=result.zone_status,
        out_of_range=result.out_of_range,
        alert_created=result.alert_created,
        alert_id=result.alert.id if result.alert is not None else None,
    )


@router.post("/record-gps", response_model=RecordCheckInResponse)
def record_gps(
    payload: RecordCheckInRequest,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
    notify: dict = Depends(_notification_deps),
):
    with _domain_errors():
        result = services.record_check_in(
            db,
            school_id=current_user.school_id,
            teacher_id=payload.teacher_id,
            latitude=payload.latitude,
            longitude=payload.longitude,
            biometric_verified=payload.biometric_verified,
            biometric_data=payload.biometric_data,
            device_info=payload.device_info,
            user_profile_id=current_user.user_id,
            **notify,
        )
    return _check_in_response(result)


@router.post("/mobile/record-gps", response_model=RecordCheckInResponse)
def mobile_record_gps(
    payload: RecordCheckInRequest,
    token: str = Query(...),
    db: Session = Depends(get_db_session),
    notify: dict = Depends(_notification_deps),
):
    try:
        claims = decode_mobile_link_token(token)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    with _domain_errors():
        result = services.record_check_in(
            db,
            school_id=int(claims["school_id"]),
            teacher_id=int(claims["teacher_id"]),
            latitude=payload.latitude,
            longitude=payload.longitude,
            biometric_verified=payload.biometric_verified,
            biometric_data=payload.biometric_data,
            device_info=payload.device_info,
            **notify,
        )
    return _check_in_response(result)


@router.get("/gps-logs", response_model=list[CheckInOut])
def gps_logs(
    limit: int | None = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    with _domain_errors():
        check_ins = services.get_recent_check_ins(db, school_id=current_user.school_id, limit=limit)
    return [CheckInOut.model_validate(c) for c in check_ins]


@router.get("/principal-dashboard", response_model=DashboardOut)
def principal_dashboard(
    day: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(require_roles(*PRINCIPAL_ROLES)),
):
    snapshot = services.get_dashboard_snapshot(db, school_id=current_user.school_id, day=day)
    return DashboardOut.model_validate(snapshot)


@router.get("/principal-alerts", response_model=list[AlertOut])
def principal_alerts(
    unacknowledged_only: bool = False,
    severity: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(require_roles(*PRINCIPAL_ROLES)),
):
    rows = services.list_alerts(
        db,
        school_id=current_user.school_id,
        unacknowledged_only=unacknowledged_only,
        severity=severity,
        limit=limit,
    )
    return [AlertOut.model_validate(a) for a in rows]


@router.post("/acknowledge-alert", response_model=AlertActionResponse)
def acknowledge_alert(
    payload: AcknowledgeAlertRequest,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    with _domain_errors():
        alert = services.acknowledge_alert(
            db,
            school_id=current_user.school_id,
            alert_id=payload.alert_id,
            user_id=current_user.user_id,
            action_taken=payload.action_taken,
        )
    return AlertActionResponse(alert=AlertOut.model_validate(alert))


@router.post("/resolve-alert", response_model=AlertActionResponse)
def resolve_alert(
    payload: ResolveAlertRequest,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    with _domain_errors():
        alert = services.resolve_alert(db, school_id=current_user.school_id, alert_id=payload.alert_id)
    return AlertActionResponse(alert=AlertOut.model_validate(alert))


@router.post("/generate-mobile-link", response_model=MobileLinkResponse, status_code=status.HTTP_201_CREATED)
def generate_mobile_link(
    payload: MobileLinkRequest,
    request: Request,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    with _domain_errors():
        session = services.generate_mobile_link(
            db,
            school_id=current_user.school_id,
            teacher_id=payload.teacher_id,
            base_url=str(request.base_url),
        )
    return MobileLinkResponse(
        mobile_link=session.mobile_link,
        session_id=session.id,
        link_expires_at=session.link_expires_at,
    )


@router.get("/sessions", response_model=list[SessionOut])
def list_sessions(
    teacher_id: int | None = None,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows = services.list_sessions(db, school_id=current_user.school_id, teacher_id=teacher_id)
    return [SessionOut.model_validate(s) for s in rows]


@router.post("/sessions/expire", response_model=ExpireSessionsResponse)
def expire_sessions(
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    with _domain_errors():
        count = services.expire_sessions(db, school_id=current_user.school_id)
    return ExpireSessionsResponse(expired=count)


@router.post("/sessions/{session_id}/close", response_model=SessionOut)
def close_session(
    session_id: int,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    with _domain_errors():
        session = services.close_session(db, school_id=current_user.school_id, session_id=session_id)
    return SessionOut.model_validate(session)


@router.get("/config", response_model=AttendanceConfig)
def get_config(
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    return AttendanceConfig(**services.get_attendance_config(db, school_id=current_user.school_id))


@router.post("/config", response_model=SuccessResponse)
def update_config(
    payload: AttendanceConfig,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(require_roles(*PRINCIPAL_ROLES)),
):
    with _domain_errors():
        services.update_attendance_config(db, school_id=current_user.school_id, values=payload.model_dump())
    return SuccessResponse(message="Attendance configuration updated")


@router.get("/whatsapp-config", response_model=WhatsAppConfigOut)
def get_whatsapp_config(
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(require_roles(*PRINCIPAL_ROLES)),
):
    return WhatsAppConfigOut(**services.get_whatsapp_config(db, school_id=current_user.school_id))


@router.put("/whatsapp-config", response_model=SuccessResponse)
def update_whatsapp_config(
    payload: WhatsAppConfigIn,
    db: Session = Depends(get_db_session),
    current_user: CurrentUser = Depends(require_roles(*PRINCIPAL_ROLES)),
):
    with _domain_errors():
        services.update_whatsapp_config(
            db,
            school_id=current_user.school_id,
            api_key=payload.whatsapp_api_key,
            phone_number_id=payload.whatsapp_phone_number_id,
            business_account_id=payload.whatsapp_business_account_id,
            enabled=payload.whatsapp_enabled,
        )
    return SuccessResponse(message="WhatsApp configuration updated successfully")
