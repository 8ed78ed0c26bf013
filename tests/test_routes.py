from datetime import timedelta

from attendance_module.models import utcnow
from attendance_module.security import create_mobile_link_token

from conftest import SCHOOL_LAT, SCHOOL_LNG, RecordingDispatcher, north_of


def _check_in(client, headers, teacher_id, meters):
    lat, lng = north_of(SCHOOL_LAT, SCHOOL_LNG, meters)
    return client.post(
        "/api/attendance/record-gps",
        json={"teacher_id": teacher_id, "latitude": lat, "longitude": lng},
        headers=headers,
    )


def test_requires_bearer_token(client, teacher):
    response = client.post("/api/attendance/record-gps", json={"teacher_id": teacher.id})

    assert response.status_code == 401


def test_rejects_garbage_token(client):
    response = client.get("/api/attendance/gps-logs", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


def test_record_gps_in_range(client, auth_headers, teacher):
    response = _check_in(client, auth_headers(), teacher.id, 0)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["zone_status"] == "green"
    assert body["out_of_range"] is False
    assert body["alert_created"] is False
    assert body["alert_id"] is None
    assert body["check_in"]["teacher_id"] == teacher.id


def test_record_gps_out_of_range_creates_alert(client, auth_headers, teacher):
    body = _check_in(client, auth_headers(), teacher.id, 500).json()

    assert body["zone_status"] == "red"
    assert body["alert_created"] is True
    assert body["distance"] == 500.0

    alerts = client.get("/api/attendance/principal-alerts", headers=auth_headers(role="principal")).json()
    assert [a["id"] for a in alerts] == [body["alert_id"]]
    assert alerts[0]["severity"] == "high"


def test_missing_coordinates_is_bad_request(client, auth_headers, teacher):
    response = client.post(
        "/api/attendance/record-gps",
        json={"teacher_id": teacher.id, "latitude": SCHOOL_LAT},
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "longitude is required"


def test_non_numeric_coordinates_is_bad_request(client, auth_headers, teacher):
    response = client.post(
        "/api/attendance/record-gps",
        json={"teacher_id": teacher.id, "latitude": "north", "longitude": SCHOOL_LNG},
        headers=auth_headers(),
    )

    assert response.status_code == 400


def test_gps_logs_are_tenant_scoped(client, auth_headers, teacher, school):
    _check_in(client, auth_headers(), teacher.id, 0)
    _check_in(client, auth_headers(), teacher.id, 150)

    mine = client.get("/api/attendance/gps-logs", headers=auth_headers()).json()
    theirs = client.get("/api/attendance/gps-logs", headers=auth_headers(school_id=school.id + 1)).json()

    assert [log["zone_status"] for log in mine] == ["orange", "green"]
    assert theirs == []


def test_dashboard_is_principal_only(client, auth_headers):
    assert client.get("/api/attendance/principal-dashboard", headers=auth_headers()).status_code == 403
    assert client.get("/api/attendance/principal-dashboard", headers=auth_headers(role="super_admin")).status_code == 200


def test_dashboard_snapshot(client, auth_headers, teacher):
    _check_in(client, auth_headers(), teacher.id, 150)

    body = client.get(
        "/api/attendance/principal-dashboard",
        params={"date": utcnow().date().isoformat()},
        headers=auth_headers(role="principal"),
    ).json()

    assert body["total_teachers_expected"] == 1
    assert body["teachers_near_range"] == 1
    assert body["alerts_generated"] == 1
    assert body["critical_alerts"] == 0
    assert body["gps_heatmap_data"][0]["zone_status"] == "orange"


def test_dashboard_zero_state(client, auth_headers):
    body = client.get(
        "/api/attendance/principal-dashboard",
        params={"date": "2020-02-02"},
        headers=auth_headers(role="principal"),
    ).json()

    assert body["total_students_expected"] == 0
    assert body["classwise_data"] == []
    assert body["gps_heatmap_data"] == []


def test_acknowledge_and_resolve(client, auth_headers, teacher, principal):
    alert_id = _check_in(client, auth_headers(), teacher.id, 500).json()["alert_id"]
    headers = auth_headers(role="principal", user_id=principal.id)

    acked = client.post(
        "/api/attendance/acknowledge-alert",
        json={"alert_id": alert_id, "action_taken": "Spoke to teacher"},
        headers=headers,
    ).json()["alert"]
    assert acked["acknowledged"] is True
    assert acked["acknowledged_by"] == principal.id
    assert acked["action_taken"] == "Spoke to teacher"

    resolved = client.post("/api/attendance/resolve-alert", json={"alert_id": alert_id}, headers=headers).json()["alert"]
    assert resolved["resolved"] is True

    unacked = client.get(
        "/api/attendance/principal-alerts", params={"unacknowledged_only": True}, headers=headers
    ).json()
    assert unacked == []


def test_acknowledge_unknown_alert_is_404(client, auth_headers):
    response = client.post("/api/attendance/acknowledge-alert", json={"alert_id": 404}, headers=auth_headers())

    assert response.status_code == 404


def test_whatsapp_alert_method_reaches_dispatcher(client, auth_headers, teacher, principal, dispatcher):
    principal_headers = auth_headers(role="principal", user_id=principal.id)
    client.post("/api/attendance/config", json={"alert_method": "whatsapp"}, headers=principal_headers)

    body = _check_in(client, auth_headers(), teacher.id, 150).json()

    assert body["alert_created"] is True
    assert len(dispatcher.calls) == 1
    assert dispatcher.calls[0][1] == "principal"
    assert "orange zone" in dispatcher.calls[0][2]


def test_config_round_trip_changes_radius(client, auth_headers, teacher):
    principal_headers = auth_headers(role="principal")
    response = client.post("/api/attendance/config", json={"gps_radius": "200"}, headers=principal_headers)
    assert response.status_code == 200

    config = client.get("/api/attendance/config", headers=auth_headers()).json()
    assert config["gps_radius"] == "200"
    assert config["alert_method"] is None

    assert _check_in(client, auth_headers(), teacher.id, 150).json()["zone_status"] == "green"


def test_whatsapp_config_masks_key(client, auth_headers):
    headers = auth_headers(role="principal")
    client.put(
        "/api/attendance/whatsapp-config",
        json={"whatsapp_api_key": "EAAG-secret-9876", "whatsapp_phone_number_id": "555", "whatsapp_enabled": True},
        headers=headers,
    )
    # Echoing the masked key back must not overwrite the stored one.
    client.put(
        "/api/attendance/whatsapp-config",
        json={"whatsapp_api_key": "****9876", "whatsapp_phone_number_id": "556", "whatsapp_enabled": True},
        headers=headers,
    )

    config = client.get("/api/attendance/whatsapp-config", headers=headers).json()
    assert config == {
        "whatsapp_api_key": "****9876",
        "whatsapp_phone_number_id": "556",
        "whatsapp_business_account_id": None,
        "whatsapp_enabled": True,
    }


def test_mobile_link_flow(client, auth_headers, teacher, school):
    link = client.post(
        "/api/attendance/generate-mobile-link", json={"teacher_id": teacher.id}, headers=auth_headers()
    )
    assert link.status_code == 201
    body = link.json()
    token = body["mobile_link"].split("token=", 1)[1]

    lat, lng = north_of(SCHOOL_LAT, SCHOOL_LNG, 30)
    check_in = client.post(
        "/api/attendance/mobile/record-gps",
        params={"token": token},
        json={"latitude": lat, "longitude": lng},
    )
    assert check_in.status_code == 200
    assert check_in.json()["zone_status"] == "green"

    sessions = client.get("/api/attendance/sessions", params={"teacher_id": teacher.id}, headers=auth_headers()).json()
    assert sessions[0]["id"] == body["session_id"]
    assert sessions[0]["status"] == "active"
    assert sessions[0]["total_check_ins"] == 1

    closed = client.post(f"/api/attendance/sessions/{body['session_id']}/close", headers=auth_headers()).json()
    assert closed["status"] == "completed"


def test_mobile_record_rejects_access_tokens(client, auth_headers):
    access_token = auth_headers()["Authorization"].split(" ", 1)[1]

    response = client.post(
        "/api/attendance/mobile/record-gps",
        params={"token": access_token},
        json={"latitude": SCHOOL_LAT, "longitude": SCHOOL_LNG},
    )

    assert response.status_code == 401


def test_expire_sessions_endpoint(client, auth_headers, teacher, school, db):
    from attendance_module.models import GpsAttendanceSession

    token, _ = create_mobile_link_token(school.id, teacher.id)
    db.add(
        GpsAttendanceSession(
            school_id=school.id,
            teacher_id=teacher.id,
            status="pending",
            mobile_link=f"http://testserver/mobile-attendance?token={token}",
            link_expires_at=utcnow() - timedelta(minutes=1),
        )
    )
    db.commit()

    response = client.post("/api/attendance/sessions/expire", headers=auth_headers())

    assert response.json() == {"expired": 1}


def test_record_gps_succeeds_when_delivery_crashes(app, client, auth_headers, teacher, principal):
    app.state.notification_dispatcher = RecordingDispatcher(error=RuntimeError("gateway exploded"))
    client.post("/api/attendance/config", json={"alert_method": "whatsapp"}, headers=auth_headers(role="principal"))

    response = _check_in(client, auth_headers(), teacher.id, 500)

    assert response.status_code == 200
    assert response.json()["alert_created"] is True
