from conftest import auth


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["data"]["status"] == "ok"


def test_requires_token(client, world):
    res = client.get("/api/v1/daily-reports")
    assert res.status_code == 401


def test_inactive_user_is_rejected(client, world, session):
    u = world["w2"]
    u.status = "inactive"
    session.commit()
    res = client.get("/api/v1/me", headers=auth(u))
    assert res.status_code == 401


def test_me_capabilities(client, world):
    res = client.get(f"/api/v1/me/capabilities?site_id={world['s1'].id}", headers=auth(world["manager"]))
    body = res.get_json()["data"]
    assert body["allowed"] is True
    assert set(body["capabilities"]) == {"VIEW_OWN", "EDIT_OWN_DRAFT", "VIEW_SITE", "APPROVE_SITE"}

    res = client.get(f"/api/v1/me/capabilities?site_id={world['s1'].id}", headers=auth(world["w2"]))
    body = res.get_json()["data"]
    assert body["allowed"] is False
    assert body["reason"] == "NotAssigned"

    res = client.get("/api/v1/me/capabilities", headers=auth(world["w1"]))
    assert sorted(r["site_id"] for r in res.get_json()["data"]) == sorted([world["s1"].id, world["s2"].id])


def test_sites_listing_and_assignment_flow(client, world):
    res = client.get("/api/v1/sites", headers=auth(world["w2"]))
    assert [s["code"] for s in res.get_json()["data"]] == ["S2"]

    s1 = world["s1"].id
    body = {"user_id": world["outsider"].id, "local_role": "worker", "effective_date": "2024-03-01"}

    res = client.post(f"/api/v1/sites/{s1}/assignments", json=body, headers=auth(world["manager"]))
    assert res.status_code == 403
    assert res.get_json()["error"]["detail"]["reason"] == "InsufficientRole"

    res = client.post(f"/api/v1/sites/{s1}/assignments", json=body, headers=auth(world["admin"]))
    assert res.status_code == 201
    assert res.get_json()["data"]["is_current"] is True

    res = client.post(f"/api/v1/sites/{s1}/assignments", json=body, headers=auth(world["admin"]))
    assert res.status_code == 409
    assert res.get_json()["error"]["code"] == "ASSIGNMENT_OVERLAP"

    res = client.post(f"/api/v1/sites/{s1}/assignments/unassign",
                      json={"user_id": world["outsider"].id, "effective_date": "2024-04-01"},
                      headers=auth(world["admin"]))
    assert res.status_code == 200
    assert res.get_json()["data"]["end_date"] == "2024-04-01"

    res = client.get(f"/api/v1/sites/users/{world['outsider'].id}/assignment-history",
                     headers=auth(world["outsider"]))
    assert len(res.get_json()["data"]) == 1

    res = client.get(f"/api/v1/sites/users/{world['outsider'].id}/assignment-history",
                     headers=auth(world["w1"]))
    assert res.status_code == 403

    res = client.get(f"/api/v1/sites/assignments/audit?site_id={s1}", headers=auth(world["admin"]))
    assert [x["action"] for x in res.get_json()["data"]] == ["unassign", "assign"]


def test_site_members_listing(client, world):
    s1 = world["s1"].id
    res = client.get(f"/api/v1/sites/{s1}/assignments?active_on=2024-06-01", headers=auth(world["customer"]))
    assert res.status_code == 200
    assert res.get_json()["meta"]["total"] == 3

    res = client.get(f"/api/v1/sites/{s1}/assignments", headers=auth(world["w1"]))
    assert res.status_code == 403


def test_bad_date_is_422(client, world):
    res = client.post(f"/api/v1/sites/{world['s1'].id}/assignments",
                      json={"user_id": world["outsider"].id, "local_role": "worker", "effective_date": "soon"},
                      headers=auth(world["admin"]))
    assert res.status_code == 422


def test_report_lifecycle_over_http(client, world, events):
    w1, manager, s1 = world["w1"], world["manager"], world["s1"].id

    res = client.post("/api/v1/attendance", json={
        "site_id": s1, "work_date": "2024-03-04",
        "check_in": "2024-03-04T09:00", "check_out": "2024-03-04T17:42",
    }, headers=auth(w1))
    assert res.status_code == 201
    att = res.get_json()["data"]
    assert att["labor_hours"] == 1.0
    assert att["labor_hours_label"] == "1.0공수"

    res = client.post("/api/v1/daily-reports", json={
        "site_id": s1, "work_date": "2024-03-04", "work_content": "Slab pour",
    }, headers=auth(w1))
    assert res.status_code == 201
    rid = res.get_json()["data"]["id"]

    res = client.post(f"/api/v1/daily-reports/{rid}/submit", headers=auth(w1))
    assert res.status_code == 422
    assert res.get_json()["error"]["detail"]["missing"] == ["attendance"]

    res = client.patch(f"/api/v1/daily-reports/{rid}", json={"attendance_ids": [att["id"]]}, headers=auth(w1))
    assert res.status_code == 200
    assert res.get_json()["data"]["labor_hours_total"] == 1.0

    assert client.post(f"/api/v1/daily-reports/{rid}/submit", headers=auth(w1)).status_code == 200
    res = client.patch(f"/api/v1/daily-reports/{rid}", json={"issues": "x"}, headers=auth(w1))
    assert res.status_code == 409
    assert res.get_json()["error"]["code"] == "REPORT_IMMUTABLE"

    res = client.post(f"/api/v1/daily-reports/{rid}/approve", headers=auth(w1))
    assert res.status_code == 403

    res = client.post(f"/api/v1/daily-reports/{rid}/approve", headers=auth(manager))
    assert res.status_code == 200
    assert res.get_json()["data"]["status"] == "approved"

    res = client.get(f"/api/v1/daily-reports/{rid}/transitions", headers=auth(w1))
    assert [t["to_status"] for t in res.get_json()["data"]] == ["draft", "submitted", "approved"]
    assert [e["to_status"] for e in events] == ["draft", "submitted", "approved"]


def test_report_listing_over_http(client, world):
    w1, s1 = world["w1"], world["s1"].id
    client.post("/api/v1/daily-reports", json={"site_id": s1, "work_date": "2024-03-04"}, headers=auth(w1))

    res = client.get(f"/api/v1/daily-reports?site_id={s1}", headers=auth(world["customer"]))
    assert res.get_json()["meta"]["total"] == 1

    res = client.get(f"/api/v1/daily-reports?site_id={s1}", headers=auth(world["w2"]))
    assert res.status_code == 403
    assert res.get_json()["error"]["detail"]["reason"] == "NotAssigned"

    res = client.get("/api/v1/daily-reports/999", headers=auth(w1))
    assert res.status_code == 404


def test_attendance_summary_endpoints(client, world):
    w1, s1, s2 = world["w1"], world["s1"].id, world["s2"].id
    for site, ci, co in ((s1, "07:00", "11:00"), (s2, "12:00", "20:00")):
        client.post("/api/v1/attendance", json={
            "site_id": site, "work_date": "2024-03-04",
            "check_in": f"2024-03-04T{ci}", "check_out": f"2024-03-04T{co}",
        }, headers=auth(w1))

    res = client.get("/api/v1/attendance/summary?from=2024-03-01&to=2024-03-31", headers=auth(w1))
    data = res.get_json()["data"]
    assert data["total_labor_hours"] == 1.5
    assert data["work_days"] == 1

    res = client.get("/api/v1/attendance/daily-totals?from=2024-03-01&to=2024-03-31", headers=auth(w1))
    assert res.get_json()["data"][0]["total_labor_hours"] == 1.5

    res = client.get(f"/api/v1/attendance/summary?user_id={w1.id}&from=2024-03-01&to=2024-03-31",
                     headers=auth(world["manager"]))
    assert res.get_json()["data"]["total_labor_hours"] == 0.5

    res = client.get("/api/v1/attendance/monthly?month=2024-03", headers=auth(w1))
    assert res.get_json()["data"]["total_overtime_hours"] == 4.0

    res = client.get("/api/v1/attendance/payroll?month=2024-03&hourly_rate=100", headers=auth(w1))
    data = res.get_json()["data"]
    assert data["overtime_pay"] == 600.0
    assert data["regular_pay"] == 800.0

    res = client.get("/api/v1/attendance/summary?from=2024-03-01", headers=auth(w1))
    assert res.status_code == 422


def test_out_of_range_attendance_is_422(client, world):
    res = client.post("/api/v1/attendance", json={
        "site_id": world["s1"].id, "work_date": "2024-03-04",
        "check_in": "2024-03-04T05:00", "check_out": "2024-03-04T22:30",
    }, headers=auth(world["w1"]))
    assert res.status_code == 422
    assert res.get_json()["error"]["code"] == "OUT_OF_RANGE"


def test_punches_with_utc_offsets(client, world):
    w1, s1 = world["w1"], world["s1"].id
    res = client.post("/api/v1/attendance/check-in",
                      json={"site_id": s1, "at": "2024-03-04T08:00:00+09:00"}, headers=auth(w1))
    assert res.status_code == 201
    assert "+" not in res.get_json()["data"]["check_in"]

    res = client.post("/api/v1/attendance/check-out",
                      json={"site_id": s1, "at": "2024-03-04T16:00:00+09:00"}, headers=auth(w1))
    assert res.status_code == 200
    assert res.get_json()["data"]["labor_hours"] == 1.0

    # same instant pair written in two different offsets
    res = client.post("/api/v1/attendance", json={
        "site_id": world["s2"].id, "work_date": "2024-03-05",
        "check_in": "2024-03-05T00:00:00Z", "check_out": "2024-03-05T13:00:00+09:00",
    }, headers=auth(w1))
    assert res.status_code == 201
    assert res.get_json()["data"]["labor_hours"] == 0.5
