from datetime import date

import main
from conftest import FailingWrites
from attendance_stats import month_window


def create_class(client, headers, **overrides):
    payload = {"className": "Math 9", "subject": "Math", "feePerSession": 500000}
    payload.update(overrides)
    r = client.post("/classes", json=payload, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["class"]


def add_student(client, headers, class_id, email):
    r = client.post(f"/classes/{class_id}/students", json={"email": email}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["student"]


def test_root_is_public(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["database"] == "file"
    assert "X-Process-Time" in r.headers


def test_requires_token(client):
    assert client.get("/classes").status_code in (401, 403)


def test_rejects_bad_token(client):
    r = client.get("/classes", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_create_and_list_classes(client, auth_headers):
    cls = create_class(client, auth_headers)

    assert cls["teacherId"] == "teacher-1"
    assert cls["teacherName"] == "Teacher One"

    r = client.get("/classes", headers=auth_headers)
    assert [c["id"] for c in r.json()["classes"]] == [cls["id"]]

    r = client.get("/classes", params={"search": "physics"}, headers=auth_headers)
    assert r.json()["classes"] == []


def test_create_class_rejects_non_positive_fee(client, auth_headers):
    r = client.post("/classes", json={"className": "Math", "subject": "Math", "feePerSession": 0}, headers=auth_headers)
    assert r.status_code == 400


def test_teacher_name_comes_from_user_profile(client, store, auth_headers):
    store.set("users", "teacher-1", {"email": "teacher1@gmail.com", "name": "Co Lan"})
    assert create_class(client, auth_headers)["teacherName"] == "Co Lan"


def test_other_teacher_cannot_touch_class(client, auth_headers, other_headers):
    cls = create_class(client, auth_headers)

    assert client.get(f"/classes/{cls['id']}", headers=other_headers).status_code == 404
    assert client.delete(f"/classes/{cls['id']}", headers=other_headers).status_code == 404
    assert client.post(f"/classes/{cls['id']}/students", json={"email": "x@gmail.com"}, headers=other_headers).status_code == 404
    assert client.get(f"/classes/{cls['id']}", headers=auth_headers).status_code == 200


def test_update_toggle_and_delete_class(client, auth_headers):
    cls = create_class(client, auth_headers)

    r = client.put(f"/classes/{cls['id']}", json={"feePerSession": 450000}, headers=auth_headers)
    assert r.json()["class"]["feePerSession"] == 450000

    r = client.put(f"/classes/{cls['id']}", json={"feePerSession": -1}, headers=auth_headers)
    assert r.status_code == 400

    r = client.post(f"/classes/{cls['id']}/toggle-active", headers=auth_headers)
    assert r.json()["class"]["isActive"] is False

    assert client.delete(f"/classes/{cls['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/classes/{cls['id']}", headers=auth_headers).status_code == 404


def test_student_lifecycle(client, auth_headers):
    cls = create_class(client, auth_headers)
    student = add_student(client, auth_headers, cls["id"], "an@gmail.com")
    assert student["studentId"] == "pending"

    r = client.post(f"/classes/{cls['id']}/students", json={"email": "an@gmail.com"}, headers=auth_headers)
    assert r.status_code == 400

    r = client.put(f"/students/{student['id']}", json={"studentName": "Nguyen An", "phoneNumber": "0909"}, headers=auth_headers)
    assert r.json()["student"]["studentName"] == "Nguyen An"

    r = client.post(f"/students/{student['id']}/toggle-status", headers=auth_headers)
    assert r.json()["student"]["status"] == "inactive"

    r = client.get(f"/classes/{cls['id']}/students", params={"search": "0909"}, headers=auth_headers)
    assert [s["id"] for s in r.json()["students"]] == [student["id"]]
    assert r.json()["class"]["totalStudents"] == 1

    assert client.delete(f"/students/{student['id']}", headers=auth_headers).status_code == 200
    r = client.get(f"/classes/{cls['id']}", headers=auth_headers)
    assert r.json()["class"]["totalStudents"] == 0


def test_other_teacher_cannot_edit_student(client, auth_headers, other_headers):
    cls = create_class(client, auth_headers)
    student = add_student(client, auth_headers, cls["id"], "an@gmail.com")

    r = client.delete(f"/students/{student['id']}", headers=other_headers)
    assert r.status_code == 404
    assert client.get("/students", headers=other_headers).json()["students"] == []


def test_save_attendance_overwrites_previous_save(client, auth_headers):
    cls = create_class(client, auth_headers)
    s1 = add_student(client, auth_headers, cls["id"], "an@gmail.com")
    s2 = add_student(client, auth_headers, cls["id"], "binh@gmail.com")
    s3 = add_student(client, auth_headers, cls["id"], "chi@gmail.com")
    url = f"/attendance/{cls['id']}/2024-11-04"

    r = client.put(url, json={"markAllPresent": True}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["counts"]["present"] == 3

    r = client.put(url, json={"marks": {
        s1["id"]: {"status": "present"},
        s2["id"]: {"status": "absent"},
        s3["id"]: {"status": None},
    }}, headers=auth_headers)
    assert r.status_code == 200

    r = client.get(url, headers=auth_headers)
    records = r.json()["records"]
    assert len(records) == 2
    assert {rec["studentId"]: rec["status"] for rec in records} == {s1["id"]: "present", s2["id"]: "absent"}
    assert r.json()["sheet"]["marks"][s3["id"]] is None


def test_save_attendance_validates_input(client, auth_headers):
    cls = create_class(client, auth_headers)

    r = client.put(f"/attendance/{cls['id']}/04-11-2024", json={}, headers=auth_headers)
    assert r.status_code == 400

    r = client.put(f"/attendance/{cls['id']}/2024-11-04", json={"marks": {"e1": {"status": "sick"}}}, headers=auth_headers)
    assert r.status_code == 422


def test_failed_attendance_save_reports_error(client, auth_headers, tmp_path, monkeypatch):
    cls = create_class(client, auth_headers)
    failing = FailingWrites(base_dir=main.db.base_dir)
    monkeypatch.setattr(main, "db", failing)

    r = client.put(f"/attendance/{cls['id']}/2024-11-04", json={"markAllPresent": True}, headers=auth_headers)

    assert r.status_code == 500
    assert r.json()["detail"] == "Failed to save attendance"


def test_save_attendance_rejects_students_outside_the_class(client, store, auth_headers, other_headers):
    cls = create_class(client, auth_headers)
    mine = add_student(client, auth_headers, cls["id"], "an@gmail.com")
    theirs_cls = create_class(client, other_headers, className="Physics", subject="Physics")
    theirs = add_student(client, other_headers, theirs_cls["id"], "binh@gmail.com")
    url = f"/attendance/{cls['id']}/2024-11-04"

    for stranger in (theirs["id"], "made-up-id"):
        r = client.put(url, json={"marks": {
            mine["id"]: {"status": "present"},
            stranger: {"status": "late"},
        }}, headers=auth_headers)
        assert r.status_code == 400

    assert store.get_attendance_for_date(cls["id"], "2024-11-04") == []


def test_mark_all_present_never_clears_the_day(client, auth_headers):
    cls = create_class(client, auth_headers)
    s1 = add_student(client, auth_headers, cls["id"], "an@gmail.com")
    s2 = add_student(client, auth_headers, cls["id"], "binh@gmail.com")
    url = f"/attendance/{cls['id']}/2024-11-04"

    r = client.put(url, json={
        "marks": {
            s1["id"]: {"status": "present", "note": "early"},
            s2["id"]: {"status": "present"},
        },
        "markAllPresent": True,
    }, headers=auth_headers)

    assert r.status_code == 200
    assert r.json()["counts"]["present"] == 2

    records = {rec["studentId"]: rec for rec in client.get(url, headers=auth_headers).json()["records"]}
    assert {sid: rec["status"] for sid, rec in records.items()} == {s1["id"]: "present", s2["id"]: "present"}
    assert records[s1["id"]]["note"] == "early"


def test_report_fee_totals(client, auth_headers):
    cls = create_class(client, auth_headers)
    student = add_student(client, auth_headers, cls["id"], "an@gmail.com")
    sid = student["id"]

    days = [
        ("2024-11-01", {"status": "present"}),
        ("2024-11-02", {"status": "late"}),
        ("2024-11-03", {"status": "absent"}),
        ("2024-11-04", {"status": "excused"}),
        ("2024-11-05", {"status": "makeup", "fee": 300000}),
    ]
    for day, mark in days:
        r = client.put(f"/attendance/{cls['id']}/{day}", json={"marks": {sid: mark}}, headers=auth_headers)
        assert r.status_code == 200

    r = client.get("/attendance/report", params={"dateFrom": "2024-11-01", "dateTo": "2024-11-30"}, headers=auth_headers)
    report = r.json()

    stats = report["studentStats"][cls["id"]][sid]
    assert stats["totalFee"] == 1800000
    assert [stats[k] for k in ("present", "late", "absent", "excused", "makeup")] == [1, 1, 1, 1, 1]
    assert report["summary"]["totalFee"] == 1800000
    assert report["classTotals"][cls["id"]]["totalFee"] == 1800000
    assert report["monthly"]["2024-11"]["totalRecords"] == 5
    assert report["studentNames"][sid] == "an"

    r = client.get(f"/attendance/students/{sid}/fees", headers=auth_headers)
    assert r.json()["totalFee"] == 1800000
    assert r.json()["records"]["2024-11-04"]["fee"] == 0


def test_report_is_isolated_per_teacher(client, auth_headers, other_headers):
    mine = create_class(client, auth_headers)
    theirs = create_class(client, other_headers, className="Physics", subject="Physics")
    s_mine = add_student(client, auth_headers, mine["id"], "an@gmail.com")
    s_theirs = add_student(client, other_headers, theirs["id"], "binh@gmail.com")

    client.put(f"/attendance/{mine['id']}/2024-11-04", json={"marks": {s_mine["id"]: {"status": "present"}}}, headers=auth_headers)
    client.put(f"/attendance/{theirs['id']}/2024-11-04", json={"marks": {s_theirs["id"]: {"status": "present"}}}, headers=other_headers)

    report = client.get("/attendance/report", params={"classId": theirs["id"]}, headers=auth_headers).json()
    assert report["summary"]["totalRecords"] == 0

    records = client.get("/attendance", headers=auth_headers).json()["records"]
    assert [r["classId"] for r in records] == [mine["id"]]

    assert client.get(f"/attendance/{theirs['id']}/2024-11-04", headers=auth_headers).status_code == 404


def test_attendance_filter_rejects_unknown_status(client, auth_headers):
    assert client.get("/attendance", params={"status": "sick"}, headers=auth_headers).status_code == 400
    assert client.get("/attendance", params={"status": "all"}, headers=auth_headers).status_code == 200


def test_attendance_filter_rejects_malformed_dates(client, auth_headers):
    r = client.get("/attendance", params={"dateFrom": "2024/11/01"}, headers=auth_headers)
    assert r.status_code == 400
    r = client.get("/attendance/report", params={"dateTo": "Nov 2024"}, headers=auth_headers)
    assert r.status_code == 400


def test_payment_toggle_round_trip(client, auth_headers):
    cls = create_class(client, auth_headers)
    sid = add_student(client, auth_headers, cls["id"], "an@gmail.com")["id"]
    body = {"studentId": sid, "classId": cls["id"], "month": "2024-11"}

    r = client.get("/payments", params={"dateFrom": "2024-11-01", "dateTo": "2024-11-30"}, headers=auth_headers)
    assert r.json() == {"months": ["2024-11"], "statuses": {}}

    assert client.post("/payments/toggle", json=body, headers=auth_headers).json()["status"] == "paid"
    r = client.get("/payments", params={"dateFrom": "2024-11-01", "dateTo": "2024-11-30"}, headers=auth_headers)
    assert r.json()["statuses"] == {f"{sid}_{cls['id']}_2024-11": "paid"}

    assert client.post("/payments/toggle", json=body, headers=auth_headers).json()["status"] == "unpaid"


def test_payment_toggle_rejects_bad_month_and_foreign_class(client, auth_headers, other_headers):
    cls = create_class(client, auth_headers)
    sid = add_student(client, auth_headers, cls["id"], "an@gmail.com")["id"]

    r = client.post("/payments/toggle", json={"studentId": sid, "classId": cls["id"], "month": "2024-13"}, headers=auth_headers)
    assert r.status_code == 422

    r = client.post("/payments/toggle", json={"studentId": sid, "classId": cls["id"], "month": "2024-11"}, headers=other_headers)
    assert r.status_code == 404


def test_payment_toggle_requires_student_of_the_class(client, store, auth_headers):
    cls = create_class(client, auth_headers)
    other = create_class(client, auth_headers, className="IELTS", subject="English")
    sid = add_student(client, auth_headers, other["id"], "an@gmail.com")["id"]

    r = client.post("/payments/toggle", json={"studentId": "nobody", "classId": cls["id"], "month": "2024-11"}, headers=auth_headers)
    assert r.status_code == 404

    r = client.post("/payments/toggle", json={"studentId": sid, "classId": cls["id"], "month": "2024-11"}, headers=auth_headers)
    assert r.status_code == 404

    r = client.post("/payments/toggle-window", json={"studentId": "nobody", "classId": cls["id"]}, headers=auth_headers)
    assert r.status_code == 404

    assert store.count("paymentStatus") == 0


def test_failed_payment_toggle_reports_error(client, auth_headers, monkeypatch):
    cls = create_class(client, auth_headers)
    sid = add_student(client, auth_headers, cls["id"], "an@gmail.com")["id"]
    monkeypatch.setattr(main, "db", FailingWrites(base_dir=main.db.base_dir))

    r = client.post("/payments/toggle", json={"studentId": sid, "classId": cls["id"], "month": "2024-11"}, headers=auth_headers)

    assert r.status_code == 500
    assert r.json()["detail"] == "Failed to update payment status"


def test_payment_window_toggle_uses_first_month_outside_today(client, auth_headers):
    cls = create_class(client, auth_headers)
    sid = add_student(client, auth_headers, cls["id"], "an@gmail.com")["id"]

    r = client.post("/payments/toggle-window", json={
        "studentId": sid,
        "classId": cls["id"],
        "dateFrom": "2001-01-15",
        "dateTo": "2001-03-02",
    }, headers=auth_headers)

    assert r.json() == {"success": True, "month": "2001-01", "status": "paid"}


def test_payment_window_defaults_to_current_month(client, auth_headers):
    cls = create_class(client, auth_headers)
    sid = add_student(client, auth_headers, cls["id"], "an@gmail.com")["id"]
    current = date.today().strftime("%Y-%m")

    r = client.post("/payments/toggle-window", json={"studentId": sid, "classId": cls["id"]}, headers=auth_headers)
    assert r.json()["month"] == current

    r = client.get("/payments", headers=auth_headers)
    assert r.json()["months"] == [current]


def test_payment_window_with_one_bound_is_empty(client, store, auth_headers):
    cls = create_class(client, auth_headers)
    sid = add_student(client, auth_headers, cls["id"], "an@gmail.com")["id"]

    r = client.post("/payments/toggle-window", json={"studentId": sid, "classId": cls["id"], "dateFrom": "2024-11-01"}, headers=auth_headers)
    assert r.status_code == 400
    assert store.count("paymentStatus") == 0

    r = client.get("/payments", params={"dateTo": "2024-11-30"}, headers=auth_headers)
    assert r.json() == {"months": [], "statuses": {}}


def test_month_helpers(client, auth_headers):
    r = client.get("/months", params={"dateFrom": "2024-11-15", "dateTo": "2025-02-01"}, headers=auth_headers)
    assert r.json()["months"] == ["2024-11", "2024-12", "2025-01", "2025-02"]

    r = client.get("/months/window", params={"anchor": "2025-01-10", "direction": "prev"}, headers=auth_headers)
    assert r.json() == {"dateFrom": "2024-12-01", "dateTo": "2024-12-31"}

    r = client.get("/months/window", headers=auth_headers)
    first, last = month_window(date.today())
    assert r.json() == {"dateFrom": first, "dateTo": last}

    r = client.get("/months/window", params={"direction": "up"}, headers=auth_headers)
    assert r.status_code == 400


def test_stats(client, auth_headers):
    create_class(client, auth_headers)
    assert client.get("/stats", headers=auth_headers).json()["total_classes"] == 1
