from datetime import datetime

import pytest

from conftest import run

from codebridge.admin.settings import mask


def test_admin_routes_require_admin(client, student, tutor):
    for user in (student, tutor):
        assert client.get("/admin/users", headers=user["headers"]).status_code == 403
        assert client.get("/admin/analytics/overview", headers=user["headers"]).status_code == 403


# ==================== USERS ====================

def test_list_users_with_filters(client, admin, student, tutor):
    everyone = client.get("/admin/users", headers=admin["headers"]).json()
    assert everyone["total"] == 3
    assert all("password_hash" not in u for u in everyone["data"])

    tutors = client.get("/admin/users", params={"role": "tutor"}, headers=admin["headers"]).json()
    assert [u["user_id"] for u in tutors["data"]] == [tutor["user_id"]]

    found = client.get("/admin/users", params={"search": student["email"].upper()}, headers=admin["headers"]).json()
    assert [u["user_id"] for u in found["data"]] == [student["user_id"]]


def test_get_user_details(client, admin, tutor, make_course):
    make_course(tutor)
    data = client.get(f"/admin/users/{tutor['user_id']}", headers=admin["headers"]).json()["data"]
    assert data["courses_taught"] == 1
    assert data["recent_payments"] == []

    assert client.get("/admin/users/USR_MISSING", headers=admin["headers"]).status_code == 404


def test_create_user(client, db, admin):
    payload = {"name": "New Tutor", "email": "New.Tutor@Example.com", "password": "secret123", "role": "tutor"}
    response = client.post("/admin/users", json=payload, headers=admin["headers"])
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["email"] == "new.tutor@example.com"
    assert created["role"] == "tutor"
    assert "password_hash" not in created

    duplicate = client.post("/admin/users", json=payload, headers=admin["headers"])
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "User already exists with this email"

    log = run(db.admin_audit_logs.find_one({"action": "user.create"}))
    assert log["target_id"] == created["user_id"]
    assert log["admin_email"] == admin["email"]


def test_update_user_notifies(client, db, admin, make_user):
    pending = make_user("tutor")
    response = client.put(
        f"/admin/users/{pending['user_id']}", json={"verified_tutor": True}, headers=admin["headers"]
    )
    assert response.status_code == 200
    assert response.json()["data"]["verified_tutor"] is True

    notice = run(db.notifications.find_one({"user_id": pending["user_id"], "type": "account_update"}))
    assert "tutor verification granted" in notice["message"]

    empty = client.put(f"/admin/users/{pending['user_id']}", json={}, headers=admin["headers"])
    assert empty.status_code == 400


def test_admin_cannot_act_on_self(client, admin):
    url = f"/admin/users/{admin['user_id']}"
    assert client.put(url, json={"role": "student"}, headers=admin["headers"]).status_code == 400
    assert client.put(url, json={"is_active": False}, headers=admin["headers"]).status_code == 400
    assert client.put(f"{url}/toggle-status", headers=admin["headers"]).status_code == 400
    assert client.delete(url, headers=admin["headers"]).status_code == 400

    renamed = client.put(url, json={"name": "Head Admin"}, headers=admin["headers"])
    assert renamed.status_code == 200


def test_toggle_status_locks_user_out(client, admin, student):
    response = client.put(f"/admin/users/{student['user_id']}/toggle-status", headers=admin["headers"])
    assert response.json()["data"] == {"user_id": student["user_id"], "is_active": False}
    assert client.get("/auth/me", headers=student["headers"]).status_code == 401

    restored = client.put(f"/admin/users/{student['user_id']}/toggle-status", headers=admin["headers"])
    assert restored.json()["data"]["is_active"] is True


def test_delete_user_removes_enrollment(client, db, admin, tutor, student, make_course, enroll):
    course = make_course(tutor)
    enroll(course, student)

    response = client.delete(f"/admin/users/{student['user_id']}", headers=admin["headers"])
    assert response.status_code == 200
    assert run(db.users.find_one({"user_id": student["user_id"]})) is None
    stored = run(db.courses.find_one({"course_id": course["course_id"]}))
    assert stored["enrolled_students"] == []


# ==================== COURSES ====================

def test_course_status_filter_and_approval(client, admin, tutor, make_course):
    pending = make_course(tutor, approved=False)
    make_course(tutor, title="Already live")

    listed = client.get("/admin/courses", params={"status": "pending"}, headers=admin["headers"]).json()
    assert [c["course_id"] for c in listed["data"]] == [pending["course_id"]]

    approved = client.put(f"/admin/courses/{pending['course_id']}/approve", headers=admin["headers"])
    assert approved.status_code == 200
    assert client.get("/admin/courses", params={"status": "pending"}, headers=admin["headers"]).json()["total"] == 0


def test_assign_tutor(client, db, admin, tutor, make_user, make_course):
    course = make_course(tutor)
    successor = make_user("tutor", verified_tutor=True)
    unverified = make_user("tutor")
    url = f"/admin/courses/{course['course_id']}/assign-tutor"

    rejected = client.put(url, json={"tutor_id": unverified["user_id"]}, headers=admin["headers"])
    assert rejected.json()["message"] == "User is not a verified tutor"

    response = client.put(url, json={"tutor_id": successor["user_id"]}, headers=admin["headers"])
    assert response.status_code == 200

    stored = run(db.courses.find_one({"course_id": course["course_id"]}))
    assert stored["tutor_id"] == successor["user_id"]
    room = run(db.chat_rooms.find_one({"room_id": course["group_id"]}))
    members = [p["user_id"] for p in room["participants"]]
    assert successor["user_id"] in members
    assert tutor["user_id"] not in members


# ==================== FEED MODERATION ====================

@pytest.fixture
def post(client, student):
    response = client.post("/feeds", json={"content_text": "Questionable #content"}, headers=student["headers"])
    return response.json()["data"]


def test_hiding_requires_reason(client, admin, post):
    response = client.put(
        f"/admin/feeds/{post['post_id']}/flag", json={"is_hidden": True, "reason": "  "}, headers=admin["headers"]
    )
    assert response.status_code == 400
    assert response.json()["message"] == "A reason is required to hide a post"


def test_hide_and_restore_post(client, db, admin, student, post):
    url = f"/admin/feeds/{post['post_id']}/flag"

    hidden = client.put(url, json={"is_hidden": True, "reason": "Spam"}, headers=admin["headers"]).json()
    assert hidden["changed"] is True
    again = client.put(url, json={"is_hidden": True, "reason": "Spam"}, headers=admin["headers"]).json()
    assert again["changed"] is False

    stored = run(db.posts.find_one({"post_id": post["post_id"]}))
    assert stored["is_hidden"] is True
    assert stored["moderation_reason"] == "Spam"
    notice = run(db.notifications.find_one({"user_id": student["user_id"], "type": "post_moderated"}))
    assert notice["metadata"]["reason"] == "Spam"

    moderated = client.get("/admin/feeds", params={"hidden_only": True}, headers=admin["headers"]).json()
    assert [p["post_id"] for p in moderated["data"]] == [post["post_id"]]

    restored = client.put(url, json={"is_hidden": False}, headers=admin["headers"]).json()
    assert restored["changed"] is True
    assert run(db.posts.find_one({"post_id": post["post_id"]}))["moderation_reason"] is None

    actions = [log["action"] for log in run(db.admin_audit_logs.find({"target_id": post["post_id"]}).to_list(None))]
    assert sorted(actions) == ["post.hide", "post.unhide"]


# ==================== PAYMENTS ====================

def insert_payment(db, student, status="success", **extra):
    payment = {
        "payment_id": f"PAY_{status.upper()}",
        "reference": f"order_{status}",
        "user_id": student["user_id"],
        "course_id": "CRS_PAID",
        "amount": 5000.0,
        "currency": "NGN",
        "status": status,
        "gateway_payment_id": "pay_abc",
        "metadata": {"amount_minor": 500000},
        "created_at": datetime.utcnow(),
        **extra
    }
    run(db.payments.insert_one(dict(payment)))
    return payment


def test_refund_successful_payment(client, db, gateway, admin, student):
    payment = insert_payment(db, student)
    url = f"/admin/payments/{payment['payment_id']}/refund"

    response = client.post(url, json={"reason": "Course cancelled"}, headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "refunded"
    assert gateway.refunds == [{"id": "rfnd_1", "payment_id": "pay_abc", "amount": 500000}]

    stored = run(db.payments.find_one({"payment_id": payment["payment_id"]}))
    assert stored["refund_id"] == "rfnd_1"
    assert stored["refund_reason"] == "Course cancelled"

    again = client.post(url, json={}, headers=admin["headers"])
    assert again.json()["message"] == "Payment already refunded"


def test_refund_requires_successful_payment(client, db, admin, student):
    payment = insert_payment(db, student, status="pending")
    response = client.post(f"/admin/payments/{payment['payment_id']}/refund", json={}, headers=admin["headers"])
    assert response.status_code == 400
    assert response.json()["message"] == "Only successful payments can be refunded"

    assert client.post("/admin/payments/PAY_MISSING/refund", json={}, headers=admin["headers"]).status_code == 404


def test_list_payments_reports_revenue(client, db, admin, student):
    insert_payment(db, student)
    insert_payment(db, student, status="failed")

    listing = client.get("/admin/payments", headers=admin["headers"]).json()
    assert listing["total"] == 2
    assert listing["total_revenue"] == 5000.0

    failed = client.get("/admin/payments", params={"status": "failed"}, headers=admin["headers"]).json()
    assert [p["status"] for p in failed["data"]] == ["failed"]


# ==================== ANALYTICS ====================

def test_overview_counts(client, db, admin, student, tutor, make_user):
    make_user("tutor")
    insert_payment(db, student)

    overview = client.get("/admin/analytics/overview", headers=admin["headers"]).json()["data"]
    assert overview["users"]["total"] == 4
    assert overview["users"]["tutors"] == 2
    assert overview["users"]["pending_tutor_verification"] == 1
    assert overview["revenue"]["by_currency"] == {"NGN": 5000.0}
    assert overview["revenue"]["successful_payments"] == 1


def test_overview_is_cached_until_cleared(client, admin, make_user):
    first = client.get("/admin/analytics/overview", headers=admin["headers"]).json()["data"]
    make_user("student")

    cached = client.get("/admin/analytics/overview", headers=admin["headers"]).json()["data"]
    assert cached["users"]["total"] == first["users"]["total"]

    client.delete("/admin/analytics/cache", headers=admin["headers"])
    fresh = client.get("/admin/analytics/overview", headers=admin["headers"]).json()["data"]
    assert fresh["users"]["total"] == first["users"]["total"] + 1


def test_user_growth_chart(client, admin, student, tutor):
    chart = client.get("/admin/analytics/user-growth", params={"days": 7}, headers=admin["headers"]).json()["chart_data"]
    assert len(chart) == 7
    assert chart[-1]["date"] == datetime.utcnow().strftime("%Y-%m-%d")
    assert sum(day["total"] for day in chart) == 3
    assert sum(day["tutor"] for day in chart) == 1


def test_revenue_chart_buckets_by_day_and_currency(client, db, admin, student):
    insert_payment(db, student)
    insert_payment(db, student, payment_id="PAY_USD", reference="order_usd", amount=20.0, currency="USD")
    insert_payment(db, student, status="failed")
    insert_payment(db, student, payment_id="PAY_OLD", reference="order_old", created_at=datetime(2020, 1, 1))

    data = client.get("/admin/analytics/revenue", params={"days": 7}, headers=admin["headers"]).json()["data"]
    assert len(data["daily"]) == 7
    today = data["daily"][-1]
    assert today["date"] == datetime.utcnow().strftime("%Y-%m-%d")
    assert today["payments"] == 2
    assert today["revenue"] == 5020.0
    assert sum(day["payments"] for day in data["daily"]) == 2
    assert data["by_currency"] == {"NGN": 5000.0, "USD": 20.0}
    assert data["total"] == 5020.0


def test_engagement_totals_and_top_courses(client, db, admin, student, tutor, make_course, enroll):
    quiet = make_course(tutor, title="Rust Basics")
    popular = make_course(tutor, title="Go Basics")
    enroll(popular, student)

    now = datetime.utcnow()
    run(db.posts.insert_many([
        {"post_id": "POST_1", "user_id": student["user_id"], "likes": ["a", "b"], "comments": [{"text": "hi"}], "created_at": now},
        {"post_id": "POST_2", "user_id": tutor["user_id"], "created_at": now},
        {"post_id": "POST_OLD", "user_id": tutor["user_id"], "likes": ["c"], "created_at": datetime(2020, 1, 1)},
    ]))

    data = client.get("/admin/analytics/engagement", params={"days": 7}, headers=admin["headers"]).json()["data"]
    assert (data["posts"], data["comments"], data["likes"]) == (2, 1, 2)
    assert data["top_courses"][0]["course_id"] == popular["course_id"]
    assert data["top_courses"][0]["enrollments"] == 1
    assert quiet["course_id"] in [c["course_id"] for c in data["top_courses"]]
    assert "_id" not in data["top_courses"][0]


# ==================== SETTINGS & AUDIT ====================

def test_settings_are_masked_and_survive_round_trip(client, db, admin):
    secret = "supersecret1234"
    response = client.put(
        "/admin/settings",
        json={"payments": {"key_id": "rzp_live_1", "key_secret": secret}},
        headers=admin["headers"]
    )
    assert response.status_code == 200
    masked = response.json()["data"]["payments"]
    assert masked == {"key_id": "rzp_live_1", "key_secret": mask(secret)}
    assert masked["key_secret"].endswith("1234")

    client.put(
        "/admin/settings",
        json={"payments": {"key_id": "rzp_live_2", "key_secret": masked["key_secret"]}},
        headers=admin["headers"]
    )
    stored = run(db.platform_settings.find_one({"key": "integrations"}))
    assert stored["payments"] == {"key_id": "rzp_live_2", "key_secret": secret}
    assert stored["updated_by"] == admin["user_id"]

    fetched = client.get("/admin/settings", headers=admin["headers"]).json()["data"]
    assert fetched["payments"]["key_secret"] == mask(secret)


def test_upload_settings_round_trip(client, db, admin):
    response = client.put(
        "/admin/settings",
        json={"uploads": {
            "cloud_name": "codebridge",
            "api_secret": "cloudsecret9876",
            "max_file_size_mb": 10,
            "allowed_types": ["PDF", " zip ", "pdf"]
        }},
        headers=admin["headers"]
    )
    assert response.status_code == 200
    uploads = response.json()["data"]["uploads"]
    assert uploads["api_secret"] == mask("cloudsecret9876")
    assert uploads["max_file_size_mb"] == 10
    assert uploads["allowed_types"] == ["pdf", "zip"]

    fetched = client.get("/admin/settings", headers=admin["headers"]).json()["data"]["uploads"]
    assert fetched == uploads

    client.put("/admin/settings", json={"uploads": {**fetched, "max_file_size_mb": 25}}, headers=admin["headers"])
    stored = run(db.platform_settings.find_one({"key": "integrations"}))["uploads"]
    assert stored["api_secret"] == "cloudsecret9876"
    assert stored["max_file_size_mb"] == 25

    invalid = client.put("/admin/settings", json={"uploads": {"max_file_size_mb": 0}}, headers=admin["headers"])
    assert invalid.status_code == 400


def test_mask():
    assert mask("abcd") == "****"
    assert mask("abcdef") == "**cdef"
    assert mask(None) is None


def test_audit_log_filters(client, admin, student):
    client.put(f"/admin/users/{student['user_id']}/toggle-status", headers=admin["headers"])
    client.put("/admin/settings", json={"ai": {"pre_grading_enabled": False}}, headers=admin["headers"])

    logs = client.get("/admin/audit-logs", headers=admin["headers"]).json()
    assert logs["count"] == 2

    settings_logs = client.get(
        "/admin/audit-logs", params={"action": "settings.update"}, headers=admin["headers"]
    ).json()["data"]
    assert len(settings_logs) == 1
    assert settings_logs[0]["details"] == {"sections": ["ai"]}
    assert settings_logs[0]["admin_id"] == admin["user_id"]
