import json

import pytest

from conftest import run

from codebridge.payments.gateway import RazorpayGateway, sign, to_minor_units


def test_to_minor_units():
    assert to_minor_units(5000) == 500000
    assert to_minor_units(19.99) == 1999


def test_payment_signature_verification():
    gateway = RazorpayGateway(key_id="key", key_secret="secret", webhook_secret="hook")
    signature = sign("secret", "order_1|pay_1")
    assert gateway.verify_payment_signature("order_1", "pay_1", signature)
    assert not gateway.verify_payment_signature("order_1", "pay_2", signature)
    assert not gateway.verify_payment_signature("order_1", "pay_1", "")


def test_webhook_signature_verification():
    gateway = RazorpayGateway(key_id="key", key_secret="secret", webhook_secret="hook")
    body = b'{"event": "payment.captured"}'
    assert gateway.verify_webhook_signature(body, sign("hook", body.decode()))
    assert not gateway.verify_webhook_signature(body, sign("secret", body.decode()))
    assert not gateway.verify_webhook_signature(body, None)


# ==================== CHECKOUT ====================

@pytest.fixture
def paid_course(tutor, make_course):
    return make_course(tutor, price=5000, currency="NGN")


def init_payment(client, user, course):
    response = client.post("/payments/init", json={"course_id": course["course_id"]}, headers=user["headers"])
    assert response.status_code == 200, response.text
    return response.json()["data"]


def test_init_creates_order_and_pending_payment(client, db, gateway, student, paid_course):
    data = init_payment(client, student, paid_course)
    assert data["amount"] == 500000
    assert data["key_id"] == "rzp_test_key"
    assert gateway.orders[0]["amount"] == 500000

    payment = run(db.payments.find_one({"reference": data["reference"]}))
    assert payment["status"] == "pending"
    assert payment["amount"] == 5000
    assert payment["metadata"]["amount_minor"] == 500000


def test_init_rejects_free_and_own_courses(client, tutor, student, make_course, paid_course):
    free = make_course(tutor)
    response = client.post("/payments/init", json={"course_id": free["course_id"]}, headers=student["headers"])
    assert response.json()["message"] == "This course is free, enroll directly"

    own = client.post("/payments/init", json={"course_id": paid_course["course_id"]}, headers=tutor["headers"])
    assert own.json()["message"] == "You cannot buy your own course"


def test_verify_with_valid_signature_enrolls(client, db, student, paid_course):
    data = init_payment(client, student, paid_course)
    payload = {
        "reference": data["reference"],
        "payment_id": "pay_123",
        "signature": sign("test_key_secret", f"{data['reference']}|pay_123")
    }

    response = client.post("/payments/verify", json=payload, headers=student["headers"])
    assert response.status_code == 200
    assert response.json()["already_verified"] is False

    payment = run(db.payments.find_one({"reference": data["reference"]}))
    assert payment["status"] == "success"
    assert payment["gateway_payment_id"] == "pay_123"
    course = run(db.courses.find_one({"course_id": paid_course["course_id"]}))
    assert [e["student_id"] for e in course["enrolled_students"]] == [student["user_id"]]

    again = client.post("/payments/verify", json=payload, headers=student["headers"])
    assert again.json()["already_verified"] is True


def test_verify_with_bad_signature_fails_payment(client, db, student, paid_course):
    data = init_payment(client, student, paid_course)
    response = client.post("/payments/verify", json={
        "reference": data["reference"],
        "payment_id": "pay_123",
        "signature": "forged"
    }, headers=student["headers"])
    assert response.status_code == 400

    payment = run(db.payments.find_one({"reference": data["reference"]}))
    assert payment["status"] == "failed"
    course = run(db.courses.find_one({"course_id": paid_course["course_id"]}))
    assert course["enrolled_students"] == []


def test_verify_only_own_payment(client, student, make_user, paid_course):
    data = init_payment(client, student, paid_course)
    other = make_user("student")
    response = client.post("/payments/verify", json={
        "reference": data["reference"],
        "payment_id": "pay_1",
        "signature": "x"
    }, headers=other["headers"])
    assert response.status_code == 404


# ==================== WEBHOOK ====================

def post_webhook(client, payload, secret="test_webhook_secret"):
    body = json.dumps(payload)
    return client.post(
        "/payments/webhook",
        content=body,
        headers={"x-razorpay-signature": sign(secret, body), "Content-Type": "application/json"}
    )


def captured_event(reference, amount):
    return {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_hook", "order_id": reference, "amount": amount}}}
    }


def test_webhook_rejects_bad_signature(client, student, paid_course):
    data = init_payment(client, student, paid_course)
    response = post_webhook(client, captured_event(data["reference"], 500000), secret="wrong")
    assert response.status_code == 400


def test_webhook_completes_payment_once(client, db, student, paid_course):
    data = init_payment(client, student, paid_course)

    first = post_webhook(client, captured_event(data["reference"], 500000))
    assert first.json() == {"success": True, "processed": True}
    second = post_webhook(client, captured_event(data["reference"], 500000))
    assert second.json() == {"success": True, "processed": False}

    payment = run(db.payments.find_one({"reference": data["reference"]}))
    assert payment["verified_via"] == "webhook"
    assert run(db.notifications.count_documents({"user_id": student["user_id"], "type": "payment"})) == 1


def test_webhook_amount_mismatch_ignored(client, db, student, paid_course):
    data = init_payment(client, student, paid_course)
    response = post_webhook(client, captured_event(data["reference"], 100))
    assert response.json()["processed"] is False
    assert run(db.payments.find_one({"reference": data["reference"]}))["status"] == "pending"


def test_webhook_failed_payment(client, db, student, paid_course):
    data = init_payment(client, student, paid_course)
    response = post_webhook(client, {
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"order_id": data["reference"], "error_description": "Card declined"}}}
    })
    assert response.json()["processed"] is True
    payment = run(db.payments.find_one({"reference": data["reference"]}))
    assert payment["status"] == "failed"
    assert payment["failure_reason"] == "Card declined"


def test_payment_history(client, student, paid_course):
    init_payment(client, student, paid_course)
    history = client.get("/payments/history", headers=student["headers"]).json()
    assert history["total"] == 1
    assert history["data"][0]["status"] == "pending"
