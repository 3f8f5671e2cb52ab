import smtplib

import pytest

from conftest import run

from codebridge.notifications import mailer
from codebridge.notifications.service import NotificationType, notify, notify_many


@pytest.fixture
def inbox(db, student):
    for i in range(3):
        run(notify(db, student["user_id"], NotificationType.SYSTEM, title=f"Notice {i}", message="Hello"))
    return student


async def test_notify_many_deduplicates_recipients(db):
    created = await notify_many(db, ["USR_A", "USR_B", "USR_A"], NotificationType.CLASS_SCHEDULED, "Class", "Soon")
    assert [n["user_id"] for n in created] == ["USR_A", "USR_B"]
    assert await db.notifications.count_documents({}) == 2


async def test_notify_many_with_no_recipients(db):
    assert await notify_many(db, [], NotificationType.SYSTEM, "Nobody", "Home") == []


async def test_notification_defaults(db):
    notification = await notify(db, "USR_A", NotificationType.PAYMENT, "Paid", "Thanks", priority="high")
    assert notification["is_read"] is False
    assert notification["priority"] == "high"
    assert notification["type"] == "payment"
    assert notification["metadata"] == {}


def test_list_and_unread_count(client, inbox):
    listing = client.get("/notifications", headers=inbox["headers"]).json()
    assert listing["total"] == 3
    assert listing["unread_count"] == 3

    count = client.get("/notifications/unread-count", headers=inbox["headers"]).json()
    assert count["unread_count"] == 3


def test_mark_one_read(client, inbox, make_user):
    notification_id = client.get("/notifications", headers=inbox["headers"]).json()["data"][0]["notification_id"]

    stranger = make_user("student")
    denied = client.patch(f"/notifications/{notification_id}/read", headers=stranger["headers"])
    assert denied.status_code == 404

    ok = client.patch(f"/notifications/{notification_id}/read", headers=inbox["headers"])
    assert ok.status_code == 200

    unread = client.get("/notifications", params={"unread_only": True}, headers=inbox["headers"]).json()
    assert unread["total"] == 2


def test_mark_all_read(client, inbox):
    response = client.patch("/notifications/read-all", headers=inbox["headers"])
    assert response.json()["modified"] == 3
    assert client.get("/notifications/unread-count", headers=inbox["headers"]).json()["unread_count"] == 0

    again = client.patch("/notifications/read-all", headers=inbox["headers"])
    assert again.json()["modified"] == 0


def test_delete_notification(client, db, inbox):
    notification_id = client.get("/notifications", headers=inbox["headers"]).json()["data"][0]["notification_id"]
    response = client.delete(f"/notifications/{notification_id}", headers=inbox["headers"])
    assert response.status_code == 200
    assert run(db.notifications.count_documents({"user_id": inbox["user_id"]})) == 2

    missing = client.delete(f"/notifications/{notification_id}", headers=inbox["headers"])
    assert missing.status_code == 404


# ==================== EMAIL ====================

def body_of(message):
    return message.get_payload()[0].get_payload(decode=True).decode()


async def test_email_follows_notification_type(db, outbox, student):
    await notify(db, student["user_id"], NotificationType.PAYMENT, "Payment Successful", "Paid NGN 5,000.00",
                 action_url="/courses/CRS_1")
    await notify(db, student["user_id"], NotificationType.SYSTEM, "Maintenance", "Back soon")

    assert len(outbox.sent) == 1
    message = outbox.sent[0]
    assert message["To"] == student["email"]
    assert message["Subject"] == "Payment Successful"
    assert message["From"] == "CodeBridge <noreply@codebridge.dev>"
    assert "Paid NGN 5,000.00" in body_of(message)
    assert "/courses/CRS_1" in body_of(message)


async def test_class_scheduled_emails_each_recipient(db, outbox, make_user):
    users = [make_user("student") for _ in range(2)]
    await notify_many(db, [u["user_id"] for u in users], NotificationType.CLASS_SCHEDULED, "New class", "Tomorrow 10:00")
    assert sorted(m["To"] for m in outbox.sent) == sorted(u["email"] for u in users)


def test_opted_out_user_gets_no_email(client, db, outbox, student):
    response = client.put("/auth/settings", json={"email_notifications": False}, headers=student["headers"])
    assert response.json()["settings"]["email_notifications"] is False

    run(notify(db, student["user_id"], NotificationType.ASSIGNMENT_GRADED, "Graded", "You scored 90%"))
    assert outbox.sent == []
    assert run(db.notifications.count_documents({"user_id": student["user_id"]})) == 1


def test_registration_sends_welcome_email(client, outbox):
    response = client.post("/auth/register", json={
        "name": "Ada", "email": "Ada@Example.com", "password": "password123", "role": "student"
    })
    assert response.status_code == 201
    assert [m["To"] for m in outbox.sent] == ["ada@example.com"]
    assert "Hi Ada, your student account is ready." in body_of(outbox.sent[0])


async def test_smtp_failure_does_not_break_notify(db, outbox, student, caplog):
    outbox.error = smtplib.SMTPServerDisconnected("Connection unexpectedly closed")
    notification = await notify(db, student["user_id"], NotificationType.PAYMENT, "Refund", "Refunded")
    assert notification["type"] == "payment"
    assert await db.notifications.count_documents({}) == 1
    assert "Failed to send email" in caplog.text


async def test_nothing_sent_without_smtp_host(db, monkeypatch, student):
    monkeypatch.setattr(mailer, "sender", mailer.EmailSender(host=None))
    assert await mailer.email_users(db, [student["user_id"]], "Hello", "World") == 0
    assert await mailer.send_email(student["email"], "Hello", "World") is False
