import asyncio
import concurrent.futures
import itertools
import os
from datetime import datetime, timedelta

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from codebridge.admin import analytics
from codebridge.ai.client import get_ai_client
from codebridge.auth.router import new_user
from codebridge.core import security
from codebridge.core.database import db_manager
from codebridge.core.errors import ZoomError
from codebridge.core.utils import serialize_user
from codebridge.main import app
from codebridge.notifications import mailer
from codebridge.payments.gateway import RazorpayGateway, get_payment_gateway
from codebridge.realtime.manager import manager
from codebridge.zoom.client import get_zoom_client

# Minimum bcrypt cost keeps user fixtures fast
security.pwd_context.update(bcrypt__default_rounds=4)

PASSWORD = "password123"
_counter = itertools.count(1)


def run(coro):
    """Drive a database coroutine from a synchronous test"""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    # Called from inside an async test: drive it on a separate thread's loop
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ==================== FAKE INTEGRATIONS ====================

class FakeZoom:
    def __init__(self):
        self.created = []
        self.updated = []
        self.deleted = []
        self.fail = False

    async def create_meeting(self, topic, start_time, duration=60, agenda="", password=None, auto_recording="none"):
        if self.fail:
            raise ZoomError("Failed to create Zoom meeting")
        meeting_id = str(90000 + len(self.created))
        self.created.append({"meeting_id": meeting_id, "topic": topic, "start_time": start_time})
        return {
            "meeting_id": meeting_id,
            "topic": topic,
            "join_url": f"https://zoom.us/j/{meeting_id}",
            "start_url": f"https://zoom.us/s/{meeting_id}",
            "password": "abc123",
            "start_time": start_time.isoformat(),
            "duration": duration,
            "timezone": "UTC"
        }

    async def get_meeting(self, meeting_id):
        return {"id": meeting_id}

    async def update_meeting(self, meeting_id, updates):
        self.updated.append((meeting_id, updates))
        return None

    async def delete_meeting(self, meeting_id):
        self.deleted.append(meeting_id)


class FakeAI:
    def __init__(self):
        self.prompts = []
        self.answer = "Recursion is a function calling itself."
        self.grade = {
            "score": 80,
            "feedback": "Solid work",
            "strengths": ["clear structure"],
            "improvements": ["add tests"],
            "confidence": 85
        }

    async def generate(self, prompt, as_json=False):
        self.prompts.append(prompt)
        return self.answer

    async def generate_json(self, prompt):
        self.prompts.append(prompt)
        return dict(self.grade)


class FakeGateway(RazorpayGateway):
    """Real signature checks, canned order and refund calls"""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret="test_key_secret", webhook_secret="test_webhook_secret")
        self.orders = []
        self.refunds = []

    async def create_order(self, amount, currency, receipt, notes=None):
        order = {"id": f"order_{len(self.orders) + 1}", "amount": amount, "currency": currency, "receipt": receipt}
        self.orders.append(order)
        return order

    async def refund(self, payment_id, amount=None):
        refund = {"id": f"rfnd_{len(self.refunds) + 1}", "payment_id": payment_id, "amount": amount}
        self.refunds.append(refund)
        return refund


class FakeMailer(mailer.EmailSender):
    """Real message building, recorded instead of sent"""

    def __init__(self):
        super().__init__(host="smtp.test", username="mailer", password="secret")
        self.sent = []
        self.error = None

    def send(self, to_email, subject, text_body, html_body=None):
        if self.error:
            raise self.error
        self.sent.append(self.build_message(to_email, subject, text_body, html_body))


# ==================== FIXTURES ====================

@pytest.fixture
def db():
    database = AsyncMongoMockClient()["codebridge_test"]
    db_manager.client = None
    db_manager.db = database
    yield database
    db_manager.db = None


@pytest.fixture
def zoom():
    return FakeZoom()


@pytest.fixture
def ai():
    return FakeAI()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def outbox(monkeypatch):
    fake = FakeMailer()
    monkeypatch.setattr(mailer, "sender", fake)
    return fake


@pytest.fixture
def client(db, zoom, ai, gateway):
    app.dependency_overrides[get_zoom_client] = lambda: zoom
    app.dependency_overrides[get_ai_client] = lambda: ai
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    manager.rooms.clear()
    manager.connections.clear()
    run(analytics.cache.clear())


@pytest.fixture
def make_user(db):
    """Insert a user directly and hand back the document plus auth headers"""

    def _make(role="student", **extra):
        n = next(_counter)
        name = extra.pop("name", f"{role.title()} {n}")
        user = new_user(name, f"{role}{n}@example.com", PASSWORD, role, **extra)
        run(db.users.insert_one(dict(user)))
        token = security.create_access_token(user["user_id"], role)
        return {**serialize_user(user), "token": token, "headers": {"Authorization": f"Bearer {token}"}}

    return _make


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def tutor(make_user):
    return make_user("tutor", verified_tutor=True)


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_course(client, db):
    """Create a course through the API; published and approved unless told otherwise"""

    def _make(owner, approved=True, **fields):
        payload = {
            "title": "Python Fundamentals",
            "description": "Variables, loops and functions",
            "category": "programming",
            "is_published": True,
            **fields
        }
        response = client.post("/courses", json=payload, headers=owner["headers"])
        assert response.status_code == 201, response.text
        course_id = response.json()["course_id"]
        if approved:
            run(db.courses.update_one({"course_id": course_id}, {"$set": {"is_approved": True}}))
        return run(db.courses.find_one({"course_id": course_id}, {"_id": 0}))

    return _make


@pytest.fixture
def enroll(client):
    def _enroll(course, user):
        response = client.post(f"/courses/{course['course_id']}/enroll", headers=user["headers"])
        assert response.status_code == 200, response.text
        return response.json()

    return _enroll


def in_minutes(minutes: int) -> str:
    return (datetime.utcnow() + timedelta(minutes=minutes)).isoformat()
