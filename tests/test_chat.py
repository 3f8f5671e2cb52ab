import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import PASSWORD, run

from codebridge.auth.router import new_user
from codebridge.core.security import create_access_token
from codebridge.notifications.service import NotificationType, notify
from codebridge.realtime.manager import manager
from codebridge.realtime.router import websocket_endpoint


def direct_room(client, user, other):
    response = client.post("/chat/rooms/direct", json={"participant_id": other["user_id"]}, headers=user["headers"])
    assert response.status_code == 200, response.text
    return response.json()


# ==================== REST ====================

def test_direct_room_created_once(client, student, make_user):
    other = make_user("student")
    first = direct_room(client, student, other)
    assert first["created"] is True
    assert first["data"]["type"] == "direct"

    second = direct_room(client, other, student)
    assert second["created"] is False
    assert second["data"]["room_id"] == first["data"]["room_id"]


def test_direct_room_validation(client, student):
    self_chat = client.post("/chat/rooms/direct", json={"participant_id": student["user_id"]}, headers=student["headers"])
    assert self_chat.status_code == 400

    missing = client.post("/chat/rooms/direct", json={"participant_id": "USR_MISSING"}, headers=student["headers"])
    assert missing.status_code == 404


def test_rooms_list_and_messages_require_membership(client, student, make_user):
    other = make_user("student")
    room = direct_room(client, student, other)["data"]

    rooms = client.get("/chat/rooms", headers=other["headers"]).json()
    assert [r["room_id"] for r in rooms["data"]] == [room["room_id"]]
    assert rooms["data"][0]["unread_count"] == 0

    outsider = make_user("student")
    denied = client.get(f"/chat/rooms/{room['room_id']}/messages", headers=outsider["headers"])
    assert denied.status_code == 403


# ==================== WEBSOCKET ====================

def test_websocket_rejects_missing_or_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws"):
            pass
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?token=garbage"):
            pass


def test_websocket_message_flow(client, db, student, make_user):
    other = make_user("student")
    room_id = direct_room(client, student, other)["data"]["room_id"]

    with client.websocket_connect(f"/ws?token={student['token']}") as ws_a, \
            client.websocket_connect("/ws", headers=other["headers"]) as ws_b:
        ws_a.send_json({"event": "joinRoom", "data": {"room_id": room_id}})
        joined = ws_a.receive_json()
        assert joined["event"] == "userJoined"
        assert joined["data"]["user_id"] == student["user_id"]

        ws_b.send_json({"event": "joinRoom", "data": {"room_id": room_id}})
        assert ws_b.receive_json()["data"]["user_id"] == other["user_id"]
        assert ws_a.receive_json()["data"]["user_id"] == other["user_id"]

        ws_a.send_json({"event": "sendMessage", "data": {"room_id": room_id, "message": "  hello  "}})
        sent = ws_a.receive_json()
        assert sent["event"] == "newMessage"
        assert sent["data"]["message"] == "hello"
        assert sent["data"]["sender"]["user_id"] == student["user_id"]

        received = ws_b.receive_json()
        assert received["event"] == "newMessage"
        ping = ws_b.receive_json()
        assert ping["event"] == "newNotification"
        assert ping["data"]["metadata"]["room_id"] == room_id

        ws_b.send_json({"event": "typing", "data": {"room_id": room_id}})
        typing = ws_a.receive_json()
        assert typing == {
            "event": "userTyping",
            "data": {"room_id": room_id, "user_id": other["user_id"], "name": other["name"]}
        }

    stored = run(db.messages.find_one({"room_id": room_id}))
    assert stored["message"] == "hello"
    room = run(db.chat_rooms.find_one({"room_id": room_id}))
    assert room["last_message"]["text"] == "hello"


def test_websocket_errors_are_frames(client, student, make_user):
    other, outsider = make_user("student"), make_user("student")
    room_id = direct_room(client, student, other)["data"]["room_id"]

    with client.websocket_connect(f"/ws?token={outsider['token']}") as ws:
        ws.send_json({"event": "dance", "data": {}})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event: dance"}}

        ws.send_json({"event": "joinRoom", "data": {}})
        assert ws.receive_json()["data"]["message"] == "'room_id' is required"

        ws.send_json({"event": "sendMessage", "data": {"room_id": room_id, "message": "hi"}})
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["data"]["message"] == "Not authorized to access this chat room"

        ws.send_json({"event": "joinNotifications"})
        joined = ws.receive_json()
        assert joined == {"event": "notificationsJoined", "data": {"room": f"user:{outsider['user_id']}"}}


def test_online_presence(client, student, make_user):
    other = make_user("student")
    with client.websocket_connect(f"/ws?token={other['token']}"):
        status = client.get(f"/chat/users/{other['user_id']}", headers=student["headers"]).json()
        assert status["data"]["is_online"] is True
        online = client.get("/chat/online", headers=student["headers"]).json()
        assert [u["user_id"] for u in online["data"]] == [other["user_id"]]


def test_notifications_pushed_to_live_connection(client, tutor, student, make_course):
    course = make_course(tutor)
    with client.websocket_connect(f"/ws?token={student['token']}") as ws:
        client.post(f"/courses/{course['course_id']}/enroll", headers=student["headers"])
        frame = ws.receive_json()
        assert frame["event"] == "newNotification"
        assert frame["data"]["type"] == "course_enrolled"


def join_both(ws_a, ws_b, room_id):
    """Put both sockets in the room and drain the join announcements"""
    ws_a.send_json({"event": "joinRoom", "data": {"room_id": room_id}})
    ws_a.receive_json()
    ws_b.send_json({"event": "joinRoom", "data": {"room_id": room_id}})
    ws_b.receive_json()
    ws_a.receive_json()


def test_leave_room_stops_room_events(client, student, make_user):
    other = make_user("student")
    room_id = direct_room(client, student, other)["data"]["room_id"]

    with client.websocket_connect(f"/ws?token={student['token']}") as ws_a, \
            client.websocket_connect(f"/ws?token={other['token']}") as ws_b:
        join_both(ws_a, ws_b, room_id)

        ws_a.send_json({"event": "leaveRoom", "data": {"room_id": room_id}})
        assert ws_b.receive_json() == {
            "event": "userLeft",
            "data": {"room_id": room_id, "user_id": student["user_id"]}
        }

        ws_b.send_json({"event": "sendMessage", "data": {"room_id": room_id, "message": "still there?"}})
        assert ws_b.receive_json()["event"] == "newMessage"
        # Only the personal ping reaches the user who left
        assert ws_a.receive_json()["event"] == "newNotification"


def test_stop_typing_reaches_peers(client, student, make_user):
    other = make_user("student")
    room_id = direct_room(client, student, other)["data"]["room_id"]

    with client.websocket_connect(f"/ws?token={student['token']}") as ws_a, \
            client.websocket_connect(f"/ws?token={other['token']}") as ws_b:
        join_both(ws_a, ws_b, room_id)

        ws_b.send_json({"event": "stopTyping", "data": {"room_id": room_id}})
        assert ws_a.receive_json() == {
            "event": "userStoppedTyping",
            "data": {"room_id": room_id, "user_id": other["user_id"]}
        }


def test_mark_message_read_broadcasts_receipt(client, db, student, make_user):
    other = make_user("student")
    room_id = direct_room(client, student, other)["data"]["room_id"]

    with client.websocket_connect(f"/ws?token={student['token']}") as ws_a, \
            client.websocket_connect(f"/ws?token={other['token']}") as ws_b:
        join_both(ws_a, ws_b, room_id)

        ws_a.send_json({"event": "sendMessage", "data": {"room_id": room_id, "message": "read me"}})
        message_id = ws_a.receive_json()["data"]["message_id"]
        assert ws_b.receive_json()["event"] == "newMessage"
        assert ws_b.receive_json()["event"] == "newNotification"

        ws_b.send_json({"event": "markAsRead", "data": {"message_id": message_id}})
        assert ws_a.receive_json() == {
            "event": "messageRead",
            "data": {"message_id": message_id, "room_id": room_id, "user_id": other["user_id"]}
        }
        assert ws_b.receive_json()["event"] == "messageRead"

    stored = run(db.messages.find_one({"message_id": message_id}))
    assert other["user_id"] in [r["user_id"] for r in stored["read_by"]]


def test_mark_notification_read_over_socket(client, db, student):
    notification = run(notify(db, student["user_id"], NotificationType.SYSTEM, "Welcome", "Hello"))

    with client.websocket_connect(f"/ws?token={student['token']}") as ws:
        ws.send_json({"event": "markAsRead", "data": {"notification_id": notification["notification_id"]}})
        # Frames are handled in order, so this reply means the read was stored
        ws.send_json({"event": "joinNotifications"})
        assert ws.receive_json()["event"] == "notificationsJoined"

    stored = run(db.notifications.find_one({"notification_id": notification["notification_id"]}))
    assert stored["is_read"] is True
    count = client.get("/notifications/unread-count", headers=student["headers"]).json()
    assert count["unread_count"] == 0


def test_binary_frame_gets_error_and_socket_keeps_working(client, student):
    with client.websocket_connect(f"/ws?token={student['token']}") as ws:
        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Frames must be JSON objects"}}

        ws.send_text("not json")
        assert ws.receive_json()["data"]["message"] == "Frames must be JSON objects"

        ws.send_json({"event": "joinNotifications"})
        assert ws.receive_json()["event"] == "notificationsJoined"


class ScriptedSocket:
    """Minimal socket that replays queued ASGI messages, then fails or disconnects"""

    def __init__(self, token, messages, error=None):
        self.headers = {}
        self.query_params = {"token": token}
        self.messages = list(messages)
        self.error = error
        self.sent = []

    async def accept(self):
        pass

    async def close(self, code=1000):
        pass

    async def send_json(self, data):
        self.sent.append(data)

    async def receive(self):
        if self.messages:
            return self.messages.pop(0)
        if self.error:
            raise self.error
        return {"type": "websocket.disconnect", "code": 1000}


async def insert_user(db):
    user = new_user("Socket User", "socket@example.com", PASSWORD, "student")
    await db.users.insert_one(dict(user))
    return user, create_access_token(user["user_id"], "student")


async def test_connection_released_on_disconnect(db):
    user, token = await insert_user(db)
    socket = ScriptedSocket(token, [{"type": "websocket.receive", "bytes": b"\x00"}])

    await websocket_endpoint(socket, db)

    assert socket.sent[0]["event"] == "error"
    assert manager.connections == {}
    assert not manager.is_online(user["user_id"])


async def test_connection_released_when_receive_fails(db):
    user, token = await insert_user(db)
    socket = ScriptedSocket(token, [], error=RuntimeError("transport lost"))

    with pytest.raises(RuntimeError):
        await websocket_endpoint(socket, db)

    assert manager.connections == {}
    assert manager.online_users() == []
