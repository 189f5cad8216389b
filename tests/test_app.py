"""End-to-end tests over the real WebSocket and HTTP routes, single instance."""
import os
import shutil
import tempfile
import unittest

from fastapi.testclient import TestClient

from app import create_app
from fanout import LocalFanout


def request(ws, event, data=None, ack_id=1):
    """Send one event and read frames until its ack; returns (ack data, pushed frames seen meanwhile)."""
    ws.send_json({"event": event, "data": data, "ack": ack_id})
    pushed = []
    while True:
        frame = ws.receive_json()
        if frame["event"] == "ack":
            assert frame["ack"] == ack_id
            return frame["data"], pushed
        pushed.append(frame)


class AppTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        database_url = f"sqlite:///{os.path.join(self.tmpdir, 'relay.db')}"
        self.client = TestClient(create_app(database_url=database_url, fanout=LocalFanout(instance_id="test")))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestSocketEvents(AppTestCase):

    def test_create_join_and_chat(self):
        with self.client.websocket_connect("/ws") as a, self.client.websocket_connect("/ws") as b:
            created, _ = request(a, "room:create")
            self.assertTrue(created["ok"])
            code = created["room"]["code"]
            self.assertEqual(len(code), 6)

            joined, _ = request(b, "room:join", {"code": code, "nickname": "bob"}, ack_id=2)
            self.assertTrue(joined["ok"])
            self.assertEqual(joined["room"], created["room"])

            presence = a.receive_json()
            self.assertEqual(presence, {"event": "room:participant-joined", "data": {"roomCode": code, "nickname": "bob"}})

            sent, b_pushed = request(b, "chat:send", {"roomCode": code, "sender": "bob", "content": "hi"}, ack_id=3)
            self.assertTrue(sent["ok"])
            message = sent["message"]
            self.assertEqual((message["roomCode"], message["sender"], message["content"]), (code, "bob", "hi"))

            self.assertEqual([f["event"] for f in b_pushed], ["chat:message"])
            self.assertEqual(b_pushed[0]["data"], message)
            self.assertEqual(a.receive_json(), {"event": "chat:message", "data": message})

            second, _ = request(a, "chat:send", {"roomCode": code, "sender": "amy", "content": "hello"}, ack_id=4)
            self.assertGreater(second["message"]["id"], message["id"])
            self.assertEqual(b.receive_json()["data"]["content"], "hello")

    def test_send_to_unknown_room(self):
        with self.client.websocket_connect("/ws") as c:
            result, pushed = request(c, "chat:send", {"roomCode": "zzzzzz", "sender": "x", "content": "hi"})
            self.assertEqual(result, {"ok": False, "error": "Room not found"})
            self.assertEqual(pushed, [])

            history = self.client.get("/rooms/zzzzzz/messages")
            self.assertEqual(history.status_code, 404)

    def test_join_errors(self):
        with self.client.websocket_connect("/ws") as c:
            missing, _ = request(c, "room:join", {"code": ""})
            self.assertEqual(missing, {"ok": False, "error": "Room code is required"})

            unknown, _ = request(c, "room:join", {"code": "nope42"}, ack_id=2)
            self.assertEqual(unknown, {"ok": False, "error": "Room not found"})

    def test_oversized_content_is_rejected_and_not_stored(self):
        with self.client.websocket_connect("/ws") as c:
            created, _ = request(c, "room:create")
            code = created["room"]["code"]

            result, pushed = request(c, "chat:send", {"roomCode": code, "sender": "x", "content": "c" * 5001}, ack_id=2)
            self.assertFalse(result["ok"])
            self.assertTrue(result["error"].startswith("content"))
            self.assertEqual(pushed, [])

        self.assertEqual(self.client.get(f"/rooms/{code}/messages").json(), [])

    def test_bad_frames_do_not_close_the_connection(self):
        with self.client.websocket_connect("/ws") as c:
            c.send_text("this is not json")

            unknown, _ = request(c, "room:delete", {}, ack_id=5)
            self.assertEqual(unknown, {"ok": False, "error": "Unknown event: room:delete"})

            not_an_object, _ = request(c, "room:join", ["ab12cd"], ack_id=6)
            self.assertEqual(not_an_object, {"ok": False, "error": "Payload must be an object"})

            created, _ = request(c, "room:create", ack_id=7)
            self.assertTrue(created["ok"])

    def test_events_without_ack_get_no_reply(self):
        with self.client.websocket_connect("/ws") as c:
            c.send_json({"event": "room:create"})
            created, _ = request(c, "room:create", ack_id=9)
            self.assertTrue(created["ok"])


class TestHttpRoutes(AppTestCase):

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "instance": "test", "fanout": "local"})

    def test_room_details(self):
        with self.client.websocket_connect("/ws") as c:
            created, _ = request(c, "room:create")
            code = created["room"]["code"]

            response = self.client.get(f"/rooms/{code}")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["room"]["code"], code)
            self.assertEqual(response.json()["local_participants"], 1)

        self.assertEqual(self.client.get("/rooms/nope42").status_code, 404)

    def test_http_message_is_broadcast_and_listed(self):
        with self.client.websocket_connect("/ws") as c:
            created, _ = request(c, "room:create")
            code = created["room"]["code"]

            response = self.client.post(f"/rooms/{code}/messages", json={"sender": "api", "content": "from http"})
            self.assertEqual(response.status_code, 201)
            pushed = c.receive_json()
            self.assertEqual(pushed["event"], "chat:message")
            self.assertEqual(pushed["data"]["id"], response.json()["id"])

            self.client.post(f"/rooms/{code}/messages", json={"sender": "api", "content": "second"})
            c.receive_json()

        history = self.client.get(f"/rooms/{code}/messages", params={"limit": 1})
        self.assertEqual([m["content"] for m in history.json()], ["second"])

        older = self.client.get(f"/rooms/{code}/messages", params={"beforeId": history.json()[0]["id"]})
        self.assertEqual([m["content"] for m in older.json()], ["from http"])

    def test_http_message_validation(self):
        with self.client.websocket_connect("/ws") as c:
            created, _ = request(c, "room:create")
            code = created["room"]["code"]

        response = self.client.post(f"/rooms/{code}/messages", json={"sender": "api", "content": ""})
        self.assertEqual(response.status_code, 422)

        response = self.client.post("/rooms/zzzzzz/messages", json={"sender": "api", "content": "hi"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"detail": "Room not found"})


if __name__ == '__main__':
    unittest.main()
