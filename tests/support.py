import os
import shutil
import tempfile
import unittest

from connections import ConnectionManager
from database import init_db, make_engine, make_session_factory
from fanout import LocalFanout
from pipeline import MessagePipeline
from registry import RoomRegistry
from stores import MessageStore, RoomStore


class FakeTransport:
    """Stands in for a WebSocket: records every frame pushed to it."""

    def __init__(self):
        self.frames = []
        self.closed = False

    async def send_json(self, data):
        if self.closed:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.frames.append(data)

    def events(self, name):
        return [frame["data"] for frame in self.frames if frame["event"] == name]


class RecordingFanout(LocalFanout):
    """Local fanout that also keeps every envelope it relayed."""

    def __init__(self):
        super().__init__(instance_id="test-instance")
        self.published = []

    async def publish(self, room_code, event, payload, exclude=None):
        self.published.append({"roomCode": room_code, "event": event, "payload": payload, "exclude": exclude})
        await super().publish(room_code, event, payload, exclude)


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Wires stores, registry, pipeline and connection manager against a temporary SQLite file."""

    async def asyncSetUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.engine = make_engine(f"sqlite:///{os.path.join(self.tmpdir, 'relay.db')}")
        init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)
        self.room_store = RoomStore(self.session_factory)
        self.message_store = MessageStore(self.session_factory)
        self.fanout = RecordingFanout()
        self.registry = RoomRegistry(self.room_store)
        self.pipeline = MessagePipeline(self.registry, self.message_store, self.fanout)
        self.manager = ConnectionManager(self.registry, self.pipeline, self.fanout)
        await self.fanout.subscribe(self.manager.deliver)

    async def asyncTearDown(self):
        await self.fanout.close()
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def connect(self):
        transport = FakeTransport()
        return self.manager.on_connect(transport), transport
