import unittest

from errors import NotFound, TransportFailure, ValidationError
from pipeline import CHAT_MESSAGE_EVENT, MessagePipeline
from tests.support import RecordingFanout, ServiceTestCase


class BrokenFanout(RecordingFanout):
    async def publish(self, room_code, event, payload, exclude=None):
        raise TransportFailure()


class TestMessagePipeline(ServiceTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.room = await self.registry.create_room()

    async def test_send_returns_canonical_record(self):
        message = await self.pipeline.send_message(self.room.code, "bob", "hi")

        self.assertEqual(message.roomCode, self.room.code)
        self.assertEqual(message.roomId, self.room.id)
        self.assertEqual(message.sender, "bob")
        self.assertEqual(message.content, "hi")
        self.assertIsNotNone(message.createdAt)

    async def test_send_broadcasts_once_after_persisting(self):
        message = await self.pipeline.send_message(self.room.code, "bob", "hi")

        self.assertEqual(len(self.fanout.published), 1)
        envelope = self.fanout.published[0]
        self.assertEqual(envelope["event"], CHAT_MESSAGE_EVENT)
        self.assertEqual(envelope["roomCode"], self.room.code)
        self.assertEqual(envelope["payload"]["id"], message.id)
        self.assertEqual(envelope["payload"]["roomCode"], self.room.code)

    async def test_length_boundaries_are_accepted(self):
        message = await self.pipeline.send_message(self.room.code, "s" * 64, "c" * 5000)
        self.assertEqual(len(message.content), 5000)
        self.assertEqual(len(message.sender), 64)

    async def test_invalid_content_is_rejected_without_side_effects(self):
        for content in ("", "c" * 5001):
            with self.subTest(length=len(content)):
                with self.assertRaises(ValidationError):
                    await self.pipeline.send_message(self.room.code, "bob", content)

        self.assertEqual(await self.pipeline.recent_messages(self.room.code), [])
        self.assertEqual(self.fanout.published, [])

    async def test_invalid_sender_is_rejected(self):
        for sender in ("", "s" * 65):
            with self.subTest(length=len(sender)):
                with self.assertRaises(ValidationError):
                    await self.pipeline.send_message(self.room.code, sender, "hi")
        self.assertEqual(self.fanout.published, [])

    async def test_unknown_room_is_not_found(self):
        with self.assertRaises(NotFound) as ctx:
            await self.pipeline.send_message("zzzzzz", "x", "hi")

        self.assertEqual(ctx.exception.message, "Room not found")
        self.assertEqual(self.fanout.published, [])

    async def test_broadcast_failure_keeps_the_message(self):
        pipeline = MessagePipeline(self.registry, self.message_store, BrokenFanout())

        message = await pipeline.send_message(self.room.code, "bob", "still here")

        history = await pipeline.recent_messages(self.room.code)
        self.assertEqual([m.id for m in history], [message.id])

    async def test_ids_increase_and_broadcast_order_matches(self):
        sent = []
        for i in range(5):
            sent.append(await self.pipeline.send_message(self.room.code, "bob", f"message {i}"))

        ids = [m.id for m in sent]
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual([e["payload"]["id"] for e in self.fanout.published], ids)

    async def test_history_is_newest_first_and_pages_with_before_id(self):
        sent = [await self.pipeline.send_message(self.room.code, "bob", f"m{i}") for i in range(5)]

        latest = await self.pipeline.recent_messages(self.room.code, limit=3)
        self.assertEqual([m.content for m in latest], ["m4", "m3", "m2"])

        older = await self.pipeline.recent_messages(self.room.code, limit=3, before_id=latest[-1].id)
        self.assertEqual([m.content for m in older], ["m1", "m0"])
        self.assertTrue(all(m.roomCode == self.room.code for m in older))
        self.assertEqual(sent[0].id, older[-1].id)

    async def test_history_is_scoped_to_the_room(self):
        other = await self.registry.create_room()
        await self.pipeline.send_message(self.room.code, "bob", "here")
        await self.pipeline.send_message(other.code, "amy", "there")

        history = await self.pipeline.recent_messages(other.code)
        self.assertEqual([m.content for m in history], ["there"])

    async def test_history_for_unknown_room_is_not_found(self):
        with self.assertRaises(NotFound):
            await self.pipeline.recent_messages("zzzzzz")


if __name__ == '__main__':
    unittest.main()
