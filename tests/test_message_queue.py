import asyncio
import random
import unittest

from ghost_privacy.client.message_queue import EphemeralMessageQueue, MessageQueueProvider, ephemeral_message_queue
from ghost_privacy.client.timestamps import TimestampDecorrelator
from ghost_privacy.models.core import QueuedMessage, TimestampConfig, TimestampMode
from ghost_privacy.utils.config import MessageQueueConfig

SESSION = 'GHOST-ABCD-2345'
OTHER_SESSION = 'GHOST-ZZZZ-ZZZZ'
SENT_AT_MS = 1_700_000_000_000
WINDOW_MS = 10 * 60 * 1000


def make_message(message_id: str, content: str = 'hello', **kwargs) -> QueuedMessage:
    return QueuedMessage(id=message_id, content=content, sender='partner', type='text', timestamp=1000, **kwargs)


class TestEphemeralMessageQueue(unittest.TestCase):

    def setUp(self):
        self.now = 5000
        self.queue = EphemeralMessageQueue(MessageQueueConfig(max_messages_per_session=3, ack_timeout_ms=5000),
                                           clock=lambda: self.now)

    def test_add_resets_delivery_fields(self):
        stored = self.queue.add(SESSION, make_message('m1', received_at=1, acknowledged=True))

        self.assertTrue(stored)
        message = self.queue.get_messages(SESSION)[0]
        self.assertEqual(message.received_at, 5000)
        self.assertFalse(message.acknowledged)

    def test_duplicate_ids_are_ignored(self):
        self.queue.add(SESSION, make_message('m1', 'first'))

        self.assertFalse(self.queue.add(SESSION, make_message('m1', 'second')))
        self.assertEqual([m.content for m in self.queue.get_messages(SESSION)], ['first'])

    def test_capacity_evicts_oldest_and_scrubs_it(self):
        first = make_message('m1', 'secret one', file_name='plan.pdf')
        self.queue.add(SESSION, first)
        for message_id in ('m2', 'm3', 'm4'):
            self.queue.add(SESSION, make_message(message_id))

        self.assertEqual([m.id for m in self.queue.get_messages(SESSION)], ['m2', 'm3', 'm4'])
        self.assertEqual(first.content, '')
        self.assertIsNone(first.file_name)

    def test_sessions_are_isolated(self):
        self.queue.add(SESSION, make_message('m1'))
        self.queue.add(OTHER_SESSION, make_message('m1'))

        self.queue.destroy_session(SESSION)

        self.assertEqual(self.queue.get_messages(SESSION), [])
        self.assertEqual(len(self.queue.get_messages(OTHER_SESSION)), 1)

    def test_acknowledge_marks_message(self):
        self.queue.add(SESSION, make_message('m1'))

        self.queue.acknowledge(SESSION, 'm1')

        self.assertTrue(self.queue.get_messages(SESSION)[0].acknowledged)

    def test_acknowledge_ignores_unknown_messages(self):
        self.queue.add(SESSION, make_message('m1'))

        for index in range(100):
            self.queue.acknowledge(SESSION, f'unknown-{index}')
            self.queue.acknowledge('GHOST-NONE-NONE', 'm1')

        self.assertEqual(self.queue._acknowledged, {})
        self.assertFalse(self.queue.get_messages(SESSION)[0].acknowledged)

    def test_disabled_decorrelator_keeps_send_time(self):
        queue = EphemeralMessageQueue(decorrelator=TimestampDecorrelator(TimestampConfig(enabled=False)))
        message = QueuedMessage(id='m1', content='hi', sender='me', type='text', timestamp=SENT_AT_MS)

        queue.add(SESSION, message)

        self.assertEqual(queue.get_messages(SESSION)[0].timestamp, SENT_AT_MS)

    def test_enabled_decorrelator_offsets_display_time_within_window(self):
        decorrelator = TimestampDecorrelator(TimestampConfig(enabled=True, window_minutes=10, mode=TimestampMode.DELAYED),
                                             rng=random.Random(11))
        queue = EphemeralMessageQueue(decorrelator=decorrelator)
        for index in range(20):
            queue.add(SESSION, QueuedMessage(id=f'm{index}', content='hi', sender='me', type='text',
                                             timestamp=SENT_AT_MS))

        for message in queue.get_messages(SESSION):
            self.assertGreaterEqual(message.timestamp, SENT_AT_MS - WINDOW_MS)
            self.assertLessEqual(message.timestamp, SENT_AT_MS)

    def test_memory_stats(self):
        self.queue.add(SESSION, make_message('m1', 'hello'))
        self.queue.add(SESSION, make_message('m2', ''))

        stats = self.queue.get_memory_stats(SESSION)

        self.assertEqual(stats.message_count, 2)
        self.assertEqual(stats.estimated_bytes, 5 * 2 + 200 + 200)
        self.assertEqual(self.queue.get_memory_stats(OTHER_SESSION).message_count, 0)

    def test_destroy_session_scrubs_retained_messages(self):
        message = make_message('m1', 'burn after reading', file_name='notes.txt')
        self.queue.add(SESSION, message)

        self.queue.destroy_session(SESSION)

        self.assertEqual(message.content, '')
        self.assertIsNone(message.file_name)
        self.assertEqual(self.queue.get_memory_stats(SESSION).message_count, 0)

    def test_nuclear_purge_makes_queue_unusable(self):
        message = make_message('m1', 'secret')
        self.queue.add(SESSION, message)
        self.queue.add(OTHER_SESSION, make_message('m2'))

        self.queue.nuclear_purge()

        self.assertTrue(self.queue.is_destroyed)
        self.assertEqual(message.content, '')
        self.assertEqual(self.queue.get_messages(SESSION), [])
        self.assertFalse(self.queue.add(SESSION, make_message('m3')))
        self.assertEqual(self.queue.get_memory_stats(SESSION).message_count, 0)


class TestAcknowledgmentWaiters(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.queue = EphemeralMessageQueue(MessageQueueConfig(max_messages_per_session=10, ack_timeout_ms=5000))
        self.queue.add(SESSION, make_message('m1'))

    async def test_acknowledge_resolves_waiter(self):
        future = self.queue.wait_for_ack('m1')

        self.queue.acknowledge(SESSION, 'm1')

        self.assertTrue(await asyncio.wait_for(future, 1))

    async def test_acknowledge_from_another_thread(self):
        future = self.queue.wait_for_ack('m1')

        await asyncio.to_thread(self.queue.acknowledge, SESSION, 'm1')

        self.assertTrue(await asyncio.wait_for(future, 1))

    async def test_already_acknowledged_resolves_immediately(self):
        self.queue.acknowledge(SESSION, 'm1')

        future = self.queue.wait_for_ack('m1')

        self.assertTrue(future.done())
        self.assertTrue(future.result())

    async def test_timeout_resolves_false(self):
        future = self.queue.wait_for_ack('m1', timeout_ms=10)

        self.assertFalse(await asyncio.wait_for(future, 1))

    async def test_second_wait_shares_pending_future(self):
        first = self.queue.wait_for_ack('m1')
        second = self.queue.wait_for_ack('m1')

        self.assertIs(first, second)
        self.queue.acknowledge(SESSION, 'm1')
        self.assertTrue(await asyncio.wait_for(second, 1))

    async def test_destroy_session_settles_its_waiters(self):
        self.queue.add(OTHER_SESSION, make_message('m2'))
        own = self.queue.wait_for_ack('m1')
        other = self.queue.wait_for_ack('m2')

        self.queue.destroy_session(SESSION)

        self.assertFalse(await asyncio.wait_for(own, 1))
        self.assertFalse(other.done())
        self.queue.acknowledge(OTHER_SESSION, 'm2')
        self.assertTrue(await asyncio.wait_for(other, 1))

    async def test_explicit_session_binding_for_outgoing_message(self):
        future = self.queue.wait_for_ack('outgoing-1', session_id=SESSION)

        self.queue.destroy_session(SESSION)

        self.assertFalse(await asyncio.wait_for(future, 1))

    async def test_acknowledgment_in_another_session_does_not_resolve_waiter(self):
        self.queue.add(OTHER_SESSION, make_message('m1'))
        self.queue.acknowledge(OTHER_SESSION, 'm1')

        future = self.queue.wait_for_ack('m1', timeout_ms=1000, session_id=SESSION)
        self.assertFalse(future.done())

        self.queue.acknowledge(OTHER_SESSION, 'm1')
        await asyncio.sleep(0)
        self.assertFalse(future.done())

        self.queue.acknowledge(SESSION, 'm1')
        self.assertTrue(await asyncio.wait_for(future, 1))
        self.assertTrue(self.queue.get_messages(SESSION)[0].acknowledged)

    async def test_timeout_after_acknowledgment_still_resolves_true(self):
        future = self.queue.wait_for_ack('m1', timeout_ms=1000)
        waiter = self.queue._waiters['m1']

        self.queue.acknowledge(SESSION, 'm1')
        self.queue._expire('m1', waiter)

        self.assertTrue(await asyncio.wait_for(future, 1))

    async def test_nuclear_purge_settles_all_waiters(self):
        future = self.queue.wait_for_ack('m1')

        self.queue.nuclear_purge()

        self.assertFalse(await asyncio.wait_for(future, 1))
        self.assertFalse(await asyncio.wait_for(self.queue.wait_for_ack('m1'), 1))


class TestQueueOwnership(unittest.TestCase):

    def test_provider_reuses_queue_until_released(self):
        provider = MessageQueueProvider(MessageQueueConfig(max_messages_per_session=10, ack_timeout_ms=5000))

        queue = provider.acquire()
        self.assertIs(provider.acquire(), queue)

        message = make_message('m1', 'secret')
        queue.add(SESSION, message)
        provider.release()

        self.assertTrue(queue.is_destroyed)
        self.assertEqual(message.content, '')
        fresh = provider.acquire()
        self.assertIsNot(fresh, queue)
        self.assertFalse(fresh.is_destroyed)

    def test_provider_replaces_purged_queue(self):
        provider = MessageQueueProvider()
        queue = provider.acquire()

        queue.nuclear_purge()

        self.assertIsNot(provider.acquire(), queue)

    def test_context_manager_purges_on_error(self):
        message = make_message('m1', 'secret')

        with self.assertRaises(RuntimeError):
            with ephemeral_message_queue() as queue:
                queue.add(SESSION, message)
                raise RuntimeError('connection lost')

        self.assertTrue(queue.is_destroyed)
        self.assertEqual(message.content, '')


if __name__ == '__main__':
    unittest.main()
