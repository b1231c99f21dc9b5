import asyncio
import unittest
from netbench import transport
from netbench.errors import ConfigError, IntegrityError, ProviderError
from netbench.stress import StressHarness, make_source_buffer
from netbench.transport import TransportKind

class TestSourceBuffer(unittest.TestCase):
    def test_deterministic(self):
        self.assertEqual(make_source_buffer(1000, seed=3), make_source_buffer(1000, seed=3))
        self.assertNotEqual(make_source_buffer(1000, seed=3), make_source_buffer(1000, seed=4))
        self.assertEqual(len(make_source_buffer()), 200000)

    def test_source_must_cover_last_window(self):
        with self.assertRaises(ConfigError):
            StressHarness(TransportKind.STREAM, '127.0.0.1:0', iterations=100, chunk_size=1024,
                          source=bytes(1122))
        # M - 1 + C bytes are exactly enough
        StressHarness(TransportKind.STREAM, '127.0.0.1:0', iterations=100, chunk_size=1024,
                      source=bytes(1123))

    def test_counts_must_be_positive(self):
        for kwargs in ({'connections': 0}, {'iterations': 0}, {'chunk_size': 0}):
            with self.subTest(**kwargs):
                with self.assertRaises(ConfigError):
                    StressHarness(TransportKind.STREAM, '127.0.0.1:0', **kwargs)

class StressTests:
    kind: TransportKind

    async def test_small_scale_run(self):
        harness = StressHarness(self.kind, '127.0.0.1:0', connections=4, iterations=100,
                                chunk_size=1024, source=make_source_buffer(200000))
        result = await asyncio.wait_for(harness.run(), 60)
        self.assertEqual(result.connections, 4)
        self.assertEqual(result.iterations, 100)
        self.assertEqual(result.bytes_verified, 4 * 100 * 1024)
        self.assertGreater(result.elapsed, 0)

    async def test_single_byte_chunks(self):
        harness = StressHarness(self.kind, '127.0.0.1:0', connections=1, iterations=1, chunk_size=1,
                                source=b'z')
        result = await asyncio.wait_for(harness.run(), 30)
        self.assertEqual(result.bytes_verified, 1)

    async def test_corruption_is_detected(self):
        async def corrupting_dial(kind, address, logger=None):
            connection = await transport.dial(kind, address, logger)
            write = connection.write
            calls = [0]

            async def corrupt_write(data):
                iteration = calls[0]
                calls[0] += 1
                if iteration == 7:
                    data = bytes([data[0] ^ 0xFF]) + data[1:]
                return await write(data)

            connection.write = corrupt_write
            return connection

        harness = StressHarness(self.kind, '127.0.0.1:0', connections=2, iterations=20, chunk_size=256,
                                dial=corrupting_dial)
        with self.assertRaises(IntegrityError) as ctx:
            await asyncio.wait_for(harness.run(), 30)
        self.assertEqual(ctx.exception.iteration, 7)
        self.assertIn(ctx.exception.connection, (0, 1))
        self.assertIn('mismatch', str(ctx.exception))
        # the corrupted bytes are found on the accepting side
        self.assertTrue(ctx.exception.accepted)
        self.assertTrue(str(ctx.exception).startswith('accepted connection '))
        self.assertIn('from 127.0.0.1:', str(ctx.exception))

    async def test_short_write_is_detected(self):
        async def short_dial(kind, address, logger=None):
            connection = await transport.dial(kind, address, logger)
            write = connection.write

            async def short_write(data):
                await write(data)
                return len(data) - 1

            connection.write = short_write
            return connection

        harness = StressHarness(self.kind, '127.0.0.1:0', connections=1, iterations=5, chunk_size=64,
                                dial=short_dial)
        with self.assertRaises(IntegrityError) as ctx:
            await asyncio.wait_for(harness.run(), 30)
        self.assertEqual((ctx.exception.connection, ctx.exception.iteration), (0, 0))
        self.assertFalse(ctx.exception.accepted)
        self.assertTrue(str(ctx.exception).startswith('connection 0 iteration 0: wrote 63 of 64 bytes'))

    async def test_listen_failure_is_a_provider_error(self):
        harness = StressHarness(self.kind, 'not-an-address', connections=1, iterations=1, chunk_size=1)
        with self.assertRaises(ProviderError):
            await harness.run()

class TestStreamStress(StressTests, unittest.IsolatedAsyncioTestCase):
    kind = TransportKind.STREAM

class TestRUDPStress(StressTests, unittest.IsolatedAsyncioTestCase):
    kind = TransportKind.RELIABLE_DATAGRAM

if __name__ == '__main__':
    unittest.main()
