import asyncio
import unittest
from netbench import transport
from netbench.echo import EchoServer
from netbench.termination import Termination
from netbench.transport import TransportKind, format_address

BLOCK_SIZE = 65536

class EchoTests:
    kind: TransportKind

    async def asyncSetUp(self):
        self.termination = Termination()
        self.listener = await transport.listen(self.kind, '127.0.0.1:0')
        self.server = EchoServer(self.listener, BLOCK_SIZE, self.termination)
        self.serving = asyncio.ensure_future(self.server.serve())

    async def asyncTearDown(self):
        self.termination.trigger()
        await asyncio.wait_for(self.serving, 5)

    async def dial(self):
        connection = await transport.dial(self.kind, format_address(self.listener.address))
        self.addAsyncCleanup(connection.close)
        return connection

    async def test_echo_round_trip(self):
        client = await self.dial()
        block = b'hello-block-1'.ljust(BLOCK_SIZE, b'\x00')
        self.assertEqual(await client.write(block), BLOCK_SIZE)
        echoed = await asyncio.wait_for(client.read_exactly(BLOCK_SIZE), 10)
        self.assertEqual(echoed, block)

    async def test_many_blocks_in_order(self):
        client = await self.dial()
        blocks = [bytes([i]) * 10000 for i in range(20)]

        async def send():
            for block in blocks:
                await client.write(block)

        sending = asyncio.ensure_future(send())
        echoed = await asyncio.wait_for(client.read_exactly(sum(map(len, blocks))), 10)
        await sending
        self.assertEqual(echoed, b''.join(blocks))

    async def test_concurrent_clients(self):
        clients = [await self.dial() for _ in range(3)]
        for index, client in enumerate(clients):
            await client.write(f'client-{index}'.encode())
        for index, client in enumerate(clients):
            expected = f'client-{index}'.encode()
            self.assertEqual(await asyncio.wait_for(client.read_exactly(len(expected)), 10), expected)
        self.assertEqual(self.server.connections, 3)

    async def test_termination_closes_connections(self):
        client = await self.dial()
        await client.write(b'x')
        await asyncio.wait_for(client.read_exactly(1), 10)
        self.termination.trigger()
        await asyncio.wait_for(self.serving, 5)
        self.assertTrue(self.listener.closed)
        self.assertEqual(await asyncio.wait_for(client.read(10), 10), b'')

    async def test_peer_close_ends_echo_task(self):
        client = await self.dial()
        await client.write(b'bye')
        await asyncio.wait_for(client.read_exactly(3), 10)
        await client.close()
        for _ in range(100):
            if not self.server._tasks:
                break
            await asyncio.sleep(0.02)
        self.assertFalse(self.server._tasks)

class TestStreamEcho(EchoTests, unittest.IsolatedAsyncioTestCase):
    kind = TransportKind.STREAM

class TestRUDPEcho(EchoTests, unittest.IsolatedAsyncioTestCase):
    kind = TransportKind.RELIABLE_DATAGRAM

if __name__ == '__main__':
    unittest.main()
