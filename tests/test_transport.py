import asyncio
import socket
import time
import unittest
from netbench import transport
from netbench.errors import ProviderError
from netbench.transport import TransportKind, format_address, parse_address

def unused_port(kind: socket.SocketKind = socket.SOCK_STREAM) -> int:
    """A port nothing listens on right now"""
    with socket.socket(socket.AF_INET, kind) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]

class TestTransportKind(unittest.TestCase):
    def test_known_names(self):
        self.assertIs(TransportKind.parse('tcp'), TransportKind.STREAM)
        self.assertIs(TransportKind.parse('rudp'), TransportKind.RELIABLE_DATAGRAM)
        self.assertIs(TransportKind.parse('udt'), TransportKind.RELIABLE_DATAGRAM)
        self.assertIs(TransportKind.parse('UDT'), TransportKind.RELIABLE_DATAGRAM)
        self.assertIs(TransportKind.parse(' Tcp '), TransportKind.STREAM)

    def test_default_is_stream(self):
        self.assertIs(TransportKind.parse(None), TransportKind.STREAM)
        self.assertIs(TransportKind.parse(''), TransportKind.STREAM)

    def test_unknown_name_falls_back_with_warning(self):
        with self.assertLogs('netbench.transport', level='WARNING') as logs:
            self.assertIs(TransportKind.parse('sctp'), TransportKind.STREAM)
        self.assertIn('sctp', logs.output[0])

class TestAddress(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_address('127.0.0.1:9000'), ('127.0.0.1', 9000))
        self.assertEqual(parse_address(':9000'), ('', 9000))
        self.assertEqual(parse_address('localhost:0'), ('localhost', 0))
        self.assertEqual(parse_address('[::1]:9000'), ('::1', 9000))

    def test_invalid(self):
        for address in ('9000', 'host:', 'host:port', 'host:70000', '::1:9000'):
            with self.subTest(address=address):
                with self.assertRaises(ValueError):
                    parse_address(address)

    def test_format(self):
        self.assertEqual(format_address(('127.0.0.1', 80)), '127.0.0.1:80')
        self.assertEqual(format_address(('::1', 80)), '[::1]:80')

class ProviderTests:
    kind: TransportKind

    async def test_listen_reports_bound_port(self):
        listener = await transport.listen(self.kind, '127.0.0.1:0')
        self.addAsyncCleanup(listener.close)
        host, port = listener.address
        self.assertEqual(host, '127.0.0.1')
        self.assertGreater(port, 0)

    async def test_dial_and_accept(self):
        listener = await transport.listen(self.kind, '127.0.0.1:0')
        self.addAsyncCleanup(listener.close)
        client = await transport.dial(self.kind, format_address(listener.address))
        self.addAsyncCleanup(client.close)
        server = await asyncio.wait_for(listener.accept(), 5)
        self.addAsyncCleanup(server.close)
        self.assertEqual(client.remote_address, listener.address)
        self.assertEqual(server.remote_address, client.local_address)

    async def test_unreachable_address_fails_promptly(self):
        port = unused_port(socket.SOCK_DGRAM if self.kind is TransportKind.RELIABLE_DATAGRAM
                           else socket.SOCK_STREAM)
        start = time.monotonic()
        with self.assertRaises(ProviderError) as ctx:
            await asyncio.wait_for(transport.dial(self.kind, f'127.0.0.1:{port}'), 10)
        self.assertLess(time.monotonic() - start, 8)
        self.assertEqual(ctx.exception.kind, self.kind.value)
        self.assertEqual(ctx.exception.op, 'dial')
        self.assertEqual(ctx.exception.address, f'127.0.0.1:{port}')
        self.assertIsNotNone(ctx.exception.cause)

    async def test_port_in_use(self):
        listener = await transport.listen(self.kind, '127.0.0.1:0')
        self.addAsyncCleanup(listener.close)
        address = format_address(listener.address)
        with self.assertRaises(ProviderError) as ctx:
            await transport.listen(self.kind, address)
        self.assertEqual(ctx.exception.op, 'listen')
        self.assertIsInstance(ctx.exception.cause, OSError)

    async def test_malformed_address(self):
        with self.assertRaises(ProviderError) as ctx:
            await transport.dial(self.kind, 'no-port-here')
        self.assertIsInstance(ctx.exception.cause, ValueError)
        self.assertIn('no-port-here', str(ctx.exception))

class TestStreamProvider(ProviderTests, unittest.IsolatedAsyncioTestCase):
    kind = TransportKind.STREAM

class TestRUDPProvider(ProviderTests, unittest.IsolatedAsyncioTestCase):
    kind = TransportKind.RELIABLE_DATAGRAM

if __name__ == '__main__':
    unittest.main()
