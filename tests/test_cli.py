import asyncio
import contextlib
import io
import logging
import socket
import unittest
from unittest.mock import patch
from netbench import cli, transport
from netbench.config import RunConfig
from netbench.errors import ConfigError, RunInterrupted
from netbench.termination import Termination
from netbench.transport import TransportKind, format_address

def run_main(argv):
    """Run cli.main, returning (exit code, stdout, stderr)"""
    out, err = io.StringIO(), io.StringIO()
    with patch('netbench.cli.install_abort_handler'), \
            contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        code = cli.main(argv)
    return code, out.getvalue(), err.getvalue()

class TestParseArgs(unittest.TestCase):
    def test_dial_defaults(self):
        config = cli.parse_args(['127.0.0.1:9000'])
        self.assertEqual(config, RunConfig(remote_address='127.0.0.1:9000'))
        self.assertIs(config.transport, TransportKind.STREAM)
        self.assertEqual(config.block_size, 65536)

    def test_dial_udt(self):
        config = cli.parse_args(['-udt', '-v', '-bs', '1024', 'example.org:9000'])
        self.assertIs(config.transport, TransportKind.RELIABLE_DATAGRAM)
        self.assertTrue(config.verbose)
        self.assertEqual(config.block_size, 1024)
        self.assertEqual(config.remote_address, 'example.org:9000')

    def test_transport_by_name(self):
        self.assertIs(cli.parse_args(['-net', 'rudp', 'h:1']).transport, TransportKind.RELIABLE_DATAGRAM)
        with self.assertLogs('netbench.transport', level='WARNING'):
            self.assertIs(cli.parse_args(['-net', 'carrier-pigeon', 'h:1']).transport, TransportKind.STREAM)

    def test_listen(self):
        for flag in ('-s', '-server'):
            config = cli.parse_args([flag, ':9000', ':9001'])
            self.assertTrue(config.listen)
            self.assertEqual((config.rudp_address, config.tcp_address), (':9000', ':9001'))

    def test_stress(self):
        config = cli.parse_args(['-stress', '-udt', '-conns', '8', '-loops', '50', '-chunk', '512',
                                 '-seed', '9', '127.0.0.1:0'])
        self.assertTrue(config.stress)
        self.assertEqual(config.stress_address, '127.0.0.1:0')
        self.assertEqual((config.connections, config.iterations, config.chunk_size, config.seed),
                         (8, 50, 512, 9))

    def test_config_is_frozen(self):
        config = cli.parse_args(['h:1'])
        with self.assertRaises(AttributeError):
            config.block_size = 1

    def test_configuration_errors(self):
        for argv in ([], ['-s', ':9000'], ['-stress'], ['-bs', '0', 'h:1'], ['-bs', '-5', 'h:1'],
                     ['-udt', '-tcp', 'h:1'], ['-bs', 'big', 'h:1'], ['-bogus', 'h:1'],
                     ['-stress', '-conns', '0', 'h:1']):
            with self.subTest(argv=argv):
                with self.assertRaises(ConfigError):
                    cli.parse_args(argv)

class TestMain(unittest.TestCase):
    def test_missing_address_prints_usage(self):
        code, out, err = run_main([])
        self.assertEqual(code, 1)
        self.assertIn('usage: netbench', err)
        self.assertEqual(out, '')

    def test_invalid_block_size(self):
        code, _, err = run_main(['-bs', '0', '127.0.0.1:9000'])
        self.assertEqual(code, 1)
        self.assertIn('block size', err)

    def test_unreachable_remote(self):
        with socket.socket() as sock:
            sock.bind(('127.0.0.1', 0))
            port = sock.getsockname()[1]
        code, _, err = run_main([f'127.0.0.1:{port}'])
        self.assertEqual(code, 1)
        self.assertIn('benchmark error: tcp dial', err)

    def test_stress_mode(self):
        code, out, _ = run_main(['-stress', '-conns', '2', '-loops', '10', '-chunk', '64', '127.0.0.1:0'])
        self.assertEqual(code, 0)
        self.assertIn('stress ok: 2 connections x 10 iterations, 1280 bytes verified', out)

    def test_interrupted_stress_mode(self):
        async def interrupted(config, termination, logger, out=None):
            raise RunInterrupted('SIGINT')

        with patch('netbench.cli.stress', interrupted):
            code, out, err = run_main(['-stress', '127.0.0.1:0'])
        self.assertEqual(code, 1)
        self.assertEqual(out, '')
        self.assertIn('stress interrupted: interrupted by SIGINT', err)
        self.assertNotIn('Traceback', err)

    def tearDown(self):
        logging.getLogger('netbench').handlers.clear()

class TestListenMode(unittest.IsolatedAsyncioTestCase):
    async def test_quit_now_on_termination(self):
        config = cli.parse_args(['-s', '127.0.0.1:0', '127.0.0.1:0'])
        termination = Termination()
        out = io.StringIO()
        running = asyncio.ensure_future(cli.run(config, logging.getLogger('netbench.test'), termination, out))
        await asyncio.sleep(0.1)
        self.assertFalse(running.done())
        termination.trigger('test')
        await asyncio.wait_for(running, 5)
        self.assertEqual(out.getvalue(), 'Quit now\n')

    async def test_both_listeners_echo_at_once(self):
        config = cli.parse_args(['-s', '-bs', '4096', '127.0.0.1:0', '127.0.0.1:0'])
        termination = Termination()
        listeners = []
        listen = transport.listen

        async def recording_listen(kind, address, logger=None):
            listener = await listen(kind, address, logger)
            listeners.append((kind, listener))
            return listener

        with patch('netbench.transport.listen', recording_listen):
            running = asyncio.ensure_future(cli.serve(config, termination, logging.getLogger('netbench.test'),
                                                      io.StringIO()))
            for _ in range(100):
                if len(listeners) == 2:
                    break
                await asyncio.sleep(0.01)
        self.assertEqual([kind for kind, _ in listeners],
                         [TransportKind.RELIABLE_DATAGRAM, TransportKind.STREAM])

        clients = [await transport.dial(kind, format_address(listener.address)) for kind, listener in listeners]
        blocks = [bytes([i + 1]) * 4096 for i in range(len(clients))]

        async def round_trip(client, block):
            await client.write(block)
            return await client.read_exactly(len(block))

        echoed = await asyncio.wait_for(
            asyncio.gather(*(round_trip(c, b) for c, b in zip(clients, blocks))), 10)
        self.assertEqual(echoed, blocks)
        self.assertFalse(running.done())
        for client in clients:
            await client.close()

        termination.trigger('test')
        await asyncio.wait_for(running, 5)
        self.assertTrue(all(listener.closed for _, listener in listeners))

class TestStressInterruption(unittest.IsolatedAsyncioTestCase):
    async def test_termination_stops_a_running_stress_test(self):
        config = cli.parse_args(['-stress', '-conns', '4', '-loops', '100000', '-chunk', '4096',
                                 '127.0.0.1:0'])
        termination = Termination()
        out = io.StringIO()
        running = asyncio.ensure_future(cli.run(config, logging.getLogger('netbench.test'), termination, out))
        await asyncio.sleep(0.2)
        self.assertFalse(running.done())

        termination.trigger('SIGTERM')
        with self.assertRaises(RunInterrupted) as ctx:
            await asyncio.wait_for(running, 10)
        self.assertEqual(ctx.exception.reason, 'SIGTERM')
        self.assertEqual(out.getvalue(), '')

    async def test_completed_stress_test_ignores_termination(self):
        config = cli.parse_args(['-stress', '-conns', '1', '-loops', '2', '-chunk', '16', '127.0.0.1:0'])
        out = io.StringIO()
        await asyncio.wait_for(cli.stress(config, Termination(), logging.getLogger('netbench.test'), out), 10)
        self.assertIn('stress ok: 1 connections x 2 iterations, 32 bytes verified', out.getvalue())

if __name__ == '__main__':
    unittest.main()
