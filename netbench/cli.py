#!/usr/bin/env python3
"""netbench command line

    netbench [-udt|-tcp] [-v] [-bs N] <remote-address>
    netbench -s [-v] [-bs N] <rudp-address> <tcp-address>
    netbench -stress [-udt|-tcp] [-v] [-conns N] [-loops M] [-chunk C] [-seed S] <listen-address>
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional, TextIO

from netbench import transport
from netbench.benchmark import BenchmarkDriver
from netbench.config import RunConfig
from netbench.echo import EchoServer
from netbench.errors import ConfigError, IntegrityError, ProviderError, RunInterrupted
from netbench.log import setup_logger
from netbench.stress import StressHarness
from netbench.termination import Termination, install_abort_handler, install_signal_handlers, remove_signal_handlers
from netbench.transport import TransportKind


class UsageParser(argparse.ArgumentParser):
    # usage problems are configuration errors; main() reports them
    def error(self, message):
        raise ConfigError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = UsageParser(prog='netbench', allow_abbrev=False,
                         description='Throughput and stress benchmark for TCP and reliable UDP (rudp)')
    parser.add_argument('-s', '-server', dest='server', action='store_true',
                        help='Listen on both transports and echo everything back')
    parser.add_argument('-udt', action='store_true', help='Use the reliable-datagram transport')
    parser.add_argument('-tcp', action='store_true', help='Use the stream transport (default)')
    parser.add_argument('-net', default=None, help='Transport by name: tcp, rudp or udt')
    parser.add_argument('-v', dest='verbose', action='store_true', help='Verbose debug output')
    parser.add_argument('-bs', dest='block_size', type=int, default=RunConfig.block_size,
                        help=f'Block size for each read/write (default: {RunConfig.block_size})')
    parser.add_argument('-stress', action='store_true',
                        help='Run the concurrent integrity stress test against a local listener')
    parser.add_argument('-conns', dest='connections', type=int, default=RunConfig.connections,
                        help=f'Stress connections (default: {RunConfig.connections})')
    parser.add_argument('-loops', dest='iterations', type=int, default=RunConfig.iterations,
                        help=f'Stress iterations per connection (default: {RunConfig.iterations})')
    parser.add_argument('-chunk', dest='chunk_size', type=int, default=RunConfig.chunk_size,
                        help=f'Stress chunk size (default: {RunConfig.chunk_size})')
    parser.add_argument('-seed', type=int, default=RunConfig.seed, help='Stress source buffer seed')
    parser.add_argument('addresses', nargs='*', metavar='address', help='[host]:port')
    return parser


def parse_args(argv: Optional[List[str]] = None, log: Optional[logging.Logger] = None) -> RunConfig:
    """Turn command line arguments into a RunConfig

    Raises:
        ConfigError: Missing addresses or invalid values
    """
    args = build_parser().parse_args(argv)

    if args.block_size <= 0:
        raise ConfigError(f"block size must be positive, got {args.block_size}")
    if args.udt and args.tcp:
        raise ConfigError("-udt and -tcp are mutually exclusive")
    if args.udt:
        kind = TransportKind.RELIABLE_DATAGRAM
    elif args.tcp:
        kind = TransportKind.STREAM
    else:
        kind = TransportKind.parse(args.net, log)

    addresses = args.addresses
    if args.server:
        if len(addresses) < 2:
            raise ConfigError("listen mode needs <rudp-address> <tcp-address>")
        return RunConfig(listen=True, transport=kind, block_size=args.block_size,
                         rudp_address=addresses[0], tcp_address=addresses[1], verbose=args.verbose)

    if args.stress:
        if not addresses:
            raise ConfigError("stress mode needs <listen-address>")
        if min(args.connections, args.iterations, args.chunk_size) < 1:
            raise ConfigError("-conns, -loops and -chunk must be at least 1")
        return RunConfig(transport=kind, block_size=args.block_size, verbose=args.verbose,
                         stress=True, stress_address=addresses[0], connections=args.connections,
                         iterations=args.iterations, chunk_size=args.chunk_size, seed=args.seed)

    if not addresses:
        raise ConfigError("dial mode needs <remote-address>")
    return RunConfig(transport=kind, block_size=args.block_size, remote_address=addresses[0],
                     verbose=args.verbose)


async def serve(config: RunConfig, termination: Termination, logger: logging.Logger,
                out: Optional[TextIO] = None) -> None:
    """Echo on the rudp and the TCP address at once until termination"""
    out = out if out is not None else sys.stdout
    rudp_listener = await transport.listen(TransportKind.RELIABLE_DATAGRAM, config.rudp_address, logger)
    try:
        tcp_listener = await transport.listen(TransportKind.STREAM, config.tcp_address, logger)
    except ProviderError:
        await rudp_listener.close()
        raise
    servers = [
        EchoServer(rudp_listener, config.block_size, termination, logger),
        EchoServer(tcp_listener, config.block_size, termination, logger),
    ]
    logger.debug(f"rudp listening at {transport.format_address(rudp_listener.address)}, "
                 f"tcp listening at {transport.format_address(tcp_listener.address)}")
    tasks = [asyncio.ensure_future(server.serve()) for server in servers]
    try:
        await termination.wait()
        print("Quit now", file=out, flush=True)
    finally:
        termination.trigger()
        await asyncio.gather(*tasks, return_exceptions=True)


async def benchmark(config: RunConfig, termination: Termination, logger: logging.Logger,
                    out: Optional[TextIO] = None) -> None:
    logger.debug(f"{config.transport.value} dialing {config.remote_address}")
    connection = await transport.dial(config.transport, config.remote_address, logger)
    logger.debug(f"connected to {transport.format_address(connection.remote_address)}")
    driver = BenchmarkDriver(connection, config.block_size, termination, logger=logger, out=out)
    await driver.run()


async def stress(config: RunConfig, termination: Termination, logger: logging.Logger,
                 out: Optional[TextIO] = None) -> None:
    """Run the stress harness, abandoning it if termination fires first

    Raises:
        RunInterrupted: Termination fired before the harness finished
    """
    harness = StressHarness(config.transport, config.stress_address, connections=config.connections,
                            iterations=config.iterations, chunk_size=config.chunk_size,
                            seed=config.seed, logger=logger)
    running = asyncio.ensure_future(harness.run())
    stopping = asyncio.ensure_future(termination.wait())
    try:
        await asyncio.wait((running, stopping), return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopping.cancel()
        running.cancel()
        await asyncio.gather(running, stopping, return_exceptions=True)
    if running.cancelled():
        raise RunInterrupted(termination.reason)
    result = running.result()
    print(f"stress ok: {result.connections} connections x {result.iterations} iterations, "
          f"{result.bytes_verified} bytes verified in {result.elapsed:.2f} sec",
          file=out if out is not None else sys.stdout, flush=True)


async def run(config: RunConfig, logger: logging.Logger, termination: Optional[Termination] = None,
              out: Optional[TextIO] = None) -> None:
    """Run the mode selected by `config`

    Raises:
        ProviderError: A listener could not be bound or the remote could not be reached
        IntegrityError: The stress run failed
        RunInterrupted: A stress run was terminated before it finished
    """
    termination = termination or Termination()
    signals = install_signal_handlers(termination, log=logger)
    try:
        if config.stress:
            await stress(config, termination, logger, out)
        elif config.listen:
            await serve(config, termination, logger, out)
        else:
            await benchmark(config, termination, logger, out)
    finally:
        remove_signal_handlers(signals)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = parse_args(argv)
    except ConfigError as e:
        build_parser().print_usage(sys.stderr)
        print(f"netbench: error: {e}", file=sys.stderr)
        return 1

    logger = setup_logger(config.verbose)
    install_abort_handler(logger)
    try:
        asyncio.run(run(config, logger))
    except (ProviderError, ConfigError) as e:
        print(f"benchmark error: {e}", file=sys.stderr)
        return 1
    except IntegrityError as e:
        print(f"stress failed: {e}", file=sys.stderr)
        return 1
    except RunInterrupted as e:
        print(f"stress interrupted: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
