import asyncio
import logging
import os
import signal
from typing import Optional

# Signals that request an orderly shutdown, where the platform has them
GRACEFUL_SIGNALS = tuple(
    getattr(signal, name) for name in ('SIGHUP', 'SIGINT', 'SIGTERM', 'SIGQUIT') if hasattr(signal, name))


class Termination:
    """One-shot shutdown request shared by every task of a run

    Triggering is idempotent; the first reason wins.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def trigger(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def install_signal_handlers(termination: Termination, loop: Optional[asyncio.AbstractEventLoop] = None,
                            log: Optional[logging.Logger] = None) -> list:
    """Route the graceful shutdown signals into `termination`

    Returns:
        The signals that were installed, so callers can remove them again
    """
    loop = loop or asyncio.get_running_loop()
    log = log or logging.getLogger(__name__)
    installed = []
    for signum in GRACEFUL_SIGNALS:
        name = signal.Signals(signum).name
        try:
            loop.add_signal_handler(signum, _on_signal, termination, name, log)
        except (NotImplementedError, RuntimeError) as e:
            log.debug(f"cannot handle {name}: {e}")
            continue
        installed.append(signum)
    return installed


def remove_signal_handlers(signals: list, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    loop = loop or asyncio.get_running_loop()
    for signum in signals:
        loop.remove_signal_handler(signum)


def _on_signal(termination: Termination, name: str, log: logging.Logger) -> None:
    log.debug(f"received {name}")
    termination.trigger(name)


def install_abort_handler(log: logging.Logger) -> None:
    """SIGABRT skips the orderly shutdown and kills the process at once"""
    if not hasattr(signal, 'SIGABRT'):
        return

    def handler(signum, frame):
        log.critical("ABORT! ABORT! ABORT!")
        signal.signal(signal.SIGABRT, signal.SIG_DFL)
        os.abort()

    signal.signal(signal.SIGABRT, handler)
