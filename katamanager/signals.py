import select
import signal
import socket
import threading
import time
from concurrent.futures import Future
from contextlib import contextmanager

import structlog

logger = structlog.get_logger(__name__)

SHUTDOWN_SIGNALS = (
    signal.SIGHUP,
    signal.SIGINT,
    signal.SIGQUIT,
    signal.SIGPIPE,
    signal.SIGTERM,
)

# Signals a runtime restart may send our way
RESTART_SIGNALS = (
    signal.SIGTERM,
    signal.SIGHUP,
)


def signal_name(signum):
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class ShutdownRequested(Exception):

    def __init__(self, signum):
        super().__init__(f"Received signal {signal_name(signum)}")
        self.signum = signum


class SignalListener(object):
    '''
    Delivers process signals as messages read from a socketpair (via
    the interpreter's wakeup fd) instead of acting on them inside the
    handler.

    While neither `shielding` nor `armed` is set, the handler arms the
    listener and raises ShutdownRequested in the main thread, for an
    immediate exit.
    '''

    def __init__(self, signals=SHUTDOWN_SIGNALS, restart_signals=RESTART_SIGNALS):
        self.signals = tuple(signals)
        self.restart_signals = tuple(restart_signals)
        # Only mutated from the main thread
        self.shielding = False
        self.armed = False
        self._handlers = {}
        self._old_wakeup_fd = None
        self._rsock = None
        self._wsock = None

    def __repr__(self):
        names = ','.join(signal_name(s) for s in self.signals)
        return (
            f"<{self.__class__.__name__} signals={names} "
            f"shielding={self.shielding!r} armed={self.armed!r}>"
        )

    def __enter__(self):
        return self.setup()

    def __exit__(self, exc_type, exc_value, tb):
        self.restore()

    @property
    def active(self):
        return self._rsock is not None

    def _handle_signal(self, signum, frame):
        # Wakeup fd has already queued signum for any listener
        if self.shielding or self.armed:
            return
        # Later signals queue up while this one is handled
        self.armed = True
        raise ShutdownRequested(signum)

    def setup(self):
        if self.active:
            return self

        self._rsock, self._wsock = socket.socketpair()
        # Write end of self-pipe must be non-blocking
        self._wsock.setblocking(False)
        self._old_wakeup_fd = signal.set_wakeup_fd(self._wsock.fileno())

        for sig in self.signals:
            # Store old handler for later
            self._handlers[sig] = signal.signal(sig, self._handle_signal)

        return self

    def restore(self):
        for sig in list(self._handlers.keys()):
            handler = self._handlers.pop(sig)
            signal.signal(sig, handler)

        if self._old_wakeup_fd is not None:
            signal.set_wakeup_fd(self._old_wakeup_fd)
            self._old_wakeup_fd = None

        if self._rsock is not None:
            self._rsock.close()
        if self._wsock is not None:
            self._wsock.close()
        self._rsock, self._wsock = None, None
        self.shielding = False
        self.armed = False

    def receive(self, timeout=None):
        '''
        Returns the next listened-for signal number, or None once
        timeout (in seconds) expires.
        '''
        if not self.active:
            raise RuntimeError('Signal listener not set up')

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None
            if deadline is not None:
                remaining = max(deadline - time.monotonic(), 0)
            readable, _, _ = select.select([self._rsock], [], [], remaining)
            if not readable:
                return None
            data = self._rsock.recv(1)
            # Skip wakeup bytes for signals handled elsewhere
            if data and data[0] in self.signals:
                return data[0]

    def drain(self):
        received = []
        while True:
            signum = self.receive(timeout=0)
            if signum is None:
                return received
            received.append(signum)

    @contextmanager
    def shielded(self):
        previous = self.shielding
        self.shielding = True
        try:
            yield self
        finally:
            self.shielding = previous

    def shield(self, func, grace_period):
        '''
        Runs func in a background thread, absorbing signals until it has
        finished and no restart signal has been seen for grace_period
        seconds. Returns func's result or raises its exception.
        '''
        if not self.active:
            raise RuntimeError('Signal listener not set up')

        future = Future()

        def _run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(func())
            except BaseException as e:
                future.set_exception(e)

        with self.shielded():
            thread = threading.Thread(target=_run, name='shielded-call', daemon=True)
            thread.start()

            deadline = time.monotonic() + grace_period
            while True:
                if future.done():
                    if future.exception() is not None:
                        break
                    if time.monotonic() >= deadline:
                        break
                remaining = deadline - time.monotonic()
                # Keep polling the call if it outlives the window
                timeout = remaining if remaining > 0 else 0.1
                signum = self.receive(timeout=timeout)
                if signum is None:
                    continue
                if signum in self.restart_signals:
                    logger.info('restart_signal_absorbed', signal=signal_name(signum))
                    deadline = time.monotonic() + grace_period
                else:
                    logger.info('signal_ignored_during_restart', signal=signal_name(signum))

            thread.join()

        return future.result()

    def wait_for_shutdown(self):
        '''
        Arms the shutdown guard and blocks until a listened-for signal
        arrives. Signals received before arming are discarded.
        '''
        if not self.active:
            raise RuntimeError('Signal listener not set up')

        previous = self.shielding
        self.shielding = True
        try:
            for signum in self.drain():
                logger.info('stale_signal_discarded', signal=signal_name(signum))
            self.armed = True
        finally:
            self.shielding = previous

        logger.info('waiting_for_signal')
        signum = self.receive()
        logger.info('signal_received', signal=signal_name(signum))
        return signum
