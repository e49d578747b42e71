import enum
import fcntl
import os
from pathlib import Path

import structlog

from katamanager import runtimes
from katamanager.artifacts import ArtifactResolver
from katamanager.manager import KataManager
from katamanager.signals import ShutdownRequested, SignalListener, signal_name
from katamanager.utils import current_namespace, current_node_name, ensure_dirs

logger = structlog.get_logger(__name__)


class LockError(RuntimeError):

    def __init__(self, path, message):
        super().__init__(f"Unable to lock {str(path)!r}: {message}")
        self.path = path
        self.message = message


class PidFile(object):

    def __init__(self, path):
        self.path = Path(path)
        self._fd = None

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} path={str(self.path)!r} "
            f"locked={self.locked!r}>"
        )

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_value, tb):
        self.release()

    @property
    def locked(self):
        return self._fd is not None

    def acquire(self):
        if self.locked:
            return self

        # Not truncated until locked, the holder's pid stays readable
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            logger.warning('pid_file_locked', path=str(self.path))
            raise LockError(self.path, 'another instance is running') from e

        os.ftruncate(fd, 0)
        os.write(fd, f'{os.getpid()}\n'.encode())
        self._fd = fd

        return self

    def release(self):
        if not self.locked:
            return

        try:
            self.path.unlink()
        except OSError as e:
            logger.warning('pid_file_remove_failed', path=str(self.path), error=str(e))
        os.close(self._fd)
        self._fd = None


class State(enum.Enum):
    STARTING = 'starting'
    LOCKED = 'locked'
    INSTALLING = 'installing'
    RESTARTING = 'restarting'
    WAITING_FOR_SIGNAL = 'waiting-for-signal'
    REVERTING = 'reverting'
    RESTARTING_AGAIN = 'restarting-again'
    EXITED = 'exited'


class SignalLifecycle(object):
    '''
    Installs runtime classes, restarts the runtime, waits for a shutdown
    signal, then reverts and restarts again. One instance per artifacts
    directory, enforced through the pid file lock.
    '''

    def __init__(self, manager, pid_file, listener=None):
        self.manager = manager
        self.pid_file = PidFile(pid_file)
        self.listener = listener or SignalListener()
        self.state = State.STARTING
        self.shutdown_signal = None
        self.exited_early = False

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} state={self.state.value!r} "
            f"pid_file={str(self.pid_file.path)!r}>"
        )

    @property
    def runtime(self):
        return self.manager.runtime

    def _transition(self, state):
        logger.debug('lifecycle_transition', source=self.state.value, target=state.value)
        self.state = state

    def _restart(self):
        with self.listener.shielded():
            self.runtime.restart()

    def _revert_and_restart(self):
        self._transition(State.REVERTING)
        self.manager.revert()

        self._transition(State.RESTARTING_AGAIN)
        self._restart()

    def run(self):
        try:
            self.pid_file.acquire()
        except LockError:
            self._transition(State.EXITED)
            raise
        self._transition(State.LOCKED)

        try:
            with self.listener:
                self._transition(State.INSTALLING)
                try:
                    self.manager.install()
                    # Nothing but the armed wait may end the run from here on
                    self.listener.shielding = True
                except ShutdownRequested as e:
                    self.shutdown_signal = e.signum
                    if not self.manager.installed:
                        self.exited_early = True
                        logger.info('signal_received_exiting_early', signal=signal_name(e.signum))
                        return
                    # Runtime config may already be on disk
                    logger.info('signal_received_reverting', signal=signal_name(e.signum))
                else:
                    self._transition(State.RESTARTING)
                    self.runtime.restart()
                    self._transition(State.WAITING_FOR_SIGNAL)
                    self.shutdown_signal = self.listener.wait_for_shutdown()

                self._revert_and_restart()
        finally:
            logger.info('shutting_down')
            self.pid_file.release()
            self._transition(State.EXITED)

    def clean_up(self):
        with self.listener, self.listener.shielded():
            try:
                self._revert_and_restart()
            finally:
                self._transition(State.EXITED)


def new_lifecycle(options, config, listener=None):
    listener = listener or SignalListener()

    namespace = options.namespace or current_namespace()
    logger.info('node_context', node=current_node_name(), namespace=namespace)

    ensure_dirs([(config.artifacts_dir, 0o755)])
    runtime = runtimes.setup(options, listener=listener)
    resolver = ArtifactResolver(config.artifacts_dir, secrets_dir=options.secrets_dir)
    manager = KataManager(config, runtime, resolver)

    return SignalLifecycle(manager, options.pid_file_for(config), listener=listener)
