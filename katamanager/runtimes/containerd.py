import os
import signal
import socket
import struct
import time

import structlog
import toml

from katamanager.config.defaults import (
    DEFAULT_CONTAINERD_SOCKET, DEFAULT_GRACE_PERIOD, DEFAULT_RUNTIME_TYPE,
)
from katamanager.document import ConfigDocument, ConfigStructureError
from .base import ConfigLoadError, RestartError, Runtime

logger = structlog.get_logger(__name__)

# Runtime whose settings seed new entries when present
TEMPLATE_RUNTIME = 'kata-qemu-nvidia-gpu'

# Version 1 is deprecated; absent a version field assume 2
DEFAULT_CONFIG_VERSION = 2

CRI_PLUGINS = {
    2: 'io.containerd.grpc.v1.cri',
    3: 'io.containerd.cri.v1.runtime',
}

RELOAD_ATTEMPTS = 6
RELOAD_BACKOFF = 5.0


def resolve_config_version(document, default=DEFAULT_CONFIG_VERSION):
    version = document.get('version')
    if isinstance(version, int) and not isinstance(version, bool):
        return version
    logger.info('config_version_assumed', version=default)
    return default


def plugin_path(version):
    # v3 configs may also carry "io.containerd.cri.v1", but runtimes
    # are only read from the ".runtime" plugin
    plugin = CRI_PLUGINS[3] if version >= 3 else CRI_PLUGINS[2]
    return ('plugins', plugin, 'containerd')


def socket_peer_pid(socket_path):
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(str(socket_path))
        creds = sock.getsockopt(
            socket.SOL_SOCKET, socket.SO_PEERCRED, struct.calcsize('3i')
        )
    pid, _, _ = struct.unpack('3i', creds)
    return pid


def signal_containerd(socket_path, attempts=RELOAD_ATTEMPTS,
                      backoff=RELOAD_BACKOFF):
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            pid = socket_peer_pid(socket_path)
            os.kill(pid, signal.SIGHUP)
        except OSError as e:
            last_error = e
            logger.warning(
                'containerd_signal_failed', attempt=attempt,
                socket=str(socket_path), error=str(e),
            )
            if attempt < attempts:
                time.sleep(backoff)
            continue
        logger.info('containerd_signalled', pid=pid, signal='SIGHUP')
        return pid

    raise RestartError(
        'containerd', f'no response on {str(socket_path)!r}: {last_error}'
    ) from last_error


class ContainerdRuntime(Runtime):

    backend = 'containerd'
    version_key = 'version'

    def __init__(self, document, path='', socket=DEFAULT_CONTAINERD_SOCKET,
                 runtime_type=DEFAULT_RUNTIME_TYPE, pod_annotations=(),
                 listener=None, grace_period=DEFAULT_GRACE_PERIOD):
        super().__init__(
            document, path=path, runtime_type=runtime_type,
            pod_annotations=pod_annotations,
        )
        self.socket = str(socket)
        self.listener = listener
        self.grace_period = grace_period
        self._version = None

    @classmethod
    def from_path(cls, path, **kwargs):
        runtime = cls(None, path=path, **kwargs)
        runtime.reload()
        return runtime

    def load_document(self):
        if not self.path:
            return ConfigDocument()
        logger.info('loading_config', backend=self.backend, path=self.path)
        try:
            return ConfigDocument.load(self.path)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigLoadError(f'Failed to load config {self.path!r}: {e}') from e

    @property
    def version(self):
        # Resolved once; must not change mid-run
        if self._version is None:
            self._version = resolve_config_version(self._require_document())
        return self._version

    def runtime_path(self, name, *subpath):
        return (*plugin_path(self.version), 'runtimes', name, *subpath)

    def default_runtime_path(self):
        return (*plugin_path(self.version), 'default_runtime_name')

    def _merged_annotations(self, path):
        annotations = list(self.pod_annotations)
        existing = self.document.get(path)
        if existing is None:
            return annotations
        if not isinstance(existing, list):
            raise ConfigStructureError(path, f'Invalid annotations: {existing!r}')
        for annotation in existing:
            if not isinstance(annotation, str):
                raise ConfigStructureError(path, f'Invalid annotation: {annotation!r}')
            if annotation not in annotations:
                annotations.append(annotation)
        return annotations

    def add_runtime(self, name, config_path, set_as_default=False):
        document = self._require_document()
        runtime_path = self.runtime_path(name)
        logger.info(
            'adding_runtime', backend=self.backend, name=name,
            version=self.version,
        )

        template_path = self.runtime_path(TEMPLATE_RUNTIME)
        if document.is_table(template_path):
            document.set(runtime_path, document.copy(template_path))

        if not document.has_path(runtime_path):
            document.set(runtime_path + ('runtime_type',), self.runtime_type)
            document.set(runtime_path + ('privileged_without_host_devices',), True)

        annotations_path = runtime_path + ('pod_annotations',)
        document.set(annotations_path, self._merged_annotations(annotations_path))
        document.set(runtime_path + ('options', 'ConfigPath'), str(config_path))

        if set_as_default:
            document.set(self.default_runtime_path(), name)

    def _restart(self):
        return signal_containerd(self.socket)

    def restart(self):
        logger.info('restarting_runtime', backend=self.backend, socket=self.socket)
        if self.listener is not None and self.listener.active:
            self.listener.shield(self._restart, self.grace_period)
        else:
            self._restart()
        logger.info('runtime_restarted', backend=self.backend)
