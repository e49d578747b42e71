from pathlib import Path

import structlog
import yaml

from .defaults import (
    DEFAULT_CONTAINERD_SOCKET, DEFAULT_GRACE_PERIOD, DEFAULT_HOST_ROOT,
    DEFAULT_POD_ANNOTATIONS, DEFAULT_RUNTIME_TYPE, DEFAULT_SECRETS_DIR,
    BACKENDS, CONTAINERD, default_manager_config, default_pid_file,
    default_runtime_config,
)

logger = structlog.get_logger(__name__)


class ConfigError(ValueError):
    pass


class Artifacts(object):

    def __init__(self, url, pull_secret=None):
        self.url = url
        self.pull_secret = pull_secret or None

    def __repr__(self):
        return f"<{self.__class__.__name__} url={self.url!r}>"

    def __eq__(self, other):
        if not isinstance(other, Artifacts):
            return NotImplemented
        return (self.url, self.pull_secret) == (other.url, other.pull_secret)

    def to_dict(self):
        data = {'url': self.url}
        if self.pull_secret:
            data['pullSecret'] = self.pull_secret
        return data


class RuntimeClass(object):

    def __init__(self, name, artifacts, node_selector=None):
        self.name = name
        self.artifacts = artifacts
        self.node_selector = dict(node_selector or {})

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} name={self.name!r} "
            f"url={self.artifacts.url!r}>"
        )

    def __eq__(self, other):
        if not isinstance(other, RuntimeClass):
            return NotImplemented
        return (
            (self.name, self.artifacts, self.node_selector) ==
            (other.name, other.artifacts, other.node_selector)
        )

    @property
    def valid(self):
        return bool(self.name) and bool(self.artifacts.url)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ConfigError(f'Invalid runtime class entry: {data!r}')
        artifacts = data.get('artifacts') or {}
        if not isinstance(artifacts, dict):
            raise ConfigError(f'Invalid artifacts entry: {artifacts!r}')
        return cls(
            name=str(data.get('name') or ''),
            artifacts=Artifacts(
                url=str(artifacts.get('url') or ''),
                pull_secret=artifacts.get('pullSecret'),
            ),
            node_selector=data.get('nodeSelector'),
        )

    def to_dict(self):
        data = {'name': self.name, 'artifacts': self.artifacts.to_dict()}
        if self.node_selector:
            data['nodeSelector'] = dict(self.node_selector)
        return data


class ManagerConfig(object):

    def __init__(self, artifacts_dir, runtime_classes=None, path=None):
        self.artifacts_dir = Path(artifacts_dir)
        self.runtime_classes = list(runtime_classes or [])
        self.path = path

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} path={str(self.path)!r} "
            f"artifacts_dir={str(self.artifacts_dir)!r}>"
        )

    @classmethod
    def from_dict(cls, data, path=None):
        merged = default_manager_config()
        merged.update({k: v for k, v in data.items() if v is not None})

        classes = merged['runtimeClasses']
        if not isinstance(classes, list):
            raise ConfigError(f'runtimeClasses must be a list, not {classes!r}')

        return cls(
            artifacts_dir=merged['artifactsDir'],
            runtime_classes=[RuntimeClass.from_dict(rc) for rc in classes],
            path=path,
        )

    def to_dict(self):
        return {
            'artifactsDir': str(self.artifacts_dir),
            'runtimeClasses': [rc.to_dict() for rc in self.runtime_classes],
        }

    def to_yaml(self):
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    def sanitize(self):
        valid = []
        for rc in self.runtime_classes:
            if rc.valid:
                valid.append(rc)
            else:
                logger.warning('runtime_class_dropped', runtime_class=rc)
        self.runtime_classes = valid
        return self


def load_manager_config(path=None):
    if not path:
        logger.info('config_file_unset', using='defaults')
        return ManagerConfig.from_dict({}).sanitize()

    path = Path(path)
    try:
        text = path.read_text()
    except FileNotFoundError:
        logger.info('config_file_not_found', path=str(path), using='defaults')
        return ManagerConfig.from_dict({}, path=path).sanitize()
    except OSError as e:
        raise ConfigError(f'Error reading config file {str(path)!r}: {e}') from e

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f'Failed to parse config file {str(path)!r}: {e}') from e
    if not isinstance(data, dict):
        raise ConfigError(f'Config file {str(path)!r} must hold a mapping')

    logger.info('config_file_parsed', path=str(path))
    return ManagerConfig.from_dict(data, path=path).sanitize()


class Options(object):
    '''
    Process-wide settings for one manager run. Exactly one backend is
    selected; unset paths fall back to that backend's defaults.
    '''

    def __init__(self, backend=CONTAINERD, runtime_config=None,
                 runtime_socket=None, runtime_type=DEFAULT_RUNTIME_TYPE,
                 pod_annotations=DEFAULT_POD_ANNOTATIONS,
                 host_root=DEFAULT_HOST_ROOT, secrets_dir=DEFAULT_SECRETS_DIR,
                 grace_period=DEFAULT_GRACE_PERIOD, namespace=None,
                 pid_file=None):
        if backend not in BACKENDS:
            raise ConfigError(f'Invalid runtime backend: {backend!r}')
        self.backend = backend
        if runtime_config is None:
            runtime_config = default_runtime_config(backend)
        # Empty string selects dry-run output to stdout
        self.runtime_config = str(runtime_config) if runtime_config else ''
        if runtime_socket is None:
            runtime_socket = DEFAULT_CONTAINERD_SOCKET
        self.runtime_socket = str(runtime_socket)
        self.runtime_type = runtime_type
        self.pod_annotations = list(pod_annotations or [])
        self.host_root = Path(host_root) if host_root else None
        self.secrets_dir = Path(secrets_dir)
        self.grace_period = float(grace_period)
        self.namespace = namespace
        self.pid_file = pid_file

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} backend={self.backend!r} "
            f"runtime_config={self.runtime_config!r}>"
        )

    def pid_file_for(self, config):
        if self.pid_file:
            return Path(self.pid_file)
        return default_pid_file(config.artifacts_dir)
