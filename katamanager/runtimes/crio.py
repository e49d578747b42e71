import subprocess

import structlog
import toml

from katamanager.config.defaults import DEFAULT_HOST_ROOT
from katamanager.document import ConfigDocument
from katamanager.utils import host_command, simple_command
from .base import ConfigLoadError, RestartError, Runtime

logger = structlog.get_logger(__name__)

# Low-level runtime whose settings seed new entries
DEFAULT_CRIO_RUNTIME = 'crun'

RUNTIME_ROOT = ('crio', 'runtime')


class CrioRuntime(Runtime):

    backend = 'crio'

    def __init__(self, document, path='', host_root=DEFAULT_HOST_ROOT,
                 runner=None):
        super().__init__(document, path=path, runtime_type='vm')
        self.host_root = host_root
        self.runner = runner or simple_command

    @classmethod
    def from_host(cls, path, **kwargs):
        runtime = cls(None, path=path, **kwargs)
        runtime.reload()
        return runtime

    def load_document(self):
        logger.info('loading_config', backend=self.backend, path=self.path)
        args = host_command(['crio', 'status', 'config'], self.host_root)
        try:
            proc = self.runner(args, write_output=False, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise ConfigLoadError(f'Error getting crio config: {e}') from e
        try:
            return ConfigDocument.loads(proc.stdout, source='crio status config')
        except toml.TomlDecodeError as e:
            raise ConfigLoadError(f'Failed to parse crio config: {e}') from e

    def runtime_path(self, name, *subpath):
        return (*RUNTIME_ROOT, 'runtimes', name, *subpath)

    def default_runtime_path(self):
        return (*RUNTIME_ROOT, 'default_runtime')

    def _template_names(self):
        names = []
        configured = self.default_runtime()
        if configured:
            names.append(configured)
        if DEFAULT_CRIO_RUNTIME not in names:
            names.append(DEFAULT_CRIO_RUNTIME)
        return names

    def add_runtime(self, name, config_path, set_as_default=False):
        document = self._require_document()
        runtime_path = self.runtime_path(name)
        logger.info('adding_runtime', backend=self.backend, name=name)

        for template in self._template_names():
            template_path = self.runtime_path(template)
            if document.is_table(template_path):
                document.set(runtime_path, document.copy(template_path))
                break

        document.set(runtime_path + ('runtime_path',), str(config_path))
        document.set(runtime_path + ('runtime_type',), self.runtime_type)
        # Overrides the template, kata VMs never get host devices
        document.set(runtime_path + ('privileged_without_host_devices',), 'true')

        if set_as_default:
            document.set(self.default_runtime_path(), name)

    def restart(self):
        logger.info('restarting_runtime', backend=self.backend, via='systemd')
        args = host_command(['systemctl', 'restart', 'crio'], self.host_root)
        try:
            self.runner(args, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise RestartError(self.backend, f'systemd restart failed: {e}') from e
        logger.info('runtime_restarted', backend=self.backend)
