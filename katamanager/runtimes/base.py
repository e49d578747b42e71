import sys

import structlog

from katamanager.document import ConfigStructureError

logger = structlog.get_logger(__name__)


class ConfigLoadError(RuntimeError):
    pass


class RestartError(RuntimeError):

    def __init__(self, backend, message):
        super().__init__(f"Unable to restart {backend}: {message}")
        self.backend = backend
        self.message = message


class Runtime(object):
    '''
    A container engine's live configuration, with a named Kata runtime
    added to or removed from it. Nothing is written until save().
    '''

    backend = None
    # Root key kept only while other settings exist
    version_key = None

    def __init__(self, document, path='', runtime_type=None,
                 pod_annotations=()):
        self.document = document
        self.path = str(path) if path else ''
        self.runtime_type = runtime_type
        self.pod_annotations = list(pod_annotations or [])

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} path={self.path!r} "
            f"runtime_type={self.runtime_type!r}>"
        )

    def runtime_path(self, name, *subpath):
        raise NotImplementedError

    def default_runtime_path(self):
        raise NotImplementedError

    def load_document(self):
        raise NotImplementedError

    def reload(self):
        self.document = self.load_document()
        return self.document

    def _require_document(self):
        if self.document is None:
            raise ValueError(f'{self.backend} config is not loaded')
        return self.document

    def add_runtime(self, name, config_path, set_as_default=False):
        raise NotImplementedError

    def default_runtime(self):
        if self.document is None:
            return ''
        value = self.document.get(self.default_runtime_path())
        return value if isinstance(value, str) else ''

    def remove_runtime(self, name):
        if self.document is None:
            return

        document = self.document
        runtime_path = self.runtime_path(name)
        if document.has_path(runtime_path):
            document.delete(runtime_path)

        default_path = self.default_runtime_path()
        if document.get(default_path) == name:
            document.delete(default_path)

        self._prune(runtime_path[:-1])

        if self.version_key and document.keys() == [self.version_key]:
            document.delete(self.version_key)

        logger.info('runtime_removed', backend=self.backend, name=name)

    def _prune(self, path):
        for depth in range(len(path), 0, -1):
            prefix = path[:depth]
            node = self.document.get(prefix)
            if node is None:
                continue
            if not isinstance(node, dict):
                raise ConfigStructureError(prefix)
            if node:
                break
            self.document.delete(prefix)

    def save(self):
        document = self._require_document()

        if not self.path:
            output = document.serialize()
            sys.stdout.write(f'{output}\n')
            sys.stdout.flush()
            return len(output.encode())

        return document.write(self.path)

    def restart(self):
        raise NotImplementedError
