from pathlib import Path

import toml

from katamanager.utils.files import write_atomic


class ConfigStructureError(TypeError):

    def __init__(self, path, message=None):
        path = tuple(path)
        if message is None:
            message = f"Expected table at {'.'.join(path)!r}"
        super().__init__(message)
        self.path = path


def _split_path(path):
    if isinstance(path, str):
        return (path,)
    return tuple(path)


class ConfigDocument(object):
    '''
    Path-addressable tree of TOML tables, wrapping the plain dicts
    produced by the toml library.
    '''

    def __init__(self, data=None, source=None):
        self.data = data if data is not None else {}
        self.source = source

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} source={self.source!r} "
            f"keys={list(self.data.keys())!r}>"
        )

    def __eq__(self, other):
        if isinstance(other, ConfigDocument):
            return self.data == other.data
        return NotImplemented

    @classmethod
    def loads(cls, text, source=None):
        return cls(toml.loads(text), source=source)

    @classmethod
    def load(cls, path):
        path = Path(path)
        if path.is_dir():
            raise IsADirectoryError(f'Config path {str(path)!r} is a directory')
        try:
            text = path.read_text()
        except FileNotFoundError:
            # Missing file is the same as an empty one
            text = ''
        return cls.loads(text, source=str(path))

    def _walk(self, path):
        # Returns (table, key) for the last segment, or (None, key)
        # if an intermediate table is missing
        *parents, key = path
        node = self.data
        for depth, segment in enumerate(parents):
            if not isinstance(node, dict):
                raise ConfigStructureError(path[:depth])
            node = node.get(segment)
            if node is None:
                return None, key
        if not isinstance(node, dict):
            raise ConfigStructureError(parents)
        return node, key

    def get(self, path, default=None):
        path = _split_path(path)
        if not path:
            return self.data
        node = self.data
        for segment in path:
            if not isinstance(node, dict) or segment not in node:
                return default
            node = node[segment]
        return node

    def has_path(self, path):
        sentinel = object()
        return self.get(path, sentinel) is not sentinel

    def is_table(self, path):
        return isinstance(self.get(path), dict)

    def set(self, path, value):
        path = _split_path(path)
        if not path:
            raise ValueError('Cannot replace document root')
        node = self.data
        for depth, segment in enumerate(path[:-1]):
            child = node.get(segment)
            if child is None:
                child = node[segment] = {}
            elif not isinstance(child, dict):
                raise ConfigStructureError(path[:depth + 1])
            node = child
        node[path[-1]] = value

    def delete(self, path):
        path = _split_path(path)
        if not path:
            raise ValueError('Cannot delete document root')
        table, key = self._walk(path)
        if table is None or key not in table:
            raise KeyError('.'.join(path))
        return table.pop(key)

    def keys(self, path=()):
        node = self.get(path)
        if node is None:
            return []
        if not isinstance(node, dict):
            raise ConfigStructureError(_split_path(path))
        return list(node.keys())

    def copy(self, path=()):
        node = self.get(path)
        if not isinstance(node, dict):
            raise ConfigStructureError(_split_path(path))
        # Reparse from text so nothing is shared with the source table
        return toml.loads(toml.dumps(node))

    def is_empty(self):
        return not self.data

    def serialize(self):
        return toml.dumps(self.data)

    def write(self, path):
        '''
        Writes the serialized document to path, or removes path if the
        document is empty. Returns number of bytes written.
        '''
        path = Path(path)
        output = self.serialize()

        if not output:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            return 0

        write_atomic(path, output)

        return len(output.encode())
