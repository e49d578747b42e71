"""
Shared pytest fixtures for kata manager tests.

Provides a recording command runner standing in for subprocess calls,
plus in-memory runtime and resolver doubles for lifecycle tests.
"""

import subprocess
from pathlib import Path

import pytest

from katamanager.config import Artifacts, ManagerConfig, RuntimeClass


class FakeRunner:
    """Records commands; replies with queued stdout or raises queued errors."""

    def __init__(self):
        self.calls = []
        self.replies = []

    def reply(self, stdout='', returncode=0):
        self.replies.append((stdout, returncode))

    def __call__(self, args, write_output=True, check=False, **kwargs):
        self.calls.append((list(args), kwargs))
        stdout, returncode = self.replies.pop(0) if self.replies else ('', 0)
        proc = subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr='')
        if check:
            proc.check_returncode()
        return proc


class FakeRuntime:
    backend = 'fake'

    def __init__(self, events, path='fake.toml'):
        self.events = events
        self.path = path
        self.added = []
        self.removed = []
        self.restart_hook = None

    def add_runtime(self, name, config_path, set_as_default=False):
        self.events.append(('add', name))
        self.added.append((name, config_path, set_as_default))

    def remove_runtime(self, name):
        self.events.append(('remove', name))
        self.removed.append(name)

    def reload(self):
        self.events.append(('reload',))

    def save(self):
        self.events.append(('save',))
        return 10

    def restart(self):
        self.events.append(('restart',))
        if self.restart_hook:
            self.restart_hook()


class FakeResolver:

    def __init__(self, events, root):
        self.events = events
        self.root = Path(root)
        self.error = None

    def prepare(self, runtime_class):
        self.events.append(('prepare', runtime_class.name))
        if self.error is not None:
            raise self.error
        return self.root / runtime_class.name / 'configuration.toml'


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def events():
    return []


@pytest.fixture
def manager_config(tmp_path):
    return ManagerConfig(
        artifacts_dir=tmp_path / 'artifacts',
        runtime_classes=[
            RuntimeClass('kata-qemu', Artifacts('nvcr.io/kata/qemu:1.0')),
            RuntimeClass('kata-snp', Artifacts('nvcr.io/kata/snp:1.0')),
        ],
    )


@pytest.fixture
def fake_runtime(events):
    return FakeRuntime(events)


@pytest.fixture
def fake_resolver(events, tmp_path):
    return FakeResolver(events, tmp_path / 'artifacts')
