"""
Tests for containerd runtime registration.
"""

import pytest

from katamanager.document import ConfigDocument, ConfigStructureError
from katamanager.runtimes import ConfigLoadError, RestartError
from katamanager.runtimes import containerd
from katamanager.runtimes.containerd import ContainerdRuntime

V2_PLUGIN = ('plugins', 'io.containerd.grpc.v1.cri', 'containerd')
V3_PLUGIN = ('plugins', 'io.containerd.cri.v1.runtime', 'containerd')

ANNOTATIONS = ['io.katacontainers.*']


def make_runtime(data=None, path='', **kwargs):
    kwargs.setdefault('pod_annotations', ANNOTATIONS)
    return ContainerdRuntime(ConfigDocument(data), path=path, **kwargs)


class TestVersion:

    def test_absent_version_defaults_to_2(self):
        runtime = make_runtime()
        assert runtime.version == 2
        assert runtime.runtime_path('kata')[:3] == V2_PLUGIN

    def test_version_3_plugin(self):
        runtime = make_runtime({'version': 3})
        assert runtime.runtime_path('kata') == V3_PLUGIN + ('runtimes', 'kata')
        assert runtime.default_runtime_path() == V3_PLUGIN + ('default_runtime_name',)

    def test_version_cached_across_reload(self):
        runtime = make_runtime({'version': 3})
        assert runtime.version == 3
        runtime.document = ConfigDocument()
        assert runtime.runtime_path('kata')[:3] == V3_PLUGIN


class TestAddRuntime:

    def test_add_to_empty(self):
        runtime = make_runtime()
        runtime.add_runtime('kata-qemu', '/opt/kata/qemu.toml')

        entry = runtime.document.get(V2_PLUGIN + ('runtimes', 'kata-qemu'))
        assert entry == {
            'runtime_type': 'io.containerd.kata.v2',
            'privileged_without_host_devices': True,
            'pod_annotations': ANNOTATIONS,
            'options': {'ConfigPath': '/opt/kata/qemu.toml'},
        }
        assert runtime.default_runtime() == ''
        assert 'version' not in runtime.document.data

    def test_add_is_idempotent(self):
        runtime = make_runtime({'version': 2})
        runtime.add_runtime('kata', '/a.toml')
        first = runtime.document.serialize()
        runtime.add_runtime('kata', '/a.toml')
        assert runtime.document.serialize() == first

    def test_set_as_default(self):
        runtime = make_runtime()
        runtime.add_runtime('kata', '/a.toml', set_as_default=True)
        assert runtime.default_runtime() == 'kata'

    def test_template_cloned(self):
        template = {
            'runtime_type': 'io.containerd.kata-nvidia.v2',
            'pod_annotations': ['nvidia.com/*'],
            'options': {'ConfigPath': '/old.toml', 'Debug': True},
        }
        runtime = make_runtime({'version': 2, 'plugins': {
            'io.containerd.grpc.v1.cri': {'containerd': {'runtimes': {
                'kata-qemu-nvidia-gpu': template,
            }}},
        }})
        runtime.add_runtime('kata-new', '/new.toml')

        entry = runtime.document.get(V2_PLUGIN + ('runtimes', 'kata-new'))
        assert entry['runtime_type'] == 'io.containerd.kata-nvidia.v2'
        assert entry['options'] == {'ConfigPath': '/new.toml', 'Debug': True}
        assert entry['pod_annotations'] == ['io.katacontainers.*', 'nvidia.com/*']
        assert 'privileged_without_host_devices' not in entry
        # Template itself untouched
        assert runtime.document.get(
            V2_PLUGIN + ('runtimes', 'kata-qemu-nvidia-gpu', 'options', 'ConfigPath')
        ) == '/old.toml'

    def test_invalid_annotations(self):
        runtime = make_runtime({'plugins': {
            'io.containerd.grpc.v1.cri': {'containerd': {'runtimes': {
                'kata': {'pod_annotations': 'io.katacontainers.*'},
            }}},
        }})
        with pytest.raises(ConfigStructureError):
            runtime.add_runtime('kata', '/a.toml')

    def test_scalar_plugin_table(self):
        runtime = make_runtime({'plugins': 'broken'})
        with pytest.raises(ConfigStructureError):
            runtime.add_runtime('kata', '/a.toml')


class TestRemoveRuntime:

    def test_add_then_remove_restores_empty(self):
        runtime = make_runtime()
        runtime.add_runtime('kata', '/a.toml', set_as_default=True)
        runtime.remove_runtime('kata')
        assert runtime.document.is_empty()

    def test_add_then_remove_drops_lone_version(self):
        runtime = make_runtime({'version': 3})
        runtime.add_runtime('kata', '/a.toml')
        runtime.remove_runtime('kata')
        assert runtime.document.is_empty()

    def test_version_kept_beside_other_settings(self):
        runtime = make_runtime({'version': 2, 'root': '/var/lib/containerd'})
        runtime.add_runtime('kata', '/a.toml')
        runtime.remove_runtime('kata')
        assert runtime.document.data == {'version': 2, 'root': '/var/lib/containerd'}

    def test_sibling_stops_pruning(self):
        runtime = make_runtime({'version': 2})
        runtime.add_runtime('runc', '/runc.toml')
        runtime.add_runtime('kata', '/a.toml')
        runtime.remove_runtime('kata')
        assert runtime.document.keys(V2_PLUGIN + ('runtimes',)) == ['runc']

    def test_default_cleared_only_when_removed(self):
        runtime = make_runtime()
        runtime.add_runtime('runc', '/runc.toml', set_as_default=True)
        runtime.add_runtime('kata', '/a.toml')
        runtime.remove_runtime('kata')
        assert runtime.default_runtime() == 'runc'
        runtime.remove_runtime('runc')
        assert runtime.default_runtime() == ''

    def test_remove_missing_is_noop(self):
        runtime = make_runtime({'version': 2, 'root': '/x'})
        runtime.remove_runtime('kata')
        assert runtime.document.data == {'version': 2, 'root': '/x'}

    def test_remove_unloaded(self):
        runtime = ContainerdRuntime(None)
        runtime.remove_runtime('kata')
        assert runtime.document is None


class TestSave:

    def test_round_trip_file(self, tmp_path):
        path = tmp_path / 'config.toml'
        path.write_text('version = 2\n')
        runtime = ContainerdRuntime.from_path(path, pod_annotations=ANNOTATIONS)
        runtime.add_runtime('kata', '/a.toml')
        assert runtime.save() > 0

        reloaded = ContainerdRuntime.from_path(path)
        assert reloaded.document.has_path(V2_PLUGIN + ('runtimes', 'kata'))

    def test_save_empty_removes_file(self, tmp_path):
        path = tmp_path / 'config.toml'
        runtime = ContainerdRuntime.from_path(path, pod_annotations=ANNOTATIONS)
        runtime.add_runtime('kata', '/a.toml')
        runtime.save()
        assert path.exists()

        runtime.reload()
        runtime.remove_runtime('kata')
        assert runtime.save() == 0
        assert not path.exists()

    def test_dry_run_prints(self, capsys):
        runtime = ContainerdRuntime.from_path('', pod_annotations=ANNOTATIONS)
        runtime.add_runtime('kata', '/a.toml')
        n = runtime.save()
        out = capsys.readouterr().out
        assert n > 0
        assert 'ConfigPath = "/a.toml"' in out

    def test_dry_run_counts_bytes(self, capsys):
        runtime = ContainerdRuntime.from_path('', pod_annotations=ANNOTATIONS)
        runtime.add_runtime('kata', '/opt/kätä/configuration.toml')
        serialized = runtime.document.serialize()
        assert runtime.save() == len(serialized.encode()) > len(serialized)
        assert 'kätä' in capsys.readouterr().out

    def test_save_unloaded(self):
        with pytest.raises(ValueError):
            ContainerdRuntime(None).save()

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / 'config.toml'
        path.write_text('version = = 2\n')
        with pytest.raises(ConfigLoadError):
            ContainerdRuntime.from_path(path)


class TestRestart:

    def test_retries_until_signalled(self, monkeypatch):
        attempts = []
        killed = []

        def peer_pid(socket_path):
            attempts.append(socket_path)
            if len(attempts) < 3:
                raise ConnectionRefusedError('not yet')
            return 4242

        monkeypatch.setattr(containerd, 'socket_peer_pid', peer_pid)
        monkeypatch.setattr(containerd.os, 'kill', lambda pid, sig: killed.append((pid, sig)))

        assert containerd.signal_containerd('/run/c.sock', attempts=6, backoff=0) == 4242
        assert len(attempts) == 3
        assert killed == [(4242, containerd.signal.SIGHUP)]

    def test_gives_up(self, monkeypatch):
        def peer_pid(socket_path):
            raise FileNotFoundError(socket_path)

        monkeypatch.setattr(containerd, 'socket_peer_pid', peer_pid)
        with pytest.raises(RestartError) as exc:
            containerd.signal_containerd('/run/c.sock', attempts=2, backoff=0)
        assert exc.value.backend == 'containerd'
        assert isinstance(exc.value.__cause__, FileNotFoundError)

    def test_restart_without_listener(self, monkeypatch):
        sockets = []
        monkeypatch.setattr(containerd, 'signal_containerd', sockets.append)
        runtime = make_runtime(socket='/run/c.sock')
        runtime.restart()
        assert sockets == ['/run/c.sock']
