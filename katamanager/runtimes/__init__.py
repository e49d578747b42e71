from katamanager.config.defaults import CONTAINERD, CRIO
from .base import ConfigLoadError, RestartError, Runtime
from .containerd import ContainerdRuntime
from .crio import CrioRuntime


def setup(options, listener=None):
    if options.backend == CONTAINERD:
        return ContainerdRuntime.from_path(
            options.runtime_config,
            socket=options.runtime_socket,
            runtime_type=options.runtime_type,
            pod_annotations=options.pod_annotations,
            listener=listener,
            grace_period=options.grace_period,
        )
    if options.backend == CRIO:
        return CrioRuntime.from_host(
            options.runtime_config,
            host_root=options.host_root,
        )
    raise ValueError(f'Invalid runtime backend: {options.backend!r}')
