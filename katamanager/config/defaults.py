from pathlib import Path

MANAGER_NAME = 'k8s-kata-manager'

DEFAULT_CONFIG_FILE = Path('/etc/kubernetes/kata-manager/config.yaml')
DEFAULT_ARTIFACTS_DIR = Path('/opt/nvidia-gpu-operator/artifacts/runtimeclasses')
DEFAULT_SECRETS_DIR = Path('/var/run/secrets/kata-manager')
DEFAULT_HOST_ROOT = Path('/host')

CONTAINERD = 'containerd'
CRIO = 'crio'
BACKENDS = (CONTAINERD, CRIO)

DEFAULT_CONTAINERD_CONFIG = Path('/etc/containerd/config.toml')
DEFAULT_CONTAINERD_SOCKET = Path('/run/containerd/containerd.sock')
DEFAULT_CRIO_CONFIG = Path('/etc/crio/crio.conf.d/99-kata-manager.conf')

DEFAULT_RUNTIME_TYPE = 'io.containerd.kata.v2'
DEFAULT_POD_ANNOTATIONS = ('io.katacontainers.*',)

# Seconds a restart-triggered termination signal is absorbed for
DEFAULT_GRACE_PERIOD = 5.0


def default_runtime_config(backend):
    if backend == CONTAINERD:
        return DEFAULT_CONTAINERD_CONFIG
    if backend == CRIO:
        return DEFAULT_CRIO_CONFIG
    raise ValueError(f'Invalid runtime backend: {backend!r}')


def default_pid_file(artifacts_dir=None):
    if artifacts_dir is None:
        artifacts_dir = DEFAULT_ARTIFACTS_DIR
    return Path(artifacts_dir) / f'{MANAGER_NAME}.pid'


def default_manager_config():
    return {
        'artifactsDir': str(DEFAULT_ARTIFACTS_DIR),
        'runtimeClasses': [],
    }
