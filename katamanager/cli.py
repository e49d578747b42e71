import subprocess
import sys
from functools import wraps

import click
import structlog

from katamanager import __version__, runtimes
from katamanager.artifacts import ArtifactError
from katamanager.artifacts.transform import transform_config_file
from katamanager.config import ConfigError, Options, load_manager_config
from katamanager.config.defaults import (
    BACKENDS, CONTAINERD, DEFAULT_CONFIG_FILE, DEFAULT_GRACE_PERIOD,
    DEFAULT_HOST_ROOT, DEFAULT_SECRETS_DIR,
)
from katamanager.document import ConfigStructureError
from katamanager.lifecycle import LockError, new_lifecycle
from katamanager.signals import ShutdownRequested, SignalListener
from katamanager.utils.logging import configure_logging

logger = structlog.get_logger(__name__)

# Reported as a single error line and exit status 1
HANDLED_ERRORS = (
    ArtifactError,
    ConfigError,
    ConfigStructureError,
    LockError,
    OSError,
    ShutdownRequested,
    ValueError,
    runtimes.ConfigLoadError,
    runtimes.RestartError,
    subprocess.CalledProcessError,
)


def _fail(e):
    logger.error('kata_manager_failed', error=str(e))
    sys.exit(1)


def runtime_options(func):
    @click.option('--runtime', 'backend', envvar='RUNTIME',
                  type=click.Choice(BACKENDS), default=CONTAINERD,
                  show_default=True, help='Container runtime to configure')
    @click.option('--runtime-config', envvar='RUNTIME_CONFIG', default=None,
                  help='Runtime config file (empty string prints to stdout)')
    @click.option('--runtime-socket', envvar='RUNTIME_SOCKET', default=None,
                  help='containerd socket path')
    @click.option('--host-root', envvar='HOST_ROOT',
                  default=str(DEFAULT_HOST_ROOT), show_default=True,
                  help='Host root filesystem used for CRI-O commands')
    @click.option('--grace-period', envvar='GRACE_PERIOD', type=float,
                  default=DEFAULT_GRACE_PERIOD, show_default=True,
                  help='Seconds to absorb restart signals')
    @wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)
    return wrapper


def manager_options(func):
    @click.option('--config-file', '-c', envvar='CONFIG_FILE',
                  default=str(DEFAULT_CONFIG_FILE), show_default=True,
                  help='Path to the kata manager configuration file')
    @click.option('--namespace', '-n', envvar='POD_NAMESPACE', default=None,
                  help='Namespace holding artifact pull secrets')
    @click.option('--secrets-dir', envvar='SECRETS_DIR',
                  default=str(DEFAULT_SECRETS_DIR), show_default=True,
                  help='Directory where pull secrets are mounted')
    @runtime_options
    @wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)
    return wrapper


def _options(backend, runtime_config, runtime_socket, host_root,
             grace_period, namespace=None, secrets_dir=DEFAULT_SECRETS_DIR):
    return Options(
        backend=backend,
        runtime_config=runtime_config,
        runtime_socket=runtime_socket,
        host_root=host_root,
        grace_period=grace_period,
        namespace=namespace,
        secrets_dir=secrets_dir,
    )


@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', '-l', envvar='KATA_MANAGER_LOG_LEVEL',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                                case_sensitive=False),
              default='INFO', show_default=True)
@click.option('--log-format', envvar='KATA_MANAGER_LOG_FORMAT',
              type=click.Choice(['console', 'json']), default='console',
              show_default=True)
def cli(log_level, log_format):
    """Kata Containers runtime class manager."""
    configure_logging(level=log_level, fmt=log_format)


@cli.command('run')
@manager_options
def run_cmd(config_file, namespace, secrets_dir, **runtime_kwargs):
    """Install runtime classes, then revert them on shutdown."""
    logger.info('kata_manager_starting', version=__version__)
    try:
        options = _options(namespace=namespace, secrets_dir=secrets_dir, **runtime_kwargs)
        config = load_manager_config(config_file)
        logger.info('running_with_config', config=config.to_yaml())
        lifecycle = new_lifecycle(options, config)
        lifecycle.run()
    except HANDLED_ERRORS as e:
        _fail(e)
    finally:
        logger.info('exiting')


@cli.command('cleanup')
@manager_options
def cleanup_cmd(config_file, namespace, secrets_dir, **runtime_kwargs):
    """Remove configured runtime classes and restart the runtime."""
    try:
        options = _options(namespace=namespace, secrets_dir=secrets_dir, **runtime_kwargs)
        config = load_manager_config(config_file)
        lifecycle = new_lifecycle(options, config)
        lifecycle.clean_up()
    except HANDLED_ERRORS as e:
        _fail(e)


@cli.command('restart')
@runtime_options
def restart_cmd(**runtime_kwargs):
    """Restart the container runtime, absorbing its restart signals."""
    try:
        options = _options(**runtime_kwargs)
        with SignalListener() as listener, listener.shielded():
            runtime = runtimes.setup(options, listener=listener)
            runtime.restart()
    except HANDLED_ERRORS as e:
        _fail(e)


@cli.command('transform')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def transform_cmd(path):
    """Point a kata configuration at artifacts beside it."""
    try:
        transform_config_file(path)
    except HANDLED_ERRORS as e:
        _fail(e)


def main():
    cli()
