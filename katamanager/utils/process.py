import subprocess

import structlog

logger = structlog.get_logger(__name__)


def simple_command(args, write_output=True, check=False, **kwargs):
    p = subprocess.run(args, capture_output=True, text=True, **kwargs)

    if write_output:
        if p.stdout:
            logger.info('command_output', command=args[0], stdout=p.stdout.rstrip())
        if p.stderr:
            logger.info('command_output', command=args[0], stderr=p.stderr.rstrip())

    if check:
        p.check_returncode()

    return p


def host_command(args, host_root=None):
    # Run inside the host's root filesystem when mounted into the container
    if host_root:
        return ['chroot', str(host_root), *args]
    return list(args)
