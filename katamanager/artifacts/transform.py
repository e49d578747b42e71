from pathlib import Path

import structlog
import toml

from katamanager.document import ConfigDocument, ConfigStructureError
from katamanager.utils import write_atomic

logger = structlog.get_logger(__name__)

ARTIFACT_KEYS = ('kernel', 'image', 'initrd')


def transform_artifacts_root(document, target_root):
    '''
    Points each hypervisor's kernel, image and initrd at target_root,
    keeping their file names. Returns the paths changed.
    '''
    changed = []

    for hypervisor in document.keys('hypervisor'):
        if not document.is_table(('hypervisor', hypervisor)):
            continue
        for key in ARTIFACT_KEYS:
            path = ('hypervisor', hypervisor, key)
            value = document.get(path)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ConfigStructureError(path, f'Invalid artifact path: {value!r}')
            document.set(path, str(Path(target_root) / Path(value).name))
            changed.append(path)

    return changed


def transform_config_file(path):
    path = Path(path)
    try:
        document = ConfigDocument.load(path)
    except toml.TomlDecodeError as e:
        raise ValueError(f'Error reading TOML file {str(path)!r}: {e}') from e

    changed = transform_artifacts_root(document, path.parent)

    output = document.serialize()
    if not output:
        raise ValueError(f'Empty kata configuration: {str(path)!r}')

    write_atomic(path, output)
    logger.info('kata_config_transformed', path=str(path), updated=len(changed))

    return path
