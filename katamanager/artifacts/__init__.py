from pathlib import Path

import structlog

from katamanager.utils import ensure_dirs, find_config_file
from .credentials import Credentials, load_credentials
from .oras import Artifact, ArtifactError, parse_reference
from .transform import transform_config_file

logger = structlog.get_logger(__name__)


class ArtifactResolver(object):
    '''
    Fetches a runtime class's artifacts into {artifacts_dir}/{name} and
    returns the path of the kata configuration file found there.
    '''

    def __init__(self, artifacts_dir, secrets_dir=None, runner=None,
                 config_pattern='*.toml'):
        self.artifacts_dir = Path(artifacts_dir)
        self.secrets_dir = secrets_dir
        self.runner = runner
        self.config_pattern = config_pattern

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} "
            f"artifacts_dir={str(self.artifacts_dir)!r}>"
        )

    def credentials(self, runtime_class):
        if self.secrets_dir is None:
            return None
        return load_credentials(runtime_class, self.secrets_dir)

    def prepare(self, runtime_class):
        rc_dir = self.artifacts_dir / runtime_class.name
        ensure_dirs([(rc_dir, 0o755)])

        artifact = Artifact(runtime_class.artifacts.url, rc_dir)
        artifact.pull(self.credentials(runtime_class), runner=self.runner)

        try:
            config_path = find_config_file(rc_dir, self.config_pattern)
        except FileNotFoundError as e:
            raise ArtifactError(
                runtime_class.artifacts.url,
                f'no kata config file found for runtime class {runtime_class.name!r}',
            ) from e

        try:
            transform_config_file(config_path)
        except ValueError as e:
            raise ArtifactError(runtime_class.artifacts.url, str(e)) from e

        logger.info(
            'artifacts_ready', runtime_class=runtime_class.name,
            config=str(config_path),
        )
        return config_path
