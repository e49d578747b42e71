import subprocess

import structlog

from katamanager.utils import simple_command

logger = structlog.get_logger(__name__)


class ArtifactError(RuntimeError):

    def __init__(self, ref, message):
        super().__init__(f"Artifact error for {ref!r}: {message}")
        self.ref = ref
        self.message = message


def parse_reference(ref):
    '''
    Splits an artifact reference into (registry, repository, tag),
    where tag may also be a digest.
    '''
    if not ref:
        raise ArtifactError(ref, 'empty reference')

    registry = ref.split('/', 1)[0]

    at = ref.rfind('@')
    colon = ref.rfind(':')
    if at != -1:
        repository, tag = ref[:at], ref[at + 1:]
    elif colon > ref.rfind('/'):
        # Colon after the last slash, so not a registry port
        repository, tag = ref[:colon], ref[colon + 1:]
    else:
        raise ArtifactError(ref, 'unable to parse tag or digest')

    if not repository or not tag:
        raise ArtifactError(ref, 'unable to parse tag or digest')

    return registry, repository, tag


class Artifact(object):

    def __init__(self, ref, output):
        self.ref = ref
        self.registry, self.repository, self.tag = parse_reference(ref)
        self.output = output

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} repository={self.repository!r} "
            f"tag={self.tag!r} output={str(self.output)!r}>"
        )

    def pull_command(self, credentials=None):
        cmd = ['oras', 'pull', self.ref, '--output', str(self.output)]
        if credentials:
            cmd.extend(['--username', credentials.username, '--password-stdin'])
        return cmd

    def pull(self, credentials=None, runner=None):
        runner = runner or simple_command
        cmd = self.pull_command(credentials)
        logger.info('pulling_artifact', ref=self.ref, output=str(self.output))

        kwargs = {}
        if credentials:
            kwargs['input'] = credentials.password
        try:
            proc = runner(cmd, check=True, **kwargs)
        except (OSError, subprocess.CalledProcessError) as e:
            raise ArtifactError(self.ref, f'pull failed: {e}') from e

        logger.info('artifact_pulled', ref=self.ref)
        return proc
