import base64
import binascii
import json
from pathlib import Path

from .oras import ArtifactError, parse_reference

DOCKER_CONFIG_KEY = '.dockerconfigjson'


class Credentials(object):

    def __init__(self, username, password):
        self.username = username
        self.password = password

    def __repr__(self):
        return f"<{self.__class__.__name__} username={self.username!r}>"

    def __eq__(self, other):
        if not isinstance(other, Credentials):
            return NotImplemented
        return (self.username, self.password) == (other.username, other.password)


def _decode_auth(ref, auth):
    try:
        decoded = base64.b64decode(auth, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ArtifactError(ref, f'error decoding auth string: {e}') from e
    username, sep, password = decoded.partition(':')
    if not sep:
        raise ArtifactError(
            ref, "invalid auth string format: expected 'username:password'"
        )
    return Credentials(username, password)


def registry_credentials(ref, docker_config):
    registry, _, _ = parse_reference(ref)
    entry = docker_config.get('auths', {}).get(registry) or {}

    # Prefer username/password, fall back to encoded auth
    if entry.get('username') and entry.get('password'):
        return Credentials(entry['username'], entry['password'])
    if entry.get('auth'):
        return _decode_auth(ref, entry['auth'])

    return None


def load_credentials(runtime_class, secrets_dir):
    '''
    Reads registry credentials for a runtime class from its pull
    secret, mounted at {secrets_dir}/{secret}/.dockerconfigjson.
    '''
    secret = runtime_class.artifacts.pull_secret
    if not secret:
        return None

    ref = runtime_class.artifacts.url
    path = Path(secrets_dir) / secret / DOCKER_CONFIG_KEY
    try:
        docker_config = json.loads(path.read_text())
    except OSError as e:
        raise ArtifactError(ref, f'error reading secret {secret!r}: {e}') from e
    except ValueError as e:
        raise ArtifactError(ref, f'error decoding secret {secret!r}: {e}') from e

    return registry_credentials(ref, docker_config)
