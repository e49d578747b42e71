import os
from pathlib import Path

SERVICE_ACCOUNT_NAMESPACE = Path(
    '/var/run/secrets/kubernetes.io/serviceaccount/namespace'
)


def current_namespace(namespace_file=SERVICE_ACCOUNT_NAMESPACE):
    try:
        namespace = Path(namespace_file).read_text().strip()
    except OSError:
        namespace = ''
    return namespace or os.environ.get('KUBERNETES_NAMESPACE', '')


def current_node_name():
    return os.environ.get('NODE_NAME', '')
