from .files import ensure_dirs, find_config_file, write_atomic
from .process import simple_command, host_command
from .kubernetes import current_namespace, current_node_name
