from .manager import (
    Artifacts, ConfigError, ManagerConfig, Options, RuntimeClass,
    load_manager_config,
)
