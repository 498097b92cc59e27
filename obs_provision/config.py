"""
Configuration loading for provision.yml.

Example:

    store:
      backend: file            # memory | file | postgres
      path: ~/.local/state/obs-provision
      postgres_url: ${OBSERV_DB_URL}
    executor:
      timeout: 600             # seconds per remote step
      ssh_options: [-oConnectTimeout=10]
    log:
      level: INFO
      json: true
      file: /var/log/obs-provision.log
    hub:
      sshHost: hancock
      sshUser: keeb
      targetsDir: /srv/prometheus/targets
    agent:
      sshUser: root
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import yaml

from obs_provision.errors import ConfigError
from obs_provision.executor import SSHExecutor
from obs_provision.models import MODELS
from obs_provision.store import ResourceStore, open_store

CONFIG_ENV = 'OBS_PROVISION_CONFIG'
DEFAULT_STORE_PATH = '~/.local/state/obs-provision'
VALID_BACKENDS = ['memory', 'file', 'postgres']
VALID_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


@dataclass
class Settings:
    """Resolved configuration, passed explicitly to everything that needs it"""
    store_backend: str = 'file'
    store_path: str = DEFAULT_STORE_PATH
    postgres_url: Optional[str] = None
    executor_timeout: Optional[float] = 600
    ssh_options: List[str] = field(default_factory=list)
    log_level: str = 'INFO'
    log_json: bool = True
    log_file: Optional[str] = None
    model_defaults: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def global_args(self, model_name: str, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Configured global arguments for a model with caller values on top"""
        merged = dict(self.model_defaults.get(model_name, {}))
        merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return merged

    def open_store(self) -> ResourceStore:
        try:
            return open_store(self.store_backend, self.store_path, self.postgres_url)
        except ValueError as e:
            raise ConfigError(str(e))

    def executor(self) -> SSHExecutor:
        return SSHExecutor(timeout=self.executor_timeout, options=self.ssh_options)


def _section(config: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return value


def parse_config(config: Mapping[str, Any]) -> Settings:
    """
    Validate a parsed provision.yml document

    Raises:
        ConfigError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigError("Config must be a mapping")

    store = _section(config, 'store')
    executor = _section(config, 'executor')
    log = _section(config, 'log')

    backend = store.get('backend', 'file')
    if backend not in VALID_BACKENDS:
        raise ConfigError(f"Invalid store backend: {backend}. Must be one of {VALID_BACKENDS}")

    postgres_url = store.get('postgres_url')
    if postgres_url:
        postgres_url = os.path.expandvars(postgres_url)
    if backend == 'postgres' and (not postgres_url or '${' in postgres_url):
        raise ConfigError("store.postgres_url is required for the postgres backend "
                          "(is $OBSERV_DB_URL set?)")

    timeout = executor.get('timeout', 600)
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigError(f"Invalid executor timeout: {timeout!r}")

    ssh_options = executor.get('ssh_options', [])
    if not isinstance(ssh_options, list):
        raise ConfigError("executor.ssh_options must be a list")

    level = str(log.get('level', 'INFO')).upper()
    if level not in VALID_LEVELS:
        raise ConfigError(f"Invalid log level: {level}. Must be one of {VALID_LEVELS}")

    model_defaults = {name: _section(config, name) for name in MODELS}

    return Settings(
        store_backend=backend,
        store_path=os.path.expandvars(str(store.get('path', DEFAULT_STORE_PATH))),
        postgres_url=postgres_url,
        executor_timeout=timeout,
        ssh_options=[str(option) for option in ssh_options],
        log_level=level,
        log_json=bool(log.get('json', True)),
        log_file=log.get('file'),
        model_defaults=model_defaults,
    )


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load provision.yml; defaults when no path is given or configured.

    Args:
        config_path: Path to the config file (falls back to $OBS_PROVISION_CONFIG)

    Returns:
        Settings: Validated configuration
    """
    config_path = config_path or os.getenv(CONFIG_ENV)
    if not config_path:
        return Settings()

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}")

    return parse_config(config or {})
