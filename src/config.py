"""Installer configuration management.

Settings are resolved with the following precedence (highest first):
1. Command line flags
2. Environment variables (INSTALLER_*, KUBECONFIG)
3. YAML config file ($INSTALLER_CONFIG or ~/.config/stack-installer/config.yaml)
4. Built-in defaults

Timeouts mirror the durations used while waiting on the cluster. All of
them except the poll interval scale with the timeout multiplier.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

# Base durations in seconds, before the multiplier is applied
DEPLOYMENT_TIMEOUT = 10 * 60
SERVICE_LOAD_BALANCER_TIMEOUT = 5 * 60
POD_READY_TIMEOUT = 5 * 60

# Fixed, not affected by the multiplier
DEFAULT_POLL_INTERVAL = 1.0

DEFAULT_CONFIG_FILE = Path.home() / '.config' / 'stack-installer' / 'config.yaml'

# Maps setting names to the environment variables that override them
ARG_TO_ENV = {
    'manifest': 'INSTALLER_MANIFEST',
    'kubeconfig': 'KUBECONFIG',
    'kube_context': 'INSTALLER_KUBE_CONTEXT',
    'timeout_multiplier': 'INSTALLER_TIMEOUT_MULTIPLIER',
    'poll_interval': 'INSTALLER_POLL_INTERVAL',
    'strict_checks': 'INSTALLER_STRICT_CHECKS',
    'helm_bin': 'INSTALLER_HELM',
    'kubectl_bin': 'INSTALLER_KUBECTL',
}

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off', ''}


class ConfigError(Exception):
    """Configuration error."""


@dataclass(frozen=True)
class Timeouts:
    """Wait budgets derived from the timeout multiplier.

    Attributes:
        multiplier: Factor applied to every base duration
    """
    multiplier: int = 1

    @property
    def deployment(self) -> float:
        """Budget for parts of a deployment (CRDs, jobs, helm runs)."""
        return float(self.multiplier * DEPLOYMENT_TIMEOUT)

    @property
    def service_load_balancer(self) -> float:
        return float(self.multiplier * SERVICE_LOAD_BALANCER_TIMEOUT)

    @property
    def pod_ready(self) -> float:
        return float(self.multiplier * POD_READY_TIMEOUT)


@dataclass
class InstallerConfig:
    """Settings for one installer command invocation.

    Attributes:
        manifest: Path to the component manifest
        kubeconfig: Kubeconfig file (None = client default / in-cluster)
        kube_context: Kubeconfig context to use (None = current context)
        timeout_multiplier: Multiplies every wait timeout
        poll_interval: Seconds between readiness polls
        strict_checks: Treat unrecognized check types as errors
        helm_bin: Helm executable
        kubectl_bin: kubectl executable
    """
    manifest: Optional[str] = None
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    timeout_multiplier: int = 1
    poll_interval: float = DEFAULT_POLL_INTERVAL
    strict_checks: bool = False
    helm_bin: str = 'helm'
    kubectl_bin: str = 'kubectl'
    source_path: Optional[Path] = field(default=None, compare=False)

    def __post_init__(self):
        if self.timeout_multiplier < 1:
            raise ConfigError(
                f"timeout_multiplier must be >= 1, got {self.timeout_multiplier}"
            )
        if self.poll_interval <= 0:
            raise ConfigError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )

    @property
    def timeouts(self) -> Timeouts:
        return Timeouts(multiplier=self.timeout_multiplier)


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw file/env value to the type of the named setting."""
    if value is None:
        return None
    try:
        if name == 'timeout_multiplier':
            return int(value)
        if name == 'poll_interval':
            return float(value)
        if name == 'strict_checks':
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE_VALUES:
                return True
            if text in _FALSE_VALUES:
                return False
            raise ValueError(f"not a boolean: {value!r}")
    except ValueError as e:
        raise ConfigError(f"Invalid value for '{name}': {e}")
    return str(value) or None


def get_config_file() -> Optional[Path]:
    """Locate the installer config file.

    Resolution order:
    1. $INSTALLER_CONFIG (must exist when set)
    2. ~/.config/stack-installer/config.yaml (optional)
    """
    if env_path := os.environ.get('INSTALLER_CONFIG'):
        path = Path(env_path)
        if not path.exists():
            raise ConfigError(f"INSTALLER_CONFIG={env_path} does not exist")
        return path

    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE

    return None


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config {path}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a YAML object (dict)")
    return data


def load_config(
    overrides: Optional[dict] = None,
    config_file: Optional[Path] = None,
    environ: Optional[dict] = None,
) -> InstallerConfig:
    """Resolve installer settings from defaults, file, env and overrides.

    Args:
        overrides: Values from command line flags; None entries are ignored
        config_file: Explicit config file (default: discovered via get_config_file)
        environ: Environment mapping (default: os.environ)

    Returns:
        InstallerConfig instance

    Raises:
        ConfigError: If a value is invalid or an unknown key is present
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(InstallerConfig) if f.name != 'source_path'}
    values: dict[str, Any] = {}

    path = config_file if config_file is not None else get_config_file()
    if path is not None:
        file_data = _parse_yaml(path)
        unknown = sorted(set(file_data) - known)
        if unknown:
            raise ConfigError(f"Unknown keys in config {path}: {', '.join(unknown)}")
        for name, value in file_data.items():
            values[name] = _coerce(name, value)
        logger.debug(f"Loaded installer config from {path}")

    for name, env_var in ARG_TO_ENV.items():
        if env_var in environ:
            values[name] = _coerce(name, environ[env_var])

    for name, value in (overrides or {}).items():
        if name not in known:
            raise ConfigError(f"Unknown setting: {name}")
        if value is not None:
            values[name] = _coerce(name, value)

    values = {k: v for k, v in values.items() if v is not None}
    return InstallerConfig(source_path=path, **values)
