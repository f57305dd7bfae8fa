"""
Configuration management for ntfy-monitor.

Provides centralized configuration loading, validation, and access.

Two file formats are understood: a sectioned JSON document (``*.json``) and
the shell-style ``KEY=VALUE`` file used by earlier shell deployments
(``/etc/ntfy-monitor.conf``). Shell files are parsed, never executed.
"""

import os
import re
import copy
import json
import shlex
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from .exceptions import ConfigurationError
from .security import CredentialVault, key_file_for, is_sealed, sealed_fields, mask_password
from .utils import split_list, parse_bool

logger = logging.getLogger("ntfy_monitor.config")


DEFAULT_CONFIG_FILE = "/etc/ntfy-monitor.conf"

# Default values
DEFAULTS = {
    'ntfy': {
        'server': '',
        'base_topic': '',
        'username': '',
        'password': '',
        'timeout': 10,
        'max_message_length': 1000,
    },
    'checks': {
        'ping_targets': ['8.8.8.8', '1.1.1.1'],
        'ping_timeout': 5,
        'ping_retry_count': 2,
        'nslookup_target': 'google.com',
        'log_interval_hours': 1,
        'log_files': ['/var/log/syslog', '/var/log/messages'],
        'error_patterns': 'error|failed|failure|crash|critical|panic',
    },
    'system': {
        'state_dir': '/var/lib/ntfy-monitor',
        'error_log_file': '/var/log/ntfy-monitor_errors.log',
        'lock_file': '/var/run/ntfy-monitor.lock',
        'max_parallel_jobs': 10,
        'guest_timeout': 30,
        'log_level': 'INFO',
        'debug': False,
    },
    'ssh': {
        'enabled': False,
        'host': '',
        'port': 22,
        'username': 'root',
        'password': '',
        'key_file': '',
    },
}

# Shell-style variable names and where they land
SHELL_KEYS = {
    'NTFY_SERVER': ('ntfy', 'server'),
    'NTFY_BASE_TOPIC': ('ntfy', 'base_topic'),
    'NTFY_USER': ('ntfy', 'username'),
    'NTFY_PASS': ('ntfy', 'password'),
    'GUEST_PING_TIMEOUT': ('checks', 'ping_timeout'),
    'GUEST_PING_RETRY_COUNT': ('checks', 'ping_retry_count'),
    'CHECK_LOG_INTERVAL_HOURS': ('checks', 'log_interval_hours'),
    'PING_TARGETS': ('checks', 'ping_targets'),
    'NSLOOKUP_TARGET': ('checks', 'nslookup_target'),
    'LOG_FILES': ('checks', 'log_files'),
    'ERROR_PATTERNS': ('checks', 'error_patterns'),
    'DEBUG': ('system', 'debug'),
    'TIMEOUT_GUEST_OPERATIONS': ('system', 'guest_timeout'),
    'MAX_PARALLEL_JOBS': ('system', 'max_parallel_jobs'),
    'STATE_DIR': ('system', 'state_dir'),
    'ERROR_LOG_FILE': ('system', 'error_log_file'),
    'LOCK_FILE': ('system', 'lock_file'),
    'SSH_ENABLED': ('ssh', 'enabled'),
    'SSH_HOST': ('ssh', 'host'),
    'SSH_PORT': ('ssh', 'port'),
    'SSH_USER': ('ssh', 'username'),
    'SSH_PASS': ('ssh', 'password'),
    'SSH_KEY_FILE': ('ssh', 'key_file'),
}

SHELL_SECRETS = ('NTFY_PASS', 'SSH_PASS')

ENV_KEYS = {
    'NTFY_MONITOR_SERVER': ('ntfy', 'server'),
    'NTFY_MONITOR_TOPIC': ('ntfy', 'base_topic'),
    'NTFY_MONITOR_USER': ('ntfy', 'username'),
    'NTFY_MONITOR_PASSWORD': ('ntfy', 'password'),
    'NTFY_MONITOR_STATE_DIR': ('system', 'state_dir'),
    'NTFY_MONITOR_LOG_LEVEL': ('system', 'log_level'),
    'NTFY_MONITOR_MAX_JOBS': ('system', 'max_parallel_jobs'),
}

POSITIVE_INTS = [
    ('ntfy', 'timeout'),
    ('ntfy', 'max_message_length'),
    ('checks', 'ping_timeout'),
    ('checks', 'ping_retry_count'),
    ('checks', 'log_interval_hours'),
    ('system', 'max_parallel_jobs'),
    ('system', 'guest_timeout'),
    ('ssh', 'port'),
]

MIN_MESSAGE_LENGTH = 4

_SHELL_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_SHELL_ASSIGNMENT = re.compile(
    r'^(?P<prefix>\s*(?:export\s+)?)(?P<name>[A-Za-z_][A-Za-z0-9_]*)=(?P<value>.*)$'
)


def parse_shell_config(text: str, source: str = "<config>") -> Dict[str, Any]:
    """
    Parse ``KEY=VALUE`` lines into a sectioned config dictionary.

    Quoting and trailing comments follow shell rules (via shlex).
    Unknown keys are ignored.
    """
    config: Dict[str, Any] = {}

    for lineno, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export '):].strip()
        if '=' not in line:
            logger.debug(f"{source}:{lineno}: ignoring line without assignment")
            continue

        name, _, value = line.partition('=')
        name = name.strip()
        if not _SHELL_NAME.match(name):
            raise ConfigurationError(
                f"Invalid variable name in {source} line {lineno}: {name!r}"
            )

        try:
            value = ' '.join(shlex.split(value, comments=True))
        except ValueError as e:
            raise ConfigurationError(
                f"Cannot parse {source} line {lineno}: {e}"
            )

        target = SHELL_KEYS.get(name)
        if target is None:
            logger.debug(f"{source}:{lineno}: unknown setting {name}")
            continue

        section, key = target
        config.setdefault(section, {})[key] = value

    return config


def seal_shell_config(text: str, vault: CredentialVault) -> Tuple[str, List[str]]:
    """
    Encrypt the password assignments of a shell-style config.

    Other lines are kept byte for byte. A rewritten line loses its
    trailing comment.

    Returns:
        The new text and the names of the variables that were sealed.
    """
    lines = []
    changed = []

    for raw_line in text.splitlines():
        match = _SHELL_ASSIGNMENT.match(raw_line)
        if match and match.group('name') in SHELL_SECRETS:
            try:
                value = ' '.join(shlex.split(match.group('value'), comments=True))
            except ValueError:
                value = ''
            if value and not is_sealed(value):
                raw_line = (f"{match.group('prefix')}{match.group('name')}="
                            f"{shlex.quote(vault.seal(value))}")
                changed.append(match.group('name'))
        lines.append(raw_line)

    new_text = "\n".join(lines)
    if text.endswith("\n"):
        new_text += "\n"
    return new_text, changed


class Config:
    """
    Configuration manager with validation and encryption support.

    Features:
    - Load from JSON or shell-style file (optional: defaults otherwise)
    - Environment variable overrides
    - Automatic password decryption
    - Validation
    - Default values
    """

    def __init__(self, config_file: Optional[str] = None, required: bool = False):
        """
        Initialize configuration.

        Args:
            config_file: Path to the configuration file.
            required: Fail if the file does not exist.
        """
        self._config: Dict[str, Any] = {}
        self._file_config: Dict[str, Any] = {}
        self._config_file: Optional[Path] = None

        self.load(config_file, required=required)

    @property
    def is_json(self) -> bool:
        return bool(self._config_file) and self._config_file.suffix == '.json'

    def load(self, config_file: Optional[str], required: bool = False) -> None:
        """
        Load configuration from file.

        A missing file is fine unless ``required`` is set: defaults and
        environment overrides still apply.

        Raises:
            ConfigurationError: If loading fails.
        """
        self._config_file = Path(config_file) if config_file else None
        self._file_config = {}

        if self._config_file and self._config_file.exists():
            self._file_config = self._read_file(self._config_file)
            logger.info(f"Loaded configuration from {self._config_file}")
            self._unseal_credentials()
        elif self._config_file and required:
            raise ConfigurationError(
                f"Configuration file not found: {config_file}"
            )
        else:
            logger.debug("No configuration file, using defaults")

        self._config = copy.deepcopy(self._file_config)
        self._apply_defaults()
        self._apply_env_overrides()
        self._normalize()

    def _read_file(self, path: Path) -> Dict[str, Any]:
        try:
            text = path.read_text(encoding='utf-8')
        except OSError as e:
            raise ConfigurationError(f"Failed to load {path}: {e}")

        if path.suffix == '.json':
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}")
            if not isinstance(data, dict):
                raise ConfigurationError(f"Invalid JSON in {path}: expected an object")
            return data

        return parse_shell_config(text, source=str(path))

    def _unseal_credentials(self) -> None:
        sealed = sealed_fields(self._file_config)
        if not sealed:
            return

        key_file = key_file_for(self._config_file)
        if not key_file.exists():
            logger.warning(
                f"Encrypted values found but no {key_file}: {', '.join(sealed)}"
            )
            return

        CredentialVault(key_file).unseal_config(self._file_config)
        logger.debug(f"Decrypted {', '.join(sealed)}")

    def _apply_defaults(self) -> None:
        """Apply default values for missing settings."""
        def merge_defaults(config: dict, defaults: dict) -> None:
            for key, value in defaults.items():
                if key not in config:
                    config[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(config.get(key), dict):
                    merge_defaults(config[key], value)

        merge_defaults(self._config, DEFAULTS)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        for env_var, (section, key) in ENV_KEYS.items():
            value = os.environ.get(env_var)
            if value:
                self._config.setdefault(section, {})[key] = value
                if key == 'password':
                    logger.debug(f"Applied env override: {env_var}={mask_password(value)}")
                else:
                    logger.debug(f"Applied env override: {env_var}")

    def _normalize(self) -> None:
        """Coerce list and boolean settings read from text formats."""
        checks = self._config['checks']
        checks['ping_targets'] = split_list(checks.get('ping_targets'))
        checks['log_files'] = split_list(checks.get('log_files'))
        self._config['system']['debug'] = parse_bool(self._config['system'].get('debug'))
        self._config['ssh']['enabled'] = parse_bool(self._config['ssh'].get('enabled'))

    def validate(self) -> None:
        """
        Validate configuration.

        Numeric settings are converted to int in place.

        Raises:
            ConfigurationError: Listing every problem found.
        """
        errors = []

        ntfy = self.ntfy
        if not ntfy.get('server') or not ntfy.get('base_topic'):
            errors.append("ntfy.server and ntfy.base_topic are required "
                          "(NTFY_SERVER / NTFY_BASE_TOPIC)")

        for section, key in POSITIVE_INTS:
            value = self._config[section].get(key)
            try:
                number = int(value)
            except (TypeError, ValueError):
                errors.append(f"{section}.{key} must be an integer (got {value!r})")
                continue
            if number <= 0:
                errors.append(f"{section}.{key} must be positive (got {number})")
            else:
                self._config[section][key] = number

        max_length = ntfy.get('max_message_length')
        if isinstance(max_length, int) and 0 < max_length < MIN_MESSAGE_LENGTH:
            errors.append(f"ntfy.max_message_length must be at least "
                          f"{MIN_MESSAGE_LENGTH} (got {max_length})")

        if not self.checks.get('ping_targets'):
            errors.append("checks.ping_targets must list at least one target")
        if not self.checks.get('log_files'):
            errors.append("checks.log_files must list at least one file")

        if self.ssh.get('enabled') and not self.ssh.get('host'):
            errors.append("ssh.host is required when SSH is enabled")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n  - " +
                "\n  - ".join(errors)
            )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key (supports dot notation: 'ntfy.server').
            default: Default value if key not found.
        """
        value = self._config
        for part in key.split('.'):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a value using dot notation (used for CLI overrides)."""
        section, _, name = key.partition('.')
        self._config.setdefault(section, {})[name] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section, {})

    @property
    def ntfy(self) -> Dict[str, Any]:
        """Get push notification configuration."""
        return self.get_section('ntfy')

    @property
    def checks(self) -> Dict[str, Any]:
        """Get guest check configuration."""
        return self.get_section('checks')

    @property
    def system(self) -> Dict[str, Any]:
        """Get system configuration."""
        return self.get_section('system')

    @property
    def ssh(self) -> Dict[str, Any]:
        """Get SSH configuration."""
        return self.get_section('ssh')

    @property
    def state_dir(self) -> Path:
        return Path(self.get('system.state_dir'))

    @property
    def lock_file(self) -> Path:
        return Path(self.get('system.lock_file'))

    @property
    def error_log_file(self) -> Path:
        return Path(self.get('system.error_log_file'))

    @property
    def debug(self) -> bool:
        return bool(self.get('system.debug', False))

    @property
    def config_file(self) -> Optional[Path]:
        return self._config_file

    def encrypt_credentials(self) -> List[str]:
        """
        Encrypt the passwords stored in the configuration file in place.

        JSON files are rewritten with only the file's own settings (defaults
        and environment overrides are not persisted). Shell-style files keep
        every line except the sealed ``NTFY_PASS`` / ``SSH_PASS`` assignments.

        Returns:
            Names of the settings that were encrypted.

        Raises:
            ConfigurationError: If there is no file or it cannot be written.
            EncryptionError: If the key cannot be created or read.
        """
        if not self._config_file or not self._config_file.exists():
            raise ConfigurationError(f"No configuration file to encrypt: {self._config_file}")

        vault = CredentialVault(key_file_for(self._config_file))

        if self.is_json:
            # Re-read: the loaded copy already holds decrypted values
            file_config = self._read_file(self._config_file)
            changed = vault.seal_config(file_config)
            new_text = json.dumps(file_config, indent=4) + "\n"
        else:
            try:
                text = self._config_file.read_text(encoding='utf-8')
            except OSError as e:
                raise ConfigurationError(f"Failed to read {self._config_file}: {e}")
            new_text, changed = seal_shell_config(text, vault)

        if not changed:
            logger.info(f"No plain-text passwords in {self._config_file}")
            return changed

        try:
            self._config_file.write_text(new_text, encoding='utf-8')
            self._config_file.chmod(0o600)
        except OSError as e:
            raise ConfigurationError(f"Failed to write {self._config_file}: {e}")

        logger.info(f"Encrypted {', '.join(changed)} in {self._config_file}")
        return changed
