"""
Credential protection for ntfy-monitor.

The ntfy and SSH passwords may be stored as ``ENC:<fernet token>`` in either
configuration format. The key sits in ``.secret.key`` beside the config file.
"""

import os
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import EncryptionError, DecryptionError

logger = logging.getLogger("ntfy_monitor.security")


SECRET_PREFIX = "ENC:"
KEY_FILE_NAME = ".secret.key"

# (section, key) pairs holding credentials
CREDENTIAL_FIELDS = (
    ('ntfy', 'password'),
    ('ssh', 'password'),
)


def key_file_for(config_file: Union[str, Path]) -> Path:
    return Path(config_file).parent / KEY_FILE_NAME


def is_sealed(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(SECRET_PREFIX)


def sealed_fields(config: Dict[str, Any]) -> List[str]:
    """Dotted names of credential fields that hold encrypted values."""
    return [
        f"{section}.{key}" for section, key in CREDENTIAL_FIELDS
        if is_sealed(config.get(section, {}).get(key))
    ]


class CredentialVault:
    """Seals and unseals credential values with the installation's key."""

    def __init__(self, key_file: Union[str, Path]):
        self.key_file = Path(key_file)
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self, create: bool) -> Fernet:
        if self._fernet is not None:
            return self._fernet

        if self.key_file.exists():
            try:
                key = self.key_file.read_bytes().strip()
            except OSError as e:
                raise EncryptionError(f"Cannot read key file {self.key_file}: {e}")
        elif create:
            key = self._create_key()
        else:
            raise DecryptionError(f"Key file not found: {self.key_file}")

        try:
            self._fernet = Fernet(key)
        except ValueError as e:
            raise EncryptionError(f"Invalid key in {self.key_file}", details=str(e))
        return self._fernet

    def _create_key(self) -> bytes:
        key = Fernet.generate_key()
        try:
            fd = os.open(self.key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            # Created concurrently by another run
            return self.key_file.read_bytes().strip()
        except OSError as e:
            raise EncryptionError(f"Cannot create key file {self.key_file}: {e}")

        with os.fdopen(fd, 'wb') as f:
            f.write(key)
        logger.info(f"Created credential key {self.key_file}")
        return key

    def seal(self, value: str) -> str:
        """Encrypt ``value``; empty and already sealed values pass through."""
        if not value or is_sealed(value):
            return value
        token = self._get_fernet(create=True).encrypt(value.encode('utf-8'))
        return SECRET_PREFIX + token.decode('ascii')

    def unseal(self, value: str) -> str:
        """
        Decrypt a sealed value; plain values pass through.

        Raises:
            DecryptionError: Missing key, or a token made with another key.
        """
        if not is_sealed(value):
            return value
        token = value[len(SECRET_PREFIX):].encode('ascii')
        try:
            return self._get_fernet(create=False).decrypt(token).decode('utf-8')
        except InvalidToken:
            raise DecryptionError(f"Cannot decrypt credential with {self.key_file}")

    def seal_config(self, config: Dict[str, Any]) -> List[str]:
        """Seal credential fields in place. Returns the names changed."""
        changed = []
        for section, key in CREDENTIAL_FIELDS:
            values = config.get(section)
            if not isinstance(values, dict):
                continue
            value = values.get(key)
            if value and isinstance(value, str) and not is_sealed(value):
                values[key] = self.seal(value)
                changed.append(f"{section}.{key}")
        return changed

    def unseal_config(self, config: Dict[str, Any]) -> None:
        """Unseal credential fields in place; undecryptable ones are kept."""
        for name in sealed_fields(config):
            section, key = name.split('.')
            try:
                config[section][key] = self.unseal(config[section][key])
            except DecryptionError as e:
                logger.warning(f"{name}: {e}")


def mask_password(password: Optional[str], visible_chars: int = 0) -> str:
    """
    Mask a password for log output.

    Args:
        password: The password to mask.
        visible_chars: Characters to keep at each end (0 = none).
    """
    if not password:
        return "<empty>"
    if visible_chars <= 0:
        return "*" * 8
    if len(password) <= visible_chars * 2:
        return "*" * len(password)
    return f"{password[:visible_chars]}****{password[-visible_chars:]}"
