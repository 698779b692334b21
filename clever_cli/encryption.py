"""At-rest encryption of credentials stored in the CLI configuration."""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""
    pass


# Prefix marking values written by ``SecureConfig``.
ENCRYPTED_PREFIX = "enc:"


class SecureConfig:
    """Encrypts sensitive configuration values with Fernet."""

    def __init__(self, key_file: Path, encryption_key: Optional[bytes] = None) -> None:
        """Initialize secure configuration manager.

        Args:
            key_file: Where the generated key is kept when none is provided.
            encryption_key: Optional key; falls back to ``CLEVER_ENCRYPTION_KEY``
                then to ``key_file``.

        Raises:
            EncryptionError: If the key cannot be loaded or generated.
        """
        self.key_file = key_file
        self.key = encryption_key or self._get_or_create_key()
        try:
            self.cipher = Fernet(self.key)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"Invalid encryption key: {e}")

    def _get_or_create_key(self) -> bytes:
        env_key = os.environ.get('CLEVER_ENCRYPTION_KEY')
        if env_key:
            return env_key.encode()

        if self.key_file.exists():
            try:
                return self.key_file.read_bytes().strip()
            except OSError as e:
                raise EncryptionError(f"Failed to read encryption key file: {e}")

        try:
            key = Fernet.generate_key()
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            self.key_file.write_bytes(key)
            os.chmod(self.key_file, 0o600)
            return key
        except OSError as e:
            raise EncryptionError(f"Failed to generate encryption key: {e}")

    def encrypt_value(self, value: str) -> str:
        """Encrypt a string value.

        Raises:
            EncryptionError: If the value is not a string.
        """
        if not isinstance(value, str):
            raise EncryptionError("Value must be a string")
        token = self.cipher.encrypt(value.encode('utf-8')).decode('ascii')
        return f"{ENCRYPTED_PREFIX}{token}"

    def decrypt_value(self, encrypted_value: str) -> str:
        """Decrypt a value produced by ``encrypt_value``.

        Raises:
            EncryptionError: If the value cannot be decrypted with this key.
        """
        if not self.is_encrypted(encrypted_value):
            raise EncryptionError("Value is not encrypted")
        token = encrypted_value[len(ENCRYPTED_PREFIX):]
        try:
            return self.cipher.decrypt(token.encode('ascii')).decode('utf-8')
        except InvalidToken:
            raise EncryptionError("Failed to decrypt value: wrong key or corrupted data")

    @staticmethod
    def is_encrypted(value: Any) -> bool:
        return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)

    def encrypt_dict_values(self, data: Dict[str, Any], sensitive_keys: Iterable[str]) -> Dict[str, Any]:
        """Return a copy of ``data`` with the sensitive values encrypted."""
        result = data.copy()
        for key in sensitive_keys:
            value = result.get(key)
            if value is not None and not self.is_encrypted(value):
                result[key] = self.encrypt_value(str(value))
        return result

    def decrypt_dict_values(self, data: Dict[str, Any], sensitive_keys: Iterable[str]) -> Dict[str, Any]:
        """Return a copy of ``data`` with the sensitive values decrypted."""
        result = data.copy()
        for key in sensitive_keys:
            value = result.get(key)
            if self.is_encrypted(value):
                result[key] = self.decrypt_value(value)
        return result
