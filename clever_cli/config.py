"""Configuration management for the Clever CLI with validation and backup."""

import json
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Self, List

from .encryption import SecureConfig, EncryptionError
from .errors import ConfigurationError

DEFAULT_API_URL = "https://api.clever-cloud.com/v2"


class ConfigError(ConfigurationError):
    """Configuration-related errors."""
    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""
    pass


class ConfigBackupError(ConfigError):
    """Raised when backup operations fail."""
    pass


def default_config_dir() -> Path:
    override = os.environ.get("CLEVER_CONFIG_DIR")
    if override:
        return Path(override)
    return Path.home() / ".clever"


class Config:
    """Manages CLI configuration with encryption, validation, and backup."""

    # Configuration schema for validation
    CONFIG_SCHEMA = {
        'url': {'type': str, 'required': False, 'validator': 'validate_url', 'default': DEFAULT_API_URL},
        'token': {'type': str, 'required': False, 'validator': 'validate_token'},
        'timeout': {'type': int, 'required': False, 'min': 5, 'max': 300, 'default': 30},
        'poll_interval': {'type': (int, float), 'required': False, 'min': 0.5, 'max': 60, 'default': 2.0},
        'max_attempts': {'type': int, 'required': False, 'min': 1, 'max': 20, 'default': 5},
        'backoff_base': {'type': (int, float), 'required': False, 'min': 0, 'max': 60, 'default': 1.0},
        'backoff_max': {'type': (int, float), 'required': False, 'min': 0, 'max': 600, 'default': 30.0},
        'reorder_window': {'type': int, 'required': False, 'min': 1, 'max': 10000, 'default': 64},
        'backup_count': {'type': int, 'required': False, 'min': 1, 'max': 50, 'default': 5}
    }

    def __init__(self: Self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Configuration directory, ``~/.clever`` by default.
        """
        self.config_dir = config_dir or default_config_dir()
        self.config_file = self.config_dir / "config.json"
        self.backup_dir = self.config_dir / "backups"
        self._ensure_directories()
        self._secure_config: Optional[SecureConfig] = None
        self._sensitive_keys = ['token']

    @property
    def secure_config(self: Self) -> SecureConfig:
        if self._secure_config is None:
            self._secure_config = SecureConfig(self.config_dir / ".key")
        return self._secure_config

    def _ensure_directories(self: Self) -> None:
        """Create config directories with proper permissions."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.config_dir, 0o700)

        self.backup_dir.mkdir(exist_ok=True)
        os.chmod(self.backup_dir, 0o700)

    def _validate_config_schema(self: Self, config: Dict[str, Any]) -> None:
        """Validate configuration against schema.

        Raises:
            ConfigValidationError: If validation fails.
        """
        errors = []

        for key, schema in self.CONFIG_SCHEMA.items():
            value = config.get(key)

            if schema['required'] and value is None:
                errors.append(f"Required field '{key}' is missing")
                continue

            if value is None:
                continue

            # bool is an int subclass but never a valid numeric setting
            if isinstance(value, bool) or not isinstance(value, schema['type']):
                errors.append(f"Field '{key}' has an invalid type")
                continue

            if 'choices' in schema and value not in schema['choices']:
                errors.append(f"Field '{key}' must be one of: {', '.join(schema['choices'])}")

            if 'min' in schema and value < schema['min']:
                errors.append(f"Field '{key}' must be >= {schema['min']}")
            if 'max' in schema and value > schema['max']:
                errors.append(f"Field '{key}' must be <= {schema['max']}")

            if 'validator' in schema:
                validator = getattr(self, schema['validator'], None)
                if validator and not validator(value):
                    errors.append(f"Field '{key}' failed validation")

        if errors:
            raise ConfigValidationError(f"Configuration validation failed: {'; '.join(errors)}")

    def validate_url(self: Self, url: str) -> bool:
        if not isinstance(url, str):
            return False
        return url.startswith(('http://', 'https://'))

    def validate_token(self: Self, token: str) -> bool:
        if not isinstance(token, str):
            return False
        return len(token) >= 10

    def _create_backup(self: Self) -> None:
        """Create a backup of the current configuration."""
        if not self.config_file.exists():
            return

        try:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
            backup_file = self.backup_dir / f"config_{timestamp}.json"
            shutil.copy2(self.config_file, backup_file)
            os.chmod(backup_file, 0o600)
        except OSError as e:
            raise ConfigBackupError(f"Failed to create backup: {e}")

        self._cleanup_old_backups()

    def _cleanup_old_backups(self: Self) -> None:
        """Remove old backup files beyond the configured limit."""
        backup_files = sorted(
            self.backup_dir.glob("config_*.json"),
            key=lambda x: x.name,
            reverse=True
        )

        max_backups = self.get('backup_count', 5)
        for old_backup in backup_files[max_backups:]:
            old_backup.unlink(missing_ok=True)

    def list_backups(self: Self) -> List[str]:
        """List available configuration backups, most recent first."""
        timestamps = []
        for backup_file in self.backup_dir.glob("config_*.json"):
            timestamps.append(backup_file.name[len("config_"):-len(".json")])
        return sorted(timestamps, reverse=True)

    def restore_from_backup(self: Self, backup_timestamp: Optional[str] = None) -> None:
        """Restore configuration from a backup.

        Args:
            backup_timestamp: Backup to restore; the most recent one by default.

        Raises:
            ConfigError: If no backup exists or restoration fails.
        """
        if backup_timestamp is None:
            backups = self.list_backups()
            if not backups:
                raise ConfigError("No backup files found")
            backup_timestamp = backups[0]

        backup_file = self.backup_dir / f"config_{backup_timestamp}.json"
        if not backup_file.exists():
            raise ConfigError(f"Backup file not found: {backup_file}")

        try:
            shutil.copy2(backup_file, self.config_file)
            os.chmod(self.config_file, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to restore from backup: {e}")

    def load(self: Self, validate: bool = True) -> Dict[str, Any]:
        """Load configuration from file with optional validation.

        Missing optional keys are filled with their schema defaults.

        Raises:
            ConfigError: If loading fails.
        """
        config: Dict[str, Any] = {}

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    config = json.load(f)
            except json.JSONDecodeError as e:
                # Corrupted file: fall back to the most recent backup
                if self.list_backups():
                    self.restore_from_backup()
                    return self.load(validate=validate)
                raise ConfigError(f"Failed to load configuration: {e}")
            except OSError as e:
                raise ConfigError(f"Failed to load configuration: {e}")

            try:
                config = self.secure_config.decrypt_dict_values(config, self._sensitive_keys)
            except EncryptionError as e:
                raise ConfigError(f"Failed to decrypt configuration: {e}")

        for key, schema in self.CONFIG_SCHEMA.items():
            if key not in config and 'default' in schema:
                config[key] = schema['default']

        if validate:
            self._validate_config_schema(config)

        return config

    def save(self: Self, config: Dict[str, Any], create_backup: bool = True) -> None:
        """Save configuration to file with encryption and validation.

        Raises:
            ConfigError: If validation or saving fails.
        """
        self._validate_config_schema(config)

        if create_backup and self.config_file.exists():
            self._create_backup()

        try:
            encrypted_config = self.secure_config.encrypt_dict_values(config, self._sensitive_keys)
        except EncryptionError as e:
            raise ConfigError(f"Failed to encrypt configuration: {e}")

        # Write to temporary file first, then move to prevent corruption
        temp_file = self.config_file.with_suffix('.tmp')
        try:
            with open(temp_file, 'w') as f:
                json.dump(encrypted_config, f, indent=2)
            os.chmod(temp_file, 0o600)
            temp_file.replace(self.config_file)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise ConfigError(f"Failed to save configuration: {e}")

    def get(self: Self, key: str, default: Any = None) -> Any:
        """Get a configuration value, honouring ``CLEVER_<KEY>`` overrides."""
        env_value = os.environ.get(f"CLEVER_{key.upper()}")
        if env_value is not None and key in ('url', 'token'):
            return env_value
        try:
            config = self.load(validate=False)
        except ConfigError:
            return default
        return config.get(key, default)

    def set(self: Self, key: str, value: Any) -> None:
        """Set a configuration value.

        Raises:
            ConfigError: If the resulting configuration is invalid.
        """
        config = self.load(validate=False)
        config[key] = value
        self.save(config, create_backup=True)

    def get_url(self: Self) -> str:
        return self.get('url') or DEFAULT_API_URL

    def get_token(self: Self) -> Optional[str]:
        return self.get('token')

    def is_configured(self: Self) -> bool:
        return bool(self.get_token())


@dataclass(frozen=True)
class Settings:
    """Runtime parameters handed to the deployment components."""

    url: str = DEFAULT_API_URL
    token: Optional[str] = None
    timeout: int = 30
    poll_interval: float = 2.0
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    reorder_window: int = 64

    @classmethod
    def from_config(cls, config: Config) -> "Settings":
        """Build settings from a validated configuration.

        Raises:
            ConfigError: If the stored configuration is invalid.
        """
        values = config.load(validate=True)
        return cls(
            url=config.get_url(),
            token=config.get_token(),
            timeout=values['timeout'],
            poll_interval=float(values['poll_interval']),
            max_attempts=values['max_attempts'],
            backoff_base=float(values['backoff_base']),
            backoff_max=float(values['backoff_max']),
            reorder_window=values['reorder_window'],
        )
