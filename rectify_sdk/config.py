"""Configuration management for the RECtify client"""

import os
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, fields
from pathlib import Path
import yaml
import json


DEFAULT_BASE_URL = "http://localhost:5000/api"
DEFAULT_CREDENTIALS_PATH = os.path.join("~", ".rectify", "credentials.json")


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class ClientSettings:
    """Main client settings"""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0  # seconds

    # Credential store
    credentials_path: str = DEFAULT_CREDENTIALS_PATH
    token_storage_key: str = "rectify-token"
    encryption_key: Optional[str] = None  # Fernet key; plaintext token when unset

    # Dashboard / recovery
    transaction_lookback_days: int = 31  # covers month-to-date on the 31st
    summary_timezone: str = "UTC"
    reset_success_delay: float = 2.0  # seconds

    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'ClientSettings':
        """Create settings from environment variables"""
        settings = cls()

        if os.getenv("RECTIFY_API_URL"):
            settings.base_url = os.getenv("RECTIFY_API_URL")
        if os.getenv("RECTIFY_TIMEOUT"):
            settings.timeout = float(os.getenv("RECTIFY_TIMEOUT"))

        if os.getenv("RECTIFY_CREDENTIALS_PATH"):
            settings.credentials_path = os.getenv("RECTIFY_CREDENTIALS_PATH")
        if os.getenv("RECTIFY_ENCRYPTION_KEY"):
            settings.encryption_key = os.getenv("RECTIFY_ENCRYPTION_KEY")

        if os.getenv("RECTIFY_LOOKBACK_DAYS"):
            settings.transaction_lookback_days = int(os.getenv("RECTIFY_LOOKBACK_DAYS"))
        if os.getenv("RECTIFY_TIMEZONE"):
            settings.summary_timezone = os.getenv("RECTIFY_TIMEZONE")

        # Logging settings
        if os.getenv("RECTIFY_LOG_LEVEL"):
            settings.logging.level = os.getenv("RECTIFY_LOG_LEVEL")
        if os.getenv("RECTIFY_LOG_FILE"):
            settings.logging.file_path = os.getenv("RECTIFY_LOG_FILE")

        return settings

    @classmethod
    def from_file(cls, config_path: str) -> 'ClientSettings':
        """Load settings from configuration file"""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            if config_file.suffix.lower() in ('.yaml', '.yml'):
                config_data = yaml.safe_load(f) or {}
            elif config_file.suffix.lower() == '.json':
                config_data = json.load(f)
            else:
                raise ValueError(f"Unsupported configuration file format: {config_file.suffix}")

        return cls._from_dict(config_data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> 'ClientSettings':
        """Create ClientSettings from dictionary, ignoring unknown keys"""
        settings = cls()

        for f in fields(cls):
            if f.name == 'logging' or f.name not in data:
                continue
            setattr(settings, f.name, data[f.name])

        if 'logging' in data:
            for key, value in data['logging'].items():
                if hasattr(settings.logging, key):
                    setattr(settings.logging, key, value)

        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary; the encryption key is never exported"""
        return {
            'base_url': self.base_url,
            'timeout': self.timeout,
            'credentials_path': self.credentials_path,
            'token_storage_key': self.token_storage_key,
            'transaction_lookback_days': self.transaction_lookback_days,
            'summary_timezone': self.summary_timezone,
            'reset_success_delay': self.reset_success_delay,
            'logging': {
                'level': self.logging.level,
                'format': self.logging.format,
                'file_path': self.logging.file_path,
                'max_file_size': self.logging.max_file_size,
                'backup_count': self.logging.backup_count
            }
        }


# Global settings instance
_settings: Optional[ClientSettings] = None


def get_settings() -> ClientSettings:
    """Get global settings instance"""
    global _settings

    if _settings is None:
        # Try to load from file first, then fall back to environment
        config_file = os.getenv("RECTIFY_CONFIG_FILE", "rectify.yaml")

        if os.path.exists(config_file):
            _settings = ClientSettings.from_file(config_file)
        else:
            _settings = ClientSettings.from_env()

    return _settings


def set_settings(settings: Optional[ClientSettings]) -> None:
    """Set global settings instance"""
    global _settings
    _settings = settings
