"""
Configuration management for Rendezvous.

Handles:
- Listen address
- Announce expiry bound
- Logging level
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".rendezvous"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

# Announced expiries may not be further than this in the future
MAX_EXPIRY_MS = 1000 * 60 * 5


@dataclass
class Config:
    """
    Main Rendezvous configuration.

    Stored at ~/.rendezvous/config.json, overridable from the environment.
    """
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_expiry_ms: int = MAX_EXPIRY_MS
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Paths
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "max_expiry_ms": self.max_expiry_ms,
            "log_level": self.log_level,
            "cors_origins": self.cors_origins,
        }

    @classmethod
    def from_dict(cls, data: dict, data_dir: Optional[Path] = None) -> "Config":
        # Filter to only known fields to handle config evolution
        known_fields = {"host", "port", "max_expiry_ms", "log_level", "cors_origins"}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        if data_dir is not None:
            filtered["data_dir"] = data_dir
        return cls(**filtered)

    def save(self) -> None:
        """Save configuration to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, 'r') as f:
            data = json.load(f)

        return cls.from_dict(data, data_dir=data_dir)

    def apply_env(self, environ: Optional[Dict[str, Any]] = None) -> "Config":
        """Override settings from HOST, PORT, LOG_LEVEL and MAX_EXPIRY_MS."""
        environ = os.environ if environ is None else environ

        if environ.get("HOST"):
            self.host = environ["HOST"]
        if environ.get("PORT"):
            self.port = int(environ["PORT"])
        if environ.get("LOG_LEVEL"):
            self.log_level = environ["LOG_LEVEL"].upper()
        if environ.get("MAX_EXPIRY_MS"):
            self.max_expiry_ms = int(environ["MAX_EXPIRY_MS"])

        return self

    @classmethod
    def from_env(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk, then apply environment overrides."""
        return cls.load(data_dir).apply_env()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
