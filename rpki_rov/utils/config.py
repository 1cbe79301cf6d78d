#!/usr/bin/env python3
"""
Configuration Management for RPKI ROV

Settings come from three layers:

1. Dataclass defaults
2. A JSON config file (explicit path, then ~/.config, /etc, ./config.json)
3. RPKI_ROV_* environment variables, applied in each section's __post_init__;
   endpoint and vrp_file only fill in values the file left unset

Command-line flags are applied on top by main.py through
update_relying_party_config().
"""

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse


@dataclass
class RelyingPartyConfig:
    """Relying-party connection configuration"""

    endpoint: Optional[str] = None
    vrp_path: str = "/json"
    status_path: str = "/api/v1/status"
    vrp_file: Optional[str] = None  # Local VRP export used instead of HTTP
    timeout: Optional[float] = None  # None: use the timeout manager default
    retry_attempts: int = 2
    verify_tls: bool = True

    def __post_init__(self):
        """Load from environment variables if not set"""
        if self.endpoint is None:
            self.endpoint = os.getenv("RPKI_ROV_ENDPOINT")
        if self.vrp_file is None:
            self.vrp_file = os.getenv("RPKI_ROV_VRP_FILE")
        if os.getenv("RPKI_ROV_RETRY_ATTEMPTS"):
            try:
                self.retry_attempts = int(os.getenv("RPKI_ROV_RETRY_ATTEMPTS"))
            except ValueError:
                pass
        if os.getenv("RPKI_ROV_VERIFY_TLS") in ["0", "false", "no"]:
            self.verify_tls = False


@dataclass
class ValidationConfig:
    """VRP snapshot and validation behaviour"""

    max_snapshot_age_seconds: int = 600  # Refresh the VRP snapshot after this age
    fail_closed: bool = True  # Refuse to answer from a stale snapshot when refresh fails

    def __post_init__(self):
        """Load from environment variables"""
        if os.getenv("RPKI_ROV_MAX_SNAPSHOT_AGE"):
            try:
                self.max_snapshot_age_seconds = int(os.getenv("RPKI_ROV_MAX_SNAPSHOT_AGE"))
            except ValueError:
                pass
        if os.getenv("RPKI_ROV_FAIL_CLOSED") in ["0", "false", "no"]:
            self.fail_closed = False


@dataclass
class LoggingConfig:
    """Log level and optional log file"""

    level: str = "INFO"
    log_to_file: bool = False
    log_file: Optional[str] = None

    def __post_init__(self):
        """Load from environment variables if not set"""
        if os.getenv("RPKI_ROV_LOG_LEVEL"):
            self.level = os.getenv("RPKI_ROV_LOG_LEVEL").upper()
        if os.getenv("RPKI_ROV_LOG_FILE"):
            self.log_file = os.getenv("RPKI_ROV_LOG_FILE")
            self.log_to_file = True


@dataclass
class ServerConfig:
    """HTTP exposure of the tool operations"""

    host: str = "127.0.0.1"
    port: int = 8323

    def __post_init__(self):
        if os.getenv("RPKI_ROV_HOST"):
            self.host = os.getenv("RPKI_ROV_HOST")
        if os.getenv("RPKI_ROV_PORT"):
            try:
                self.port = int(os.getenv("RPKI_ROV_PORT"))
            except ValueError:
                pass


@dataclass
class RPKIToolConfig:
    """All configuration sections of the tool"""

    relying_party: RelyingPartyConfig = None
    validation: ValidationConfig = None
    logging: LoggingConfig = None
    server: ServerConfig = None

    def __post_init__(self):
        """Initialize subconfigs if not provided"""
        if self.relying_party is None:
            self.relying_party = RelyingPartyConfig()
        if self.validation is None:
            self.validation = ValidationConfig()
        if self.logging is None:
            self.logging = LoggingConfig()
        if self.server is None:
            self.server = ServerConfig()


class ConfigManager:
    """Configuration management for RPKI ROV"""

    DEFAULT_CONFIG_PATHS = [
        Path.home() / ".config/rpki-rov/config.json",
        Path("/etc/rpki-rov/config.json"),
        Path("./config.json"),
    ]

    SECTIONS = {
        "relying_party": RelyingPartyConfig,
        "validation": ValidationConfig,
        "logging": LoggingConfig,
        "server": ServerConfig,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """`config_path` is tried before the default locations"""
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path
        self.config = RPKIToolConfig()
        self._load_config()

    def _load_config(self):
        """Apply the first config file found; environment overrides already ran"""
        config_file = self._find_config_file()
        if config_file:
            try:
                self._load_from_file(config_file)
                self.logger.info(f"Loaded configuration from {config_file}")
            except (OSError, ValueError, TypeError) as e:
                self.logger.warning(f"Failed to load config file {config_file}: {e}")

        # Environment variables are applied in the __post_init__ methods
        rp = self.config.relying_party
        self.logger.debug(f"Relying party: endpoint={rp.endpoint} vrp_file={rp.vrp_file}")

    def _find_config_file(self) -> Optional[Path]:
        """Explicit path first, then the default locations"""
        if self.config_path and self.config_path.exists():
            return self.config_path

        for path in self.DEFAULT_CONFIG_PATHS:
            if path.exists():
                return path

        return None

    def _load_from_file(self, config_path: Path):
        """Read a JSON config file with one object per section"""
        with open(config_path, "r") as f:
            data = json.load(f)
        self._load_from_dict(data)

    def _load_from_dict(self, data: dict):
        """Load configuration sections from a dictionary"""
        for section, section_class in self.SECTIONS.items():
            if section in data:
                setattr(self.config, section, section_class(**data[section]))

    def save_config(self, config_path: Optional[Path] = None) -> Path:
        """Save current configuration to file"""
        if config_path is None:
            config_path = self.DEFAULT_CONFIG_PATHS[0]

        config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = {
            section: asdict(getattr(self.config, section)) for section in self.SECTIONS
        }

        with open(config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

        self.logger.info(f"Configuration saved to {config_path}")
        return config_path

    def get_config(self) -> RPKIToolConfig:
        """Current configuration; timeout environment is checked once"""
        if not hasattr(self, "_timeouts_validated"):
            from rpki_rov.utils.timeout_config import validate_timeouts

            timeout_results = validate_timeouts()
            for warning in timeout_results.get("warnings", []):
                self.logger.warning(f"Timeout configuration warning: {warning}")
            for error in timeout_results.get("errors", []):
                self.logger.error(f"Timeout configuration error: {error}")

            self._timeouts_validated = True

        return self.config

    def update_relying_party_config(self, **kwargs):
        """Update relying-party configuration, ignoring None values"""
        for key, value in kwargs.items():
            if value is not None and hasattr(self.config.relying_party, key):
                setattr(self.config.relying_party, key, value)

    def validate_config(self) -> List[str]:
        """Validate configuration and return a list of issues"""
        issues = []
        rp = self.config.relying_party

        if rp.endpoint:
            parsed = urlparse(rp.endpoint)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                issues.append(f"Relying-party endpoint must be an http(s) URL: {rp.endpoint}")
        elif not rp.vrp_file:
            issues.append("Either relying_party.endpoint or relying_party.vrp_file must be set")

        if rp.vrp_file and not Path(rp.vrp_file).exists():
            issues.append(f"VRP file not found: {rp.vrp_file}")
        if rp.timeout is not None and rp.timeout <= 0:
            issues.append("relying_party.timeout must be positive")
        if rp.retry_attempts < 0:
            issues.append("relying_party.retry_attempts must not be negative")

        if self.config.validation.max_snapshot_age_seconds <= 0:
            issues.append("validation.max_snapshot_age_seconds must be positive")

        if not 1 <= self.config.server.port <= 65535:
            issues.append(f"server.port out of range: {self.config.server.port}")

        if self.config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            issues.append(f"Unknown log level: {self.config.logging.level}")

        return issues


_config_manager: Optional[ConfigManager] = None
_config_manager_lock = threading.RLock()


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """
    Get global configuration manager instance using double-checked locking.

    The first check is lockless; the lock is only taken during initialization.
    """
    global _config_manager

    if _config_manager is not None:
        return _config_manager

    with _config_manager_lock:
        if _config_manager is None:
            _config_manager = ConfigManager(config_path)

        return _config_manager


def reset_config_manager() -> None:
    """Drop the global instance so the next call reloads configuration"""
    global _config_manager
    with _config_manager_lock:
        _config_manager = None

