"""
Configuration management for bodywerk

This module handles loading, validation, and management of engine settings
from multiple sources including YAML files and environment variables. It provides
a centralized configuration system shared by the HTTP gateway, the token manager
and the playlist pipeline.

The configuration is organized into logical sections using dataclasses:
- Spotify API settings (credentials, redirect URL, scopes, endpoints)
- Engine tuning (page sizes, delays, chunk sizes, feature batching)
- Network behaviour (timeouts, retry caps, backoff, refresh skew)
- Logging output
- Security (session signing secret)

All sensitive data (client secret, session secret) should be loaded from
environment variables, while tuning values can be stored in YAML files.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

from ..core.exceptions import ConfigError

# Load environment variables from .env file if present
load_dotenv()


# Scopes needed by the engine itself (superset of both historical auth flows)
REQUIRED_SCOPES = [
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-private",
    "playlist-modify-public",
    "user-read-email",
    "user-read-private",
]

# Playback scopes some callers request; never needed by the engine
PLAYBACK_SCOPES = [
    "user-read-playback-state",
    "user-modify-playback-state",
]


@dataclass
class SpotifyConfig:
    """
    Spotify API configuration and authentication settings

    Contains credentials, the OAuth redirect URL and the scope set requested
    during authorization. Sensitive values (client_id, client_secret) should
    be provided via environment variables.
    """
    client_id: str = ""
    client_secret: str = ""
    redirect_url: str = "http://localhost:8080/callback"
    scopes: List[str] = field(default_factory=lambda: list(REQUIRED_SCOPES))
    optional_scopes: List[str] = field(default_factory=list)
    show_dialog: bool = True
    api_base_url: str = "https://api.spotify.com/v1"
    accounts_base_url: str = "https://accounts.spotify.com"

    @property
    def token_url(self) -> str:
        return f"{self.accounts_base_url.rstrip('/')}/api/token"

    @property
    def all_scopes(self) -> List[str]:
        """Required scopes followed by caller-selected optional ones, without duplicates"""
        combined = []
        for scope in list(self.scopes) + list(self.optional_scopes):
            if scope and scope not in combined:
                combined.append(scope)
        return combined


@dataclass
class EngineConfig:
    """
    Engine tuning for pagination, enrichment and publishing

    Page sizes follow the upstream limits: playlist listing accepts up to 50
    items per page, playlist tracks up to 100, batched audio features up to
    50 ids and track appends up to 100 URIs.
    """
    batch_size: int = 20  # tracks per page when reading a playlist
    list_page_size: int = 50
    rate_limit_delay_ms: int = 1000  # pause between single-track feature lookups
    feature_batching: bool = False
    feature_batch_size: int = 50
    feature_batch_delay_ms: int = 100
    append_chunk_size: int = 100
    append_delay_ms: int = 100
    default_new_playlist_public: bool = False
    sorted_name_suffix: str = " - Sorted by Danceability"
    sorted_description: str = "Tracks sorted by danceability score"


@dataclass
class NetworkConfig:
    """
    Network and HTTP configuration settings

    Controls the gateway's retry budgets and timeouts. The refresh skew is
    the safety margin before expiry at which the token manager refreshes.
    """
    user_agent: str = "bodywerk/0.3"
    request_timeout_ms: int = 30000
    max_rate_limit_retries: int = 6
    max_5xx_retries: int = 3
    max_network_retries: int = 3
    backoff_base_ms: int = 500
    backoff_jitter: float = 0.2
    refresh_skew_sec: int = 30


@dataclass
class LoggingConfig:
    """
    Logging configuration and output settings

    Controls application logging behavior including log levels, file output,
    rotation, and console formatting.
    """
    level: str = "INFO"
    file: str = ""
    max_size: str = "10MB"
    backup_count: int = 3
    console_output: bool = True
    colored_output: bool = True


@dataclass
class SecurityConfig:
    """
    Security configuration

    The session secret signs the OAuth state parameter so that a redirect
    can be tied back to the authorization request that produced it.
    """
    session_secret: str = ""
    config_directory: str = "~/.bodywerk/"


class Settings:
    """
    Main settings class that manages all configuration

    This class serves as the central configuration manager, loading settings
    from multiple sources (YAML files, environment variables) and providing
    a unified interface for accessing configuration throughout the engine.

    The class handles:
    - Loading configuration from YAML files
    - Overriding with environment variables
    - Validating configuration values
    - Checking that bootstrap secrets are present
    """

    def __init__(self, config_path: Optional[str] = None, load_sources: bool = True):
        """
        Initialize settings from config file or environment variables

        Args:
            config_path: Path to custom config file, if None uses default locations
            load_sources: When False only dataclass defaults are used (tests, embedding)
        """
        self.config_path = config_path
        self.config_dir = Path.home() / ".bodywerk"

        # Initialize all configuration objects with default values
        self.spotify = SpotifyConfig()
        self.engine = EngineConfig()
        self.network = NetworkConfig()
        self.logging = LoggingConfig()
        self.security = SecurityConfig()

        if load_sources:
            # Load configuration from various sources in order of precedence
            self._load_config()
            self._load_environment_variables()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file

        Searches for configuration files in multiple locations in order of
        precedence. The first file found will be used.

        Raises:
            ConfigError: If an explicitly requested file is missing or unreadable
        """
        if self.config_path and not Path(self.config_path).exists():
            raise ConfigError(
                f"Config file not found: {self.config_path}",
                details={'file_path': str(self.config_path)}
            )

        config_paths = [
            self.config_path,
            self.config_dir / "config.yaml",
            Path("config/config.yaml"),
            Path("config.yaml")
        ]

        config_data = {}
        for path in config_paths:
            if path and Path(path).exists():
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        config_data = yaml.safe_load(f) or {}
                except (OSError, yaml.YAMLError) as e:
                    raise ConfigError(
                        f"Failed to load config from {path}: {e}",
                        details={'file_path': str(path)}
                    ) from e
                break

        if not isinstance(config_data, dict):
            raise ConfigError("Config file must contain a mapping of sections")

        # Apply loaded configuration to dataclass instances
        self.apply(config_data)

    def apply(self, config_data: Dict[str, Any]) -> None:
        """
        Apply configuration data to dataclass instances

        Maps configuration sections to the appropriate dataclass instances,
        updating only the attributes that exist in both the data and the
        dataclass definition.

        Args:
            config_data: Dictionary containing configuration sections
        """
        config_mapping = {
            'spotify': self.spotify,
            'engine': self.engine,
            'network': self.network,
            'logging': self.logging,
            'security': self.security,
        }

        for section_name, section_data in config_data.items():
            if section_name in config_mapping and isinstance(section_data, dict):
                config_obj = config_mapping[section_name]
                for key, value in section_data.items():
                    if hasattr(config_obj, key):
                        setattr(config_obj, key, value)

    def _load_environment_variables(self) -> None:
        """
        Load sensitive configuration from environment variables

        Environment variables take precedence over file-based configuration
        for security-sensitive values.
        """
        env_mappings = {
            'SPOTIFY_CLIENT_ID': lambda v: setattr(self.spotify, 'client_id', v),
            'SPOTIFY_CLIENT_SECRET': lambda v: setattr(self.spotify, 'client_secret', v),
            'SPOTIFY_REDIRECT_URI': lambda v: setattr(self.spotify, 'redirect_url', v),
            'SPOTIFY_REDIRECT_URL': lambda v: setattr(self.spotify, 'redirect_url', v),
            'BODYWERK_SESSION_SECRET': lambda v: setattr(self.security, 'session_secret', v),
            'BODYWERK_LOG_LEVEL': lambda v: setattr(self.logging, 'level', v),
        }

        # Apply environment variables if they exist
        for env_var, setter in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                setter(value)

    def get_config_directory(self) -> Path:
        """Expanded configuration directory path"""
        return Path(self.security.config_directory).expanduser()

    def missing_secrets(self) -> List[str]:
        """Names of bootstrap secrets that are not configured"""
        required = {
            'SPOTIFY_CLIENT_ID': self.spotify.client_id,
            'SPOTIFY_CLIENT_SECRET': self.spotify.client_secret,
            'SPOTIFY_REDIRECT_URL': self.spotify.redirect_url,
            'BODYWERK_SESSION_SECRET': self.security.session_secret,
        }
        return [name for name, value in required.items() if not value]

    def require_secrets(self) -> None:
        """
        Ensure every secret needed at bootstrap is present

        Raises:
            ConfigError: Listing the missing environment variables
        """
        missing = self.missing_secrets()
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}",
                details={'missing': missing}
            )

    def validate(self) -> List[str]:
        """
        Validate current configuration

        Performs validation of secrets and numeric ranges so that
        misconfiguration is caught before the first upstream request.

        Returns:
            List of human-readable problems, empty when the configuration is valid
        """
        errors = [f"{name} is not set" for name in self.missing_secrets()]

        ranges = [
            ('engine.list_page_size', self.engine.list_page_size, 1, 50),
            ('engine.batch_size', self.engine.batch_size, 1, 100),
            ('engine.feature_batch_size', self.engine.feature_batch_size, 1, 50),
            ('engine.append_chunk_size', self.engine.append_chunk_size, 1, 100),
        ]
        for name, value, low, high in ranges:
            if not isinstance(value, int) or not low <= value <= high:
                errors.append(f"{name} must be between {low} and {high} (got {value!r})")

        non_negative = [
            ('engine.rate_limit_delay_ms', self.engine.rate_limit_delay_ms),
            ('engine.feature_batch_delay_ms', self.engine.feature_batch_delay_ms),
            ('engine.append_delay_ms', self.engine.append_delay_ms),
            ('network.max_rate_limit_retries', self.network.max_rate_limit_retries),
            ('network.max_5xx_retries', self.network.max_5xx_retries),
            ('network.max_network_retries', self.network.max_network_retries),
            ('network.refresh_skew_sec', self.network.refresh_skew_sec),
            ('network.backoff_base_ms', self.network.backoff_base_ms),
        ]
        for name, value in non_negative:
            if value < 0:
                errors.append(f"{name} must not be negative (got {value})")

        if self.network.request_timeout_ms <= 0:
            errors.append("network.request_timeout_ms must be positive")

        if not 0 <= self.network.backoff_jitter < 1:
            errors.append("network.backoff_jitter must be in [0, 1)")

        return errors

    def __str__(self) -> str:
        """Concise summary of key configuration values for logging"""
        sections = [
            f"Client: {'set' if self.spotify.client_id else 'missing'}",
            f"Pages: {self.engine.list_page_size}/{self.engine.batch_size}",
            f"Features: {'batched' if self.engine.feature_batching else 'single'}",
            f"Timeout: {self.network.request_timeout_ms}ms",
        ]
        return f"Settings({', '.join(sections)})"


# Global settings instance, created on first access
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance

    Provides access to the singleton settings instance that is shared
    throughout the application.

    Returns:
        The global Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(config_path: Optional[str] = None) -> Settings:
    """
    Reload settings from configuration files

    Creates a new settings instance with updated configuration from files
    and environment variables.

    Args:
        config_path: Optional path to specific config file

    Returns:
        New Settings instance with reloaded configuration
    """
    global _settings
    _settings = Settings(config_path)
    return _settings
