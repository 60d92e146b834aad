"""
Configuration management package for bodywerk

1. Settings Management (settings.py):
   - Engine configuration from YAML files and environment variables
   - Validation of secrets and tuning ranges

2. Authentication Management (auth.py):
   - Spotify OAuth2 authorization URL and redirect handling
   - In-memory credential with serialized automatic refresh

Usage:

    from bodywerk.config import get_settings, TokenManager

    settings = get_settings()
    tokens = TokenManager.from_settings(settings)

Configuration Sources (highest priority first):
1. Environment variables (and a .env file), for secrets
2. YAML configuration file
3. Dataclass defaults
"""

# Settings management imports
from .settings import get_settings, reload_settings, Settings

# Authentication and credential management
from .auth import AuthorizationFlow, Credential, CredentialState, TokenManager

__all__ = [
    # Settings management - primary configuration interface
    'get_settings',
    'reload_settings',
    'Settings',

    # Authentication - OAuth2 flow and credential ownership
    'AuthorizationFlow',
    'Credential',
    'CredentialState',
    'TokenManager',
]
