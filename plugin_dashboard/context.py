#!/usr/bin/env python3
"""
Dashboard context: the persisted token, bStats mapping and preferences.

The context is created once per process and passed explicitly to the API
clients and the controller. It loads stored values (or their defaults) on
start and wipes the session state on logout.
"""

import base64
import hashlib
import logging
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from .bstats_client import DEFAULT_BSTATS_MAPPING, validate_mapping
from .cache import LocalStore
from .config import DashboardConfig
from .errors import ValidationFailure

TOKEN_KEY = "github-token"
TOKEN_CIPHER_KEY = "token-key"
MAPPING_KEY = "bstats-mapping"
LANGUAGE_KEY = "language"
VIEW_MODE_KEY = "viewMode"
ACTIVE_TAB_KEY = "activeTab"
HW_ACCEL_KEY = "hardwareAcceleration"

LANGUAGES = ("en", "ko")
VIEW_MODES = ("grid-1", "grid-2", "grid-3")
TABS = ("main", "stats")

DEFAULT_PREFERENCES = {
    LANGUAGE_KEY: "en",
    VIEW_MODE_KEY: "grid-3",
    ACTIVE_TAB_KEY: "main",
    HW_ACCEL_KEY: True,
}

logger = logging.getLogger(__name__)


class TokenCipher:
    """Encrypts the GitHub token before it is written to local storage."""

    def __init__(self, secret_key: str):
        """
        Args:
            secret_key: Base64 encoded Fernet key, or any passphrase (hashed into a key).
        """
        key = secret_key.encode() if isinstance(secret_key, str) else secret_key
        if len(key) != 44:  # Base64 encoded 32-byte key length
            key = base64.urlsafe_b64encode(hashlib.sha256(key).digest())
        try:
            self.cipher = Fernet(key)
        except ValueError as e:
            raise ValueError(f"Invalid dashboard secret key: {e}")

    def encrypt(self, token: str) -> str:
        return self.cipher.encrypt(token.encode()).decode()

    def decrypt(self, value: str) -> Optional[str]:
        try:
            return self.cipher.decrypt(value.encode()).decode()
        except (InvalidToken, ValueError):
            return None


class DashboardContext:
    """Holds the session state shared by the API clients and the controller."""

    def __init__(self, store: LocalStore, config: Optional[DashboardConfig] = None):
        """
        Initialize the context.

        Args:
            store: Open LocalStore used for settings and cached responses
            config: Process configuration (defaults when None)
        """
        self.store = store
        self.config = config or DashboardConfig()
        self.cipher = None
        self.token = None
        self.mapping = dict(DEFAULT_BSTATS_MAPPING)
        self.preferences = dict(DEFAULT_PREFERENCES)

    def load(self) -> 'DashboardContext':
        """Load persisted state, writing defaults for anything missing."""
        self.cipher = TokenCipher(self._secret_key())

        stored = self.store.get_setting(TOKEN_KEY)
        self.token = self.cipher.decrypt(stored) if stored else None
        if stored and self.token is None:
            logger.warning("Stored GitHub token could not be decrypted; discarding it")
            self.store.remove_setting(TOKEN_KEY)
        if self.token is None and self.config.github_token:
            self.set_token(self.config.github_token)

        self.mapping = self._load_mapping()

        for key, default in DEFAULT_PREFERENCES.items():
            self.preferences[key] = self.store.get_setting(key, default)
        return self

    def _secret_key(self) -> str:
        if self.config.secret_key:
            return self.config.secret_key
        key = self.store.get_setting(TOKEN_CIPHER_KEY)
        if not key:
            logger.warning("DASHBOARD_SECRET not set; generating a local key for token storage")
            key = Fernet.generate_key().decode()
            self.store.set_setting(TOKEN_CIPHER_KEY, key)
        return key

    def _load_mapping(self) -> Dict[str, int]:
        raw = self.store.get_setting(MAPPING_KEY)
        if raw is None:
            # Persist the defaults so every reader sees the same table
            self.store.set_setting(MAPPING_KEY, DEFAULT_BSTATS_MAPPING)
            return dict(DEFAULT_BSTATS_MAPPING)
        try:
            return validate_mapping(raw)
        except ValidationFailure as e:
            logger.error(f"Stored bStats mapping is invalid ({e}); using defaults")
            return dict(DEFAULT_BSTATS_MAPPING)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def set_token(self, token: str):
        token = (token or "").strip()
        if not token:
            raise ValidationFailure("A GitHub personal access token is required.", field="token")
        self.token = token
        self.store.set_setting(TOKEN_KEY, self.cipher.encrypt(token))

    def clear_token(self):
        self.token = None
        self.store.remove_setting(TOKEN_KEY)

    def save_mapping(self, raw) -> Dict[str, int]:
        """Validate and persist a new manual mapping. Nothing is stored on failure."""
        mapping = validate_mapping(raw)
        self.store.set_setting(MAPPING_KEY, mapping)
        self.mapping = mapping
        logger.info(f"Saved bStats mapping with {len(mapping)} entries")
        return mapping

    def lookup_mapping(self, repo_name: str) -> Optional[int]:
        """Case-insensitive lookup of a repository in the manual mapping."""
        target = repo_name.lower()
        for name, plugin_id in self.mapping.items():
            if name.lower() == target:
                return plugin_id
        return None

    def set_preference(self, key: str, value):
        allowed = {
            LANGUAGE_KEY: LANGUAGES,
            VIEW_MODE_KEY: VIEW_MODES,
            ACTIVE_TAB_KEY: TABS,
            HW_ACCEL_KEY: (True, False),
        }
        if key not in allowed:
            raise ValidationFailure(f"Unknown setting '{key}'.", field=key)
        if key == HW_ACCEL_KEY and not isinstance(value, bool):
            raise ValidationFailure(f"'{key}' must be true or false.", field=key)
        if value not in allowed[key]:
            choices = ", ".join(str(c) for c in allowed[key])
            raise ValidationFailure(f"'{key}' must be one of: {choices}.", field=key)
        self.preferences[key] = value
        self.store.set_setting(key, value)

    def clear(self):
        """Drop the session: forget the token. Preferences and mapping are kept."""
        self.clear_token()
