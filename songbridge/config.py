#!/usr/bin/env python3
"""
Centralized configuration for songbridge with env var overrides.
- User config file: ~/.config/songbridge/config.json
- Precedence: environment > user config file > built-in defaults
- Catalog tokens: environment first, then the system keychain
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import keyring
from keyring.errors import KeyringError
from rich.console import Console

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "songbridge"
CONFIG_FILE = CONFIG_DIR / "config.json"
KEYRING_SERVICE = "songbridge"

console = Console()

DEFAULTS: Dict[str, Any] = {
    # Confidence buckets over a 0..100 score
    "THRESHOLD_HIGH": 90,
    "THRESHOLD_MEDIUM": 75,
    "THRESHOLD_LOW": 60,
    # Weight profile name; "auto" picks one per catalog pair
    "SCORING_PROFILE": "auto",
    "MAX_PARALLEL_REQUESTS": 10,
    "BATCH_SIZE": 50,
    "BATCH_DELAY_MS": 100,
    # Minimum spacing between outbound calls to one catalog
    "API_RATE_LIMIT_MS": 200,
    "REQUEST_TIMEOUT_S": 5.0,
    "MAX_RETRIES": 3,
    "ALTERNATIVES_LIMIT": 10,
    "SESSION_TTL_S": 3600,
    "CACHE_TTL_S": 86400,
    "STOREFRONT": "us",
    "LOG_LEVEL": "WARNING",
}

ENV_MAP = {key: f"BRIDGE_{key}" for key in DEFAULTS}

TOKEN_ENV = {
    "apple_developer": "BRIDGE_APPLE_DEVELOPER_TOKEN",
    "apple_user": "BRIDGE_APPLE_USER_TOKEN",
    "spotify": "BRIDGE_SPOTIFY_TOKEN",
}

_INT_KEYS = (
    "THRESHOLD_HIGH",
    "THRESHOLD_MEDIUM",
    "THRESHOLD_LOW",
    "MAX_PARALLEL_REQUESTS",
    "BATCH_SIZE",
    "BATCH_DELAY_MS",
    "API_RATE_LIMIT_MS",
    "MAX_RETRIES",
    "ALTERNATIVES_LIMIT",
    "SESSION_TTL_S",
    "CACHE_TTL_S",
)
_FLOAT_KEYS = ("REQUEST_TIMEOUT_S",)
# Must match the profile names in matcher.PROFILES
SCORING_PROFILES = ("auto", "strict", "balanced", "artist_only")


def _load_user_file() -> Dict[str, Any]:
    # Skip file loading during tests - just return defaults
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return DEFAULTS.copy()
    if not CONFIG_FILE.exists():
        return DEFAULTS.copy()
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, e)
        data = {}
    if not isinstance(data, dict):
        data = {}
    for k, v in DEFAULTS.items():
        data.setdefault(k, v)
    return data


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(cfg)
    for key, env_name in ENV_MAP.items():
        val = os.getenv(env_name)
        if val is not None:
            out[key] = val
    return out


def _coerce_types(eff: Dict[str, Any]) -> Dict[str, Any]:
    for k in _INT_KEYS:
        try:
            eff[k] = int(eff[k])
        except (TypeError, ValueError):
            eff[k] = DEFAULTS[k]
    for k in _FLOAT_KEYS:
        try:
            eff[k] = float(eff[k])
        except (TypeError, ValueError):
            eff[k] = DEFAULTS[k]
    eff["LOG_LEVEL"] = str(eff["LOG_LEVEL"]).upper()
    profile = str(eff["SCORING_PROFILE"]).lower()
    if profile not in SCORING_PROFILES:
        logger.warning("Unknown SCORING_PROFILE %r; using auto", eff["SCORING_PROFILE"])
        profile = "auto"
    eff["SCORING_PROFILE"] = profile
    return eff


def load_config() -> Dict[str, Any]:
    """Load effective config: env > file > defaults, coerced to expected types."""
    file_cfg = _load_user_file()
    merged = DEFAULTS | file_cfg
    merged = _apply_env_overrides(merged)
    return _coerce_types(merged)


def save_config(values: Dict[str, Any]) -> Path:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    data = {k: values[k] for k in DEFAULTS if k in values}
    with open(CONFIG_FILE, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return CONFIG_FILE


def get_token(name: str) -> Optional[str]:
    """Look up a catalog token by name ("apple_developer", "apple_user", "spotify")."""
    env_name = TOKEN_ENV.get(name)
    if env_name and os.getenv(env_name):
        return os.getenv(env_name)
    try:
        return keyring.get_password(KEYRING_SERVICE, name)
    except KeyringError as e:
        logger.info("Keychain lookup for %s failed: %s", name, e)
        return None


# Exposed module-level config used by the CLI
config = load_config()
