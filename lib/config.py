"""
Process configuration.

All secrets and ids are read once from the environment (a local .env file is
loaded first) into a BridgeConfig, which is then passed to every client and
to the reconciler at construction time.
"""

import os
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

# env var -> BridgeConfig field
REQUIRED_VARS = {
    'SUPABASE_URL': 'supabase_url',
    'SUPABASE_KEY': 'supabase_key',
    'LACRM_API_KEY': 'lacrm_api_key',
    'LACRM_USER_ID': 'lacrm_user_id',
    'LACRM_PIPELINE_ID': 'lacrm_pipeline_id',
    'LACRM_STATUS_ID': 'lacrm_status_id',
    'TIDYCAL_API_TOKEN': 'tidycal_api_token',
}

TRUTHY = ("true", "1", "yes", "on")
FALSY = ("false", "0", "no", "off")


@dataclass(frozen=True)
class BridgeConfig:
    supabase_url: str
    supabase_key: str
    lacrm_api_key: str
    lacrm_user_id: str
    lacrm_pipeline_id: str
    lacrm_status_id: str
    tidycal_api_token: str
    lacrm_hook_secret: Optional[str] = None
    lacrm_folder_field: str = "Drive Folder"
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    drive_parent_folder_id: Optional[str] = None
    sync_trigger_secret: Optional[str] = None
    overlap_minutes: int = 2
    bootstrap_hours: int = 1
    default_timezone: str = "America/New_York"
    fail_fast: bool = True
    http_timeout: float = 30.0

    @property
    def has_google_credentials(self) -> bool:
        return all([self.google_client_id, self.google_client_secret, self.google_refresh_token])


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    value = (env.get(name) or "").strip()
    return value or None


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _optional(env, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value}")
    return value


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _optional(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _parse_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _optional(env, name)
    if raw is None:
        return default
    if raw.lower() in TRUTHY:
        return True
    if raw.lower() in FALSY:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def load_config(env: Optional[Mapping[str, str]] = None) -> BridgeConfig:
    """
    Build a BridgeConfig from the given mapping (defaults to os.environ).

    Raises ConfigurationError listing every missing required variable.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    missing = [name for name in REQUIRED_VARS if not _optional(env, name)]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    required = {field: _optional(env, name) for name, field in REQUIRED_VARS.items()}

    config = BridgeConfig(
        **required,
        lacrm_hook_secret=_optional(env, 'LACRM_HOOK_SECRET'),
        lacrm_folder_field=_optional(env, 'LACRM_FOLDER_FIELD') or "Drive Folder",
        google_client_id=_optional(env, 'GOOGLE_CLIENT_ID'),
        google_client_secret=_optional(env, 'GOOGLE_CLIENT_SECRET'),
        google_refresh_token=_optional(env, 'GOOGLE_REFRESH_TOKEN'),
        drive_parent_folder_id=_optional(env, 'DRIVE_PARENT_FOLDER_ID'),
        sync_trigger_secret=_optional(env, 'SYNC_TRIGGER_SECRET'),
        overlap_minutes=_parse_int(env, 'SYNC_OVERLAP_MINUTES', 2),
        bootstrap_hours=_parse_int(env, 'SYNC_BOOTSTRAP_HOURS', 1),
        default_timezone=_optional(env, 'DEFAULT_TIMEZONE') or "America/New_York",
        fail_fast=_parse_bool(env, 'SYNC_FAIL_FAST', True),
        http_timeout=_parse_float(env, 'HTTP_TIMEOUT_SECONDS', 30.0),
    )

    if not config.lacrm_hook_secret:
        logger.warning("LACRM_HOOK_SECRET not set - webhook events will be rejected")
    if not config.sync_trigger_secret:
        logger.warning("SYNC_TRIGGER_SECRET not set - sync trigger will reject all requests")
    if not config.has_google_credentials:
        logger.warning("Google OAuth credentials not set - folder provisioning disabled")

    return config
