# =============================================================================
# ops_core/config.py
# Explicit, injectable configuration for the sync core
# =============================================================================
"""
Every component receives a ``SyncConfig`` at construction time. There is no
module-level mode flag, so a test can build a remote-mode workspace and a
cache-only workspace side by side in the same process.

Credentials are looked up the same way the dashboard does it:

    .streamlit/secrets.toml
        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"

with ``SUPABASE_URL`` / ``SUPABASE_KEY`` environment variables as fallback.
"""

from __future__ import annotations
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any

from ops_core.errors import ConfigurationError
from ops_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_CACHE_PATH = Path("local_data") / "opsboard.db"

PLACEHOLDER_URL = "YOUR_SUPABASE_URL"
PLACEHOLDER_KEY = "YOUR_SUPABASE_ANON_KEY"


@dataclass(frozen=True)
class SyncConfig:
    """Configuration shared by every manager of one workspace."""

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    schema: str = "public"
    cache_path: str = str(DEFAULT_CACHE_PATH)
    storage_prefix: str = "opsboard"
    session_timeout_seconds: float = 30 * 60
    session_warning_seconds: float = 5 * 60
    activity_log_cap: int = 1000
    probe_remote: bool = False
    connection_timeout: float = 5.0

    def __post_init__(self):
        if self.session_timeout_seconds <= 0:
            raise ConfigurationError(
                "Session timeout must be positive",
                config_key="session_timeout_seconds",
                expected_type="positive number",
            )
        if not 0 <= self.session_warning_seconds < self.session_timeout_seconds:
            raise ConfigurationError(
                "Warning lead time must be shorter than the session timeout",
                config_key="session_warning_seconds",
            )
        if self.activity_log_cap < 1:
            raise ConfigurationError(
                "Activity log cap must be at least 1",
                config_key="activity_log_cap",
                expected_type="positive int",
            )

    @property
    def has_remote_credentials(self) -> bool:
        """True when a real Supabase project is configured."""
        if not self.supabase_url or not self.supabase_key:
            return False
        if self.supabase_url == PLACEHOLDER_URL or self.supabase_key == PLACEHOLDER_KEY:
            return False
        return "supabase.co" in self.supabase_url

    def storage_key(self, collection: str) -> str:
        """Namespaced cache key for one collection."""
        return f"{self.storage_prefix}_{collection}"

    @classmethod
    def from_env(cls, secrets_path: Optional[Path] = None, **overrides) -> SyncConfig:
        """
        Build a config from the secrets file and environment variables.

        Args:
            secrets_path: Path to a secrets.toml (default: .streamlit/secrets.toml)
            **overrides: Explicit values that win over anything discovered

        Raises:
            ConfigurationError: If a numeric setting cannot be parsed
        """
        values: Dict[str, Any] = {}

        secrets = _read_secrets(Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH)
        supabase_section = secrets.get("supabase", {})
        url = supabase_section.get("url") or os.getenv("SUPABASE_URL")
        key = supabase_section.get("key") or os.getenv("SUPABASE_KEY")
        if url:
            values["supabase_url"] = url
        if key:
            values["supabase_key"] = key

        cache_path = os.getenv("OPSBOARD_CACHE_PATH")
        if cache_path:
            values["cache_path"] = cache_path

        numeric_env = {
            "session_timeout_seconds": ("OPSBOARD_SESSION_TIMEOUT", float),
            "session_warning_seconds": ("OPSBOARD_SESSION_WARNING", float),
            "activity_log_cap": ("OPSBOARD_ACTIVITY_LOG_CAP", int),
        }
        for field_name, (env_name, cast) in numeric_env.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {env_name}: {raw!r}",
                    config_key=env_name,
                    expected_type=cast.__name__,
                ) from e

        values.update(overrides)
        config = cls(**values)
        logger.info(
            f"Loaded sync config (remote credentials: {config.has_remote_credentials}, "
            f"cache: {config.cache_path})"
        )
        return config


def _read_secrets(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(
            f"Could not read secrets file {path}: {e}",
            config_key="secrets_path",
        ) from e
