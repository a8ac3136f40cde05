"""Configuration management for clockout."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import click
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .shift import REFERENCE_TZ_NAME

DEFAULT_DB_PATH = Path.home() / ".clockout" / "shift.db"
DEFAULT_PORT = 7778


@dataclass
class Settings:
    """Runtime settings, read from CLOCKOUT_* environment variables."""

    db_path: Path = DEFAULT_DB_PATH
    timezone: str = REFERENCE_TZ_NAME
    notify_url: Optional[str] = None
    notify_timeout: float = 5.0
    port: int = DEFAULT_PORT
    verbose: bool = False
    _tz: Optional[ZoneInfo] = field(default=None, init=False, repr=False)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=Path(os.environ.get("CLOCKOUT_DB", str(DEFAULT_DB_PATH))).expanduser(),
            timezone=os.environ.get("CLOCKOUT_TZ", REFERENCE_TZ_NAME),
            notify_url=os.environ.get("CLOCKOUT_NOTIFY_URL") or None,
            notify_timeout=float(os.environ.get("CLOCKOUT_NOTIFY_TIMEOUT", "5")),
            port=int(os.environ.get("CLOCKOUT_PORT", str(DEFAULT_PORT))),
            verbose=os.environ.get("CLOCKOUT_VERBOSE", "false").lower() == "true",
        )

    @property
    def tz(self) -> ZoneInfo:
        if self._tz is None:
            self._tz = ZoneInfo(self.timezone)
        return self._tz

    def validate(self) -> None:
        """Validate configuration."""
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise click.ClickException(f"Unknown timezone '{self.timezone}'.")
        if self.notify_timeout <= 0:
            raise click.ClickException("CLOCKOUT_NOTIFY_TIMEOUT must be positive.")
        if self.notify_url and not self.notify_url.startswith(("http://", "https://")):
            raise click.ClickException(
                f"Invalid notify URL '{self.notify_url}'. Expected http(s)://..."
            )


def get_settings() -> Settings:
    """Get validated settings from the environment."""
    settings = Settings.from_env()
    settings.validate()
    return settings


def db_option(f):
    """Decorator to add the store path option to commands."""
    return click.option(
        "--db",
        "db_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Shift store path (defaults to $CLOCKOUT_DB or ~/.clockout/shift.db)",
    )(f)


def timezone_option(f):
    """Decorator to add the reference timezone option to commands."""
    return click.option(
        "--tz",
        "timezone",
        default=None,
        help=f"Reference timezone for day boundaries (default {REFERENCE_TZ_NAME})",
    )(f)


def verbose_option(f):
    """Decorator to add verbose option to commands."""
    return click.option(
        "--verbose", "-v",
        is_flag=True,
        help="Enable verbose output",
    )(f)
