"""
Configuration loading for the sync engine.

Settings come from an INI file (``config.ini`` next to the project root by
default, or the path in ``MAILSYNC_CONFIG``). A ``.env`` file is loaded first
so environment overrides can live there.
"""

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.ini")

DEFAULT_ATTACHMENT_FOLDER = "BidVault Email Attachments"


@dataclass(frozen=True)
class SyncSettings:
    """Tunable parameters for a synchronization run."""
    db_path: str = "mailsync.db"
    label: str = "INBOX"
    lookback_days: int = 7
    max_results: int = 2000
    page_size: int = 100
    batch_size: int = 50
    request_timeout: float = 30.0
    mark_as_read: bool = False
    advance_on_partial_failure: bool = True
    attachment_folder: str = DEFAULT_ATTACHMENT_FOLDER
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ('lookback_days', 'max_results', 'page_size', 'batch_size'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout}")


def load_config(config_path: str = None) -> configparser.ConfigParser:
    """Load configuration from file."""
    if config_path is None:
        config_path = os.getenv("MAILSYNC_CONFIG", CONFIG_PATH)
    cfg = configparser.ConfigParser()
    if os.path.exists(config_path):
        cfg.read(config_path)
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        logger.debug(f"No configuration file at {config_path}, using defaults")
    return cfg


def settings_from_config(cfg: configparser.ConfigParser) -> SyncSettings:
    """Build SyncSettings from a parsed config, applying environment overrides."""
    defaults = SyncSettings()

    db_path = os.getenv(
        "MAILSYNC_DB_PATH",
        cfg.get("database", "path", fallback=defaults.db_path)
    )
    log_level = os.getenv(
        "MAILSYNC_LOG_LEVEL",
        cfg.get("logging", "level", fallback=defaults.log_level)
    )

    return SyncSettings(
        db_path=db_path,
        label=cfg.get("sync", "label", fallback=defaults.label),
        lookback_days=cfg.getint("sync", "lookback_days", fallback=defaults.lookback_days),
        max_results=cfg.getint("sync", "max_results", fallback=defaults.max_results),
        page_size=cfg.getint("sync", "page_size", fallback=defaults.page_size),
        batch_size=cfg.getint("sync", "batch_size", fallback=defaults.batch_size),
        request_timeout=cfg.getfloat("sync", "request_timeout", fallback=defaults.request_timeout),
        mark_as_read=cfg.getboolean("sync", "mark_as_read", fallback=defaults.mark_as_read),
        advance_on_partial_failure=cfg.getboolean(
            "sync", "advance_on_partial_failure",
            fallback=defaults.advance_on_partial_failure
        ),
        attachment_folder=cfg.get("drive", "folder_name", fallback=defaults.attachment_folder),
        log_level=log_level.upper(),
    )


def load_settings(config_path: Optional[str] = None, env_file: Optional[str] = None) -> SyncSettings:
    """Load .env, then the INI file, and return validated settings."""
    env_path = Path(env_file) if env_file else PROJECT_ROOT / '.env'
    if env_path.exists():
        load_dotenv(env_path, override=True)
    return settings_from_config(load_config(config_path))
