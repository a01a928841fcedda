"""Client configuration and config file loading."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from robustsession import __version__
from robustsession.lib import oj

logger = logging.getLogger(__name__)

# Config file locations
CONFIG_FILENAME = "config.json"
GLOBAL_CONFIG = Path.home() / ".robustsession" / CONFIG_FILENAME
LOCAL_CONFIG_DIR = ".robustsession"

DEFAULT_USER_AGENT = f"robustsession/{__version__}"


@dataclass
class SessionConfig:
    """Configuration shared by all sessions of a client."""

    verify_tls: bool = True
    """Whether to verify TLS certificates of the targets."""

    request_timeout: float = 30.0
    """Overall timeout of CreateSession, PostMessage and DeleteSession."""

    connect_timeout: float = 10.0
    """TCP/TLS connection establishment timeout in seconds."""

    idle_timeout: float = 60.0
    """GetMessages is retried when no message was parsed for this long."""

    discovery_retry_delay: float = 5.0
    """Delay before resolving again after a failed discovery."""

    max_requests_per_target: int = 1
    """Concurrent short requests per target (the stream is not counted)."""

    user_agent: str = DEFAULT_USER_AGENT
    """User-Agent header sent with every request."""

    delete_on_close: bool = True
    """Whether aclose() sends a best-effort DeleteSession."""

    quit_message: str = ""
    """Quit message sent with DeleteSession."""

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        if self.discovery_retry_delay < 0:
            raise ValueError("discovery_retry_delay must not be negative")
        if self.max_requests_per_target < 1:
            raise ValueError("max_requests_per_target must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionConfig":
        """Create from config dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = oj.loads(path.read_bytes())
    except (OSError, oj.JSONDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: not a JSON object")
        return {}
    return data


def load_config(working_dir: Path | None = None, global_config: Path = GLOBAL_CONFIG) -> SessionConfig:
    """Load the client config from global and local config files.

    Global config (~/.robustsession/config.json) is loaded first.
    Local config ({working_dir}/.robustsession/config.json) overrides global.

    Returns:
        The merged configuration (defaults where neither file sets a key).
    """
    merged: dict[str, Any] = {}

    if global_config.exists():
        merged.update(_read_config_file(global_config))

    if working_dir:
        local_config = working_dir / LOCAL_CONFIG_DIR / CONFIG_FILENAME
        if local_config.exists():
            merged.update(_read_config_file(local_config))

    return SessionConfig.from_dict(merged)
