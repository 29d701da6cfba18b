"""
Connector Configuration.
Loads the Telegram transport settings from environment variables.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_API_BASE = "https://api.telegram.org"


@dataclass
class ConnectorConfig:
    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_api_base: str = DEFAULT_API_BASE
    poll_timeout_sec: int = 30
    request_timeout_sec: int = 15

    # Global
    debug: bool = False
    state_path: Optional[str] = None

    def __repr__(self):
        """Redact secret/token/key fields in logs and debug output."""
        d = self.__dict__.copy()
        for k in d:
            if "token" in k or "secret" in k or "key" in k:
                if d[k]:
                    d[k] = "***REDACTED***"
        fields = ", ".join(f"{k}={v!r}" for k, v in d.items())
        return f"{self.__class__.__name__}({fields})"


def load_config(env: Optional[Mapping[str, str]] = None) -> ConnectorConfig:
    """Load configuration from environment variables."""
    env = os.environ if env is None else env
    cfg = ConnectorConfig()

    cfg.telegram_bot_token = env.get("OPSGATE_CONNECTOR_TELEGRAM_TOKEN")
    cfg.telegram_api_base = env.get(
        "OPSGATE_CONNECTOR_TELEGRAM_API_BASE", DEFAULT_API_BASE
    ).rstrip("/")
    cfg.debug = env.get("OPSGATE_CONNECTOR_DEBUG", "0") == "1"
    cfg.state_path = env.get("OPSGATE_CONNECTOR_STATE_PATH")

    if timeout := env.get("OPSGATE_CONNECTOR_POLL_TIMEOUT_SEC"):
        if timeout.isdigit():
            cfg.poll_timeout_sec = int(timeout)
    if timeout := env.get("OPSGATE_CONNECTOR_REQUEST_TIMEOUT_SEC"):
        if timeout.isdigit():
            cfg.request_timeout_sec = int(timeout)

    return cfg
