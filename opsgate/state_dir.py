"""
State Directory Service.
Provides portable, safe state directory paths for stores, ledgers and logs.
"""

import logging
import os
import sys
from typing import Mapping, Optional

logger = logging.getLogger("OpsGate.state_dir")

# Environment variable to override state directory
STATE_DIR_ENV = "OPSGATE_STATE_DIR"

# Default subdirectory name under user data
STATE_DIR_NAME = "opsgate"


def _get_user_data_dir(env: Mapping[str, str], subdir: Optional[str] = None) -> str:
    """
    Get the platform-appropriate user data directory.

    Returns:
        Path to user-writable application data directory.
    """
    subdir = subdir or STATE_DIR_NAME
    if sys.platform == "win32":
        # Windows: %LOCALAPPDATA%\{subdir}
        base = env.get("LOCALAPPDATA", os.path.expanduser("~"))
        return os.path.join(base, subdir)
    elif sys.platform == "darwin":
        # macOS: ~/Library/Application Support/{subdir}
        return os.path.join(
            os.path.expanduser("~"), "Library", "Application Support", subdir
        )
    else:
        # Linux/Unix: ~/.local/share/{subdir} (XDG_DATA_HOME)
        base = env.get(
            "XDG_DATA_HOME", os.path.join(os.path.expanduser("~"), ".local", "share")
        )
        return os.path.join(base, subdir)


def get_state_dir(env: Optional[Mapping[str, str]] = None) -> str:
    """
    Get the canonical state directory for all writable data.

    Priority:
    1. OPSGATE_STATE_DIR environment variable (explicit override)
    2. Platform-appropriate user data directory

    The directory is created (owner-only) if it doesn't exist.

    Returns:
        Absolute path to state directory.
    """
    env = os.environ if env is None else env
    env_dir = env.get(STATE_DIR_ENV)
    if env_dir:
        state_dir = os.path.abspath(env_dir)
    else:
        state_dir = _get_user_data_dir(env)

    if not os.path.exists(state_dir):
        try:
            os.makedirs(state_dir, mode=0o700, exist_ok=True)
            logger.info(f"Created state directory: {state_dir}")
        except OSError as e:
            logger.error(f"Failed to create state directory: {e}")
            # Fallback to temp directory
            import tempfile

            state_dir = os.path.join(tempfile.gettempdir(), STATE_DIR_NAME)
            os.makedirs(state_dir, mode=0o700, exist_ok=True)
            logger.warning(f"Using fallback state directory: {state_dir}")

    return state_dir
