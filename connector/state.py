"""
Connector State Management.
JSON persistence for per-platform update offsets.
"""

import logging
import os
from typing import Dict, Optional

from opsgate.safe_json import atomic_write_json, read_json
from opsgate.state_dir import get_state_dir

logger = logging.getLogger("OpsGate.connector.state")


def default_state_path() -> str:
    return os.path.join(get_state_dir(), "connector", "state.json")


class ConnectorState:
    def __init__(self, path: Optional[str] = None):
        self.path = path or default_state_path()
        self.data: Dict = {}
        self._load()

    def _load(self):
        data = read_json(self.path, dict)
        if not isinstance(data, dict):
            logger.error(f"Ignoring malformed connector state in {self.path}")
            data = {}
        self.data = data

    def save(self):
        try:
            atomic_write_json(self.path, self.data)
        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")

    # Offset Management
    def get_offset(self, platform: str) -> int:
        value = self.data.get(f"{platform}_offset", 0)
        return value if isinstance(value, int) else 0

    def set_offset(self, platform: str, offset: int):
        self.data[f"{platform}_offset"] = offset
        self.save()
