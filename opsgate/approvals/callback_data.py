"""
Callback Data Codec.
Compact `gating:v1:<id>:<action>` strings carried by inline buttons.
"""

import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

PREFIX = "gating"
VERSION = "v1"

_APPROVAL_ID_RE = re.compile(r"^[0-9a-fA-F-]{36}$")


class CallbackAction(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    APPROVE_RECREATE = "approve_recreate"


@dataclass(frozen=True)
class CallbackData:
    approval_id: str
    action: CallbackAction


def generate_approval_id() -> str:
    return str(uuid.uuid4())


def encode_callback_data(approval_id: str, action: CallbackAction) -> str:
    return f"{PREFIX}:{VERSION}:{approval_id}:{CallbackAction(action).value}"


def decode_callback_data(raw: Any) -> Optional[CallbackData]:
    """Parse button callback data; anything not produced by the encoder yields None."""
    if not isinstance(raw, str):
        return None
    parts = raw.strip().split(":")
    if len(parts) != 4:
        return None
    prefix, version, approval_id, action = parts
    if prefix != PREFIX or version != VERSION:
        return None
    if not _APPROVAL_ID_RE.match(approval_id):
        return None
    try:
        return CallbackData(approval_id=approval_id, action=CallbackAction(action))
    except ValueError:
        return None
