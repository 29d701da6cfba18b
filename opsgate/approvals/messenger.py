"""
Approval Messenger Interface.
The chat transport the gating service posts and edits cards through.
"""

from typing import List, Optional, Protocol

from .cards import ButtonRows
from .models import ApprovalRequest, MessageRef


class ApprovalMessenger(Protocol):
    """
    Implementations raise `opsgate.errors.TransportFailed` on delivery
    failure; the service decides whether that is fatal.
    """

    async def post_card(
        self,
        request: ApprovalRequest,
        text: str,
        buttons: ButtonRows,
        targets: List[str],
    ) -> List[MessageRef]: ...

    async def edit_card(
        self, message: MessageRef, text: str, buttons: Optional[ButtonRows] = None
    ) -> None: ...

    async def notify(self, chat_id: str, text: str) -> None: ...
