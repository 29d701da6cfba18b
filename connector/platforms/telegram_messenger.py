"""
Telegram Approval Messenger.
Posts approval cards with inline keyboards and keeps them in sync through the
Telegram Bot API.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

import aiohttp

from opsgate.approvals.cards import ButtonRows
from opsgate.approvals.models import ApprovalRequest, MessageRef
from opsgate.errors import TransportFailed

from ..config import DEFAULT_API_BASE

logger = logging.getLogger("OpsGate.connector.telegram")

# Telegram rejects edits that change nothing; a resync of an unchanged card is not a failure.
NOT_MODIFIED = "message is not modified"


def inline_keyboard(buttons: Optional[ButtonRows]) -> Dict[str, Any]:
    return {"inline_keyboard": [[b.to_dict() for b in row] for row in buttons or []]}


def _message_id(value: str) -> Union[int, str]:
    return int(value) if value.lstrip("-").isdigit() else value


class TelegramApprovalMessenger:
    def __init__(
        self,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
        api_base: str = DEFAULT_API_BASE,
        timeout_sec: int = 15,
    ):
        if not token:
            raise ValueError("Telegram bot token is required")
        self.base_url = f"{api_base.rstrip('/')}/bot{token}"
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "TelegramApprovalMessenger":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{method}"
        try:
            async with self._get_session().post(url, json=payload) as resp:
                status = resp.status
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = {"ok": False, "description": await resp.text()}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFailed(f"Telegram {method} failed: {e}") from e

        if not isinstance(data, dict):
            data = {"ok": False, "description": "malformed response"}
        if status != 200 or not data.get("ok"):
            desc = data.get("description") or data.get("error_code") or f"HTTP {status}"
            raise TransportFailed(
                f"Telegram {method} failed: {desc}",
                detail={"method": method, "status": status},
            )
        return data.get("result") or {}

    async def post_card(
        self,
        request: ApprovalRequest,
        text: str,
        buttons: ButtonRows,
        targets: List[str],
    ) -> List[MessageRef]:
        """Send the card to every target; fails only when no target received it."""
        posted: List[MessageRef] = []
        errors = []
        for chat_id in targets:
            try:
                result = await self._call(
                    "sendMessage",
                    {
                        "chat_id": chat_id,
                        "text": text,
                        "reply_markup": inline_keyboard(buttons),
                    },
                )
            except TransportFailed as e:
                logger.error(f"Approval {request.approval_id}: post to {chat_id} failed: {e}")
                errors.append(e)
                continue
            chat = result.get("chat") or {}
            posted.append(
                MessageRef(
                    chat_id=str(chat.get("id", chat_id)),
                    message_id=str(result.get("message_id")),
                )
            )
        if errors and not posted:
            raise TransportFailed(
                f"Approval card {request.approval_id} could not be posted to any chat"
            )
        return posted

    async def edit_card(
        self, message: MessageRef, text: str, buttons: Optional[ButtonRows] = None
    ) -> None:
        try:
            await self._call(
                "editMessageText",
                {
                    "chat_id": message.chat_id,
                    "message_id": _message_id(message.message_id),
                    "text": text,
                    "reply_markup": inline_keyboard(buttons),
                },
            )
        except TransportFailed as e:
            if NOT_MODIFIED in str(e):
                return
            raise

    async def notify(self, chat_id: str, text: str) -> None:
        await self._call("sendMessage", {"chat_id": chat_id, "text": text})

    async def answer_callback(self, callback_query_id: str, text: str) -> None:
        await self._call(
            "answerCallbackQuery", {"callback_query_id": callback_query_id, "text": text}
        )
