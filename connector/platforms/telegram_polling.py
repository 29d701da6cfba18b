"""
Telegram Callback Polling.
Long-polls getUpdates for inline-button presses and routes them into the
gating service.
"""

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from opsgate.approvals.models import ApprovalActor
from opsgate.approvals.service import CallbackResult, GatingService
from opsgate.errors import TransportFailed

from ..config import ConnectorConfig
from ..state import ConnectorState
from .telegram_messenger import TelegramApprovalMessenger

logger = logging.getLogger("OpsGate.connector.telegram")

ANSWERS = {
    "not-found": "Approval not found.",
    "not-authorized": "You are not allowed to approve this.",
    "not-pending": "Already resolved.",
    "invalid-action": "That action is not available here.",
    "missing-executor": "Approved, but no executor is registered.",
}


def actor_from_callback(callback_query: dict) -> ApprovalActor:
    """Chat of the card that was clicked plus the clicking user."""
    from_obj = callback_query.get("from") or {}
    message = callback_query.get("message") or {}
    chat = message.get("chat") or {}
    user_id = from_obj.get("id")
    chat_id = chat.get("id", user_id)
    return ApprovalActor(
        chat_id=str(chat_id),
        user_id=str(user_id) if user_id is not None else None,
        username=from_obj.get("username"),
    )


def callback_answer_text(result: CallbackResult) -> str:
    if not result.handled:
        return "Unknown action."
    if result.reason:
        return ANSWERS.get(result.reason, f"Not handled: {result.reason}")
    if result.request is not None:
        return f"Approval {result.request.status.value}."
    return "Done."


class TelegramCallbackPolling:
    def __init__(
        self,
        config: ConnectorConfig,
        service: GatingService,
        messenger: TelegramApprovalMessenger,
        state: Optional[ConnectorState] = None,
    ):
        self.config = config
        self.service = service
        self.messenger = messenger
        self.state_store = state or ConnectorState(path=config.state_path)
        self.base_url = f"{config.telegram_api_base}/bot{config.telegram_bot_token}"

        # Offset survives restarts so presses are not replayed.
        self.offset = self.state_store.get_offset("telegram")
        self.session = None

    async def start(self):
        if not self.config.telegram_bot_token:
            logger.warning("Telegram token not configured. Skipping.")
            return

        logger.info(f"Starting Telegram callback polling (offset={self.offset})...")
        timeout = aiohttp.ClientTimeout(total=self.config.poll_timeout_sec + 10)
        async with aiohttp.ClientSession(timeout=timeout) as self.session:
            while True:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Telegram poll error: {e}")
                    await asyncio.sleep(5)

    async def poll_once(self):
        url = f"{self.base_url}/getUpdates"
        params = {
            "offset": self.offset,
            "timeout": self.config.poll_timeout_sec,
            "allowed_updates": json.dumps(["callback_query"]),
        }

        async with self.session.get(url, params=params) as resp:
            if resp.status != 200:
                body = await resp.text()
                logger.error(f"Telegram API Error {resp.status}: {body}")
                await asyncio.sleep(5)
                return

            data = await resp.json()
            if not data.get("ok"):
                desc = data.get("description") or data.get("error_code") or "unknown_error"
                logger.warning(f"Telegram API returned ok=false: {desc}")
                return

            updates = data.get("result", [])
            if self.config.debug and not updates:
                logger.debug("Telegram poll OK (no updates). offset=%s", self.offset)
            for update in updates:
                next_offset = update["update_id"] + 1
                if next_offset > self.offset:
                    self.offset = next_offset
                    self.state_store.set_offset("telegram", self.offset)

                await self.process_update(update)

    async def process_update(self, update: dict) -> Optional[CallbackResult]:
        callback_query = update.get("callback_query")
        if not callback_query:
            return None

        actor = actor_from_callback(callback_query)
        result = await self.service.handle_callback(callback_query.get("data"), actor)
        logger.info(
            f"Callback from {actor.label} in chat {actor.chat_id}: "
            f"handled={result.handled} reason={result.reason}"
        )
        try:
            await self.messenger.answer_callback(
                callback_query["id"], callback_answer_text(result)
            )
        except TransportFailed as e:
            logger.warning(f"answerCallbackQuery failed: {e}")
        return result
