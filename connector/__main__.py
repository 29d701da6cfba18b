"""
Connector Entrypoint.
Runs the Telegram callback loop against the shared approval store.
"""

import asyncio
import logging

from opsgate.config import load_config as load_gating_config
from opsgate.errors import ConfigError
from opsgate.approvals.service import GatingService
from opsgate.paths import GatingPaths
from opsgate.structured_logging import setup_logging

from .config import load_config
from .platforms.telegram_messenger import TelegramApprovalMessenger
from .platforms.telegram_polling import TelegramCallbackPolling

logger = logging.getLogger("OpsGate.connector")


def _print_gating_banner(gating_config):
    """Warn loudly when nothing could ever be approved."""
    gating = gating_config.gating
    if gating is None or not gating.enabled:
        logger.warning("=" * 60)
        logger.warning("⚠️  Gating is disabled or not configured.")
        logger.warning("⚠️  Every approval click will be refused (gating-disabled).")
        logger.warning("=" * 60)
        return
    if not gating.admin_chats:
        logger.warning("⚠️  No admin chats configured (OPSGATE_GATING_ADMIN_CHATS).")
    if not gating.policies:
        logger.warning("⚠️  No gating policies configured; requests resolve to no-policy.")


async def main():
    config = load_config()
    setup_logging(debug=config.debug)
    logger.info("Initializing OpsGate connector...")

    try:
        gating_config = load_gating_config()
    except ConfigError as e:
        logger.critical(f"Config load failed: {e}")
        return

    if not config.telegram_bot_token:
        logger.error("Telegram not configured (OPSGATE_CONNECTOR_TELEGRAM_TOKEN missing)")
        return

    _print_gating_banner(gating_config)

    paths = GatingPaths.from_env()
    async with TelegramApprovalMessenger(
        config.telegram_bot_token,
        api_base=config.telegram_api_base,
        timeout_sec=config.request_timeout_sec,
    ) as messenger:
        service = GatingService(gating_config, messenger, paths=paths)
        polling = TelegramCallbackPolling(config, service, messenger)
        try:
            await polling.start()
        except asyncio.CancelledError:
            logger.info("Connector stopping...")
    logger.info("Connector stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
