"""
Trading Package.
Kraken order validation/submission and the trade execution log.
"""

from .kraken import (
    KrakenClient,
    KrakenExecution,
    KrakenTradeValidation,
    build_kraken_signature,
    validate_kraken_trade_intent,
)
from .store import TradeExecutionLog, TradeExecutionRecord

__all__ = [
    "KrakenClient",
    "KrakenExecution",
    "KrakenTradeValidation",
    "TradeExecutionLog",
    "TradeExecutionRecord",
    "build_kraken_signature",
    "validate_kraken_trade_intent",
]
