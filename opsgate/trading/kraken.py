"""
Kraken Trading.
Intent validation against the configured limits, and signed AddOrder
submission through the Kraken private REST API. Orders are dry runs unless
trading is explicitly enabled.
"""

import base64
import hashlib
import hmac
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import aiohttp

from ..approvals.models import TradeExecutePayload
from ..config import KrakenConfig

logger = logging.getLogger("OpsGate.trading.kraken")

ADD_ORDER_PATH = "/0/private/AddOrder"
TRADE_SIDES = ("buy", "sell")
ORDER_TYPES = ("market", "limit")


@dataclass
class KrakenTradeValidation:
    ok: bool
    reason: Optional[str] = None
    summary: Dict[str, Any] = field(default_factory=dict)


@dataclass
class KrakenExecution:
    ok: bool
    dry_run: bool
    order_id: Optional[str] = None
    message: Optional[str] = None
    summary: Dict[str, Any] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def split_symbol(symbol: str):
    """'BTC/USD' -> ('BTC', 'USD'); a bare symbol has no quote asset."""
    base, _, quote = symbol.partition("/")
    return (base or symbol), (quote or None)


def validate_kraken_trade_intent(
    payload: TradeExecutePayload, config: Optional[KrakenConfig] = None
) -> KrakenTradeValidation:
    if payload.exchange != "kraken":
        return KrakenTradeValidation(
            False, "exchange-unsupported", {"exchange": payload.exchange}
        )
    if not isinstance(payload.symbol, str) or not payload.symbol.strip():
        return KrakenTradeValidation(False, "symbol-missing")
    if payload.side not in TRADE_SIDES:
        return KrakenTradeValidation(False, "side-invalid", {"side": payload.side})
    if payload.order_type not in ORDER_TYPES:
        return KrakenTradeValidation(
            False, "order-type-invalid", {"order_type": payload.order_type}
        )
    if not _is_number(payload.quantity) or payload.quantity <= 0:
        return KrakenTradeValidation(
            False, "quantity-invalid", {"quantity": payload.quantity}
        )
    if payload.order_type == "limit":
        if not _is_number(payload.limit_price) or payload.limit_price <= 0:
            return KrakenTradeValidation(
                False, "limit-price-missing", {"limit_price": payload.limit_price}
            )

    config = config or KrakenConfig()
    if config.allowed_symbols and payload.symbol not in config.allowed_symbols:
        return KrakenTradeValidation(
            False,
            "symbol-not-allowed",
            {"allowed_symbols": list(config.allowed_symbols), "symbol": payload.symbol},
        )

    base, _ = split_symbol(payload.symbol)
    max_asset = config.max_order_asset.get(base)
    if max_asset is not None and payload.quantity > max_asset:
        return KrakenTradeValidation(
            False,
            "asset-limit-exceeded",
            {"max_order_asset": max_asset, "asset": base, "quantity": payload.quantity},
        )

    notional_usd = payload.resolve_notional_usd()
    if config.max_order_usd is not None:
        if notional_usd is None:
            return KrakenTradeValidation(
                False, "notional-missing", {"max_order_usd": config.max_order_usd}
            )
        if notional_usd > config.max_order_usd:
            return KrakenTradeValidation(
                False,
                "usd-limit-exceeded",
                {"max_order_usd": config.max_order_usd, "notional_usd": notional_usd},
            )

    return KrakenTradeValidation(
        True,
        summary={
            "symbol": payload.symbol,
            "quantity": payload.quantity,
            "notional_usd": notional_usd,
            "order_type": payload.order_type,
            "side": payload.side,
        },
    )


def build_kraken_signature(path: str, post_data: str, nonce: str, secret: str) -> str:
    """API-Sign: HMAC-SHA512(path + SHA256(nonce + post_data)) keyed by the base64 secret."""
    digest = hashlib.sha256((nonce + post_data).encode("utf-8")).digest()
    mac = hmac.new(base64.b64decode(secret), path.encode("utf-8") + digest, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode("ascii")


def _default_nonce() -> str:
    return str(int(time.time() * 1000))


class KrakenClient:
    """
    Submits validated trade intents to Kraken.

    A shared aiohttp session may be injected; otherwise one is opened per
    order.
    """

    def __init__(
        self,
        config: Optional[KrakenConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        nonce: Callable[[], str] = _default_nonce,
    ):
        self.config = config or KrakenConfig()
        self._session = session
        self._nonce = nonce

    def validate(self, payload: TradeExecutePayload) -> KrakenTradeValidation:
        return validate_kraken_trade_intent(payload, self.config)

    async def execute(self, payload: TradeExecutePayload) -> KrakenExecution:
        validation = self.validate(payload)
        if not validation.ok:
            return KrakenExecution(
                ok=False, dry_run=True, message=validation.reason, summary=validation.summary
            )

        if not self.config.enabled:
            logger.info(
                f"Kraken dry run: {payload.side} {payload.quantity} {payload.symbol}"
            )
            return KrakenExecution(
                ok=True, dry_run=True, summary={**validation.summary, "mode": "dry_run"}
            )

        if not self.config.api_key or not self.config.api_secret:
            return KrakenExecution(
                ok=False,
                dry_run=False,
                message="kraken credentials missing",
                summary=validation.summary,
            )

        nonce = self._nonce()
        form = {
            "nonce": nonce,
            "pair": payload.symbol,
            "type": payload.side,
            "ordertype": payload.order_type,
            "volume": str(payload.quantity),
        }
        if payload.order_type == "limit" and payload.limit_price:
            form["price"] = str(payload.limit_price)
        post_data = urlencode(form)
        headers = {
            "API-Key": self.config.api_key,
            "API-Sign": build_kraken_signature(
                ADD_ORDER_PATH, post_data, nonce, self.config.api_secret
            ),
            "Content-Type": "application/x-www-form-urlencoded",
        }

        status, body = await self._post(ADD_ORDER_PATH, post_data, headers)
        errors = body.get("error") or []
        if status != 200 or errors:
            message = ", ".join(str(e) for e in errors) or f"HTTP {status}"
            logger.error(f"Kraken order failed: {message}")
            return KrakenExecution(
                ok=False,
                dry_run=False,
                message=message or "kraken order failed",
                summary=validation.summary,
            )

        txids = (body.get("result") or {}).get("txid") or []
        order_id = txids[0] if txids else None
        logger.info(f"Kraken order placed: {order_id}")
        return KrakenExecution(
            ok=True,
            dry_run=False,
            order_id=order_id,
            summary={**validation.summary, "order_id": order_id},
        )

    async def _post(self, path: str, post_data: str, headers: Dict[str, str]):
        url = f"{self.config.api_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_sec)
        if self._session is not None:
            return await self._send(self._session, url, post_data, headers, timeout)
        async with aiohttp.ClientSession() as session:
            return await self._send(session, url, post_data, headers, timeout)

    @staticmethod
    async def _send(session, url, post_data, headers, timeout):
        async with session.post(url, data=post_data, headers=headers, timeout=timeout) as resp:
            try:
                body = await resp.json(content_type=None)
            except ValueError:
                body = {"error": [await resp.text()]}
            if not isinstance(body, dict):
                body = {}
            return resp.status, body
