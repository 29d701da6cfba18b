import base64
import unittest
from urllib.parse import parse_qs

from opsgate.approvals.models import TradeExecutePayload
from opsgate.config import KrakenConfig
from opsgate.trading.kraken import (
    ADD_ORDER_PATH,
    KrakenClient,
    build_kraken_signature,
    split_symbol,
    validate_kraken_trade_intent,
)

SECRET = base64.b64encode(b"kraken-test-secret").decode("ascii")


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def text(self):
        return str(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body if body is not None else {"error": [], "result": {"txid": ["OABC-123"]}}
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers})
        return FakeResponse(self.status, self.body)


def _intent(**overrides):
    fields = dict(
        exchange="kraken",
        side="buy",
        symbol="BTC/USD",
        order_type="limit",
        quantity=0.5,
        limit_price=100.0,
    )
    fields.update(overrides)
    return TradeExecutePayload(**fields)


class TestKrakenValidation(unittest.TestCase):
    def test_valid_intent_summary(self):
        result = validate_kraken_trade_intent(_intent())
        self.assertTrue(result.ok)
        self.assertEqual(result.summary["notional_usd"], 50.0)

    def test_rejections(self):
        config = KrakenConfig(
            allowed_symbols=["BTC/USD", "ETH/USD"],
            max_order_usd=1000.0,
            max_order_asset={"ETH": 2.0},
        )
        cases = [
            (_intent(exchange="binance"), "exchange-unsupported"),
            (_intent(symbol=" "), "symbol-missing"),
            (_intent(side="hodl"), "side-invalid"),
            (_intent(side=None), "side-invalid"),
            (_intent(order_type="stop-loss"), "order-type-invalid"),
            (_intent(order_type=None, quantity=0), "order-type-invalid"),
            (_intent(quantity=0), "quantity-invalid"),
            (_intent(quantity=True), "quantity-invalid"),
            (_intent(limit_price=None), "limit-price-missing"),
            (_intent(symbol="DOGE/USD"), "symbol-not-allowed"),
            (_intent(symbol="ETH/USD", quantity=3), "asset-limit-exceeded"),
            (_intent(order_type="market", limit_price=None), "notional-missing"),
            (_intent(quantity=20), "usd-limit-exceeded"),
        ]
        for payload, reason in cases:
            with self.subTest(reason=reason):
                self.assertEqual(validate_kraken_trade_intent(payload, config).reason, reason)

    def test_explicit_notional_satisfies_usd_cap(self):
        config = KrakenConfig(max_order_usd=1000.0)
        payload = _intent(order_type="market", limit_price=None, notional_usd=900.0)
        self.assertTrue(validate_kraken_trade_intent(payload, config).ok)

    def test_split_symbol(self):
        self.assertEqual(split_symbol("BTC/USD"), ("BTC", "USD"))
        self.assertEqual(split_symbol("XBTUSD"), ("XBTUSD", None))


class TestKrakenSignature(unittest.TestCase):
    def test_signature_is_deterministic_and_nonce_bound(self):
        first = build_kraken_signature(ADD_ORDER_PATH, "nonce=1&pair=XBTUSD", "1", SECRET)
        again = build_kraken_signature(ADD_ORDER_PATH, "nonce=1&pair=XBTUSD", "1", SECRET)
        other = build_kraken_signature(ADD_ORDER_PATH, "nonce=2&pair=XBTUSD", "2", SECRET)
        self.assertEqual(first, again)
        self.assertNotEqual(first, other)
        # HMAC-SHA512 digest
        self.assertEqual(len(base64.b64decode(first)), 64)


class TestKrakenClient(unittest.IsolatedAsyncioTestCase):
    async def test_disabled_trading_is_a_dry_run(self):
        session = FakeSession()
        client = KrakenClient(KrakenConfig(enabled=False), session=session)
        execution = await client.execute(_intent())
        self.assertTrue(execution.ok)
        self.assertTrue(execution.dry_run)
        self.assertEqual(execution.summary["mode"], "dry_run")
        self.assertEqual(session.calls, [])

    async def test_invalid_intent_is_not_submitted(self):
        session = FakeSession()
        client = KrakenClient(KrakenConfig(enabled=True), session=session)
        execution = await client.execute(_intent(quantity=-1))
        self.assertFalse(execution.ok)
        self.assertEqual(execution.message, "quantity-invalid")
        self.assertEqual(session.calls, [])

    async def test_missing_credentials(self):
        client = KrakenClient(KrakenConfig(enabled=True, api_key="k"), session=FakeSession())
        execution = await client.execute(_intent())
        self.assertFalse(execution.ok)
        self.assertFalse(execution.dry_run)
        self.assertEqual(execution.message, "kraken credentials missing")

    async def test_live_order_is_signed_and_submitted(self):
        session = FakeSession()
        config = KrakenConfig(enabled=True, api_key="key-1", api_secret=SECRET)
        client = KrakenClient(config, session=session, nonce=lambda: "1700000000000")

        execution = await client.execute(_intent())

        self.assertTrue(execution.ok)
        self.assertFalse(execution.dry_run)
        self.assertEqual(execution.order_id, "OABC-123")
        call = session.calls[0]
        self.assertEqual(call["url"], "https://api.kraken.com/0/private/AddOrder")
        form = parse_qs(call["data"])
        self.assertEqual(form["pair"], ["BTC/USD"])
        self.assertEqual(form["type"], ["buy"])
        self.assertEqual(form["ordertype"], ["limit"])
        self.assertEqual(form["price"], ["100.0"])
        self.assertEqual(form["nonce"], ["1700000000000"])
        self.assertEqual(call["headers"]["API-Key"], "key-1")
        self.assertEqual(
            call["headers"]["API-Sign"],
            build_kraken_signature(ADD_ORDER_PATH, call["data"], "1700000000000", SECRET),
        )

    async def test_exchange_errors_fail_the_order(self):
        session = FakeSession(body={"error": ["EOrder:Insufficient funds"]})
        config = KrakenConfig(enabled=True, api_key="k", api_secret=SECRET)
        execution = await KrakenClient(config, session=session).execute(_intent())
        self.assertFalse(execution.ok)
        self.assertEqual(execution.message, "EOrder:Insufficient funds")

    async def test_http_error_status(self):
        session = FakeSession(status=502, body={})
        config = KrakenConfig(enabled=True, api_key="k", api_secret=SECRET)
        execution = await KrakenClient(config, session=session).execute(_intent())
        self.assertFalse(execution.ok)
        self.assertEqual(execution.message, "HTTP 502")


if __name__ == "__main__":
    unittest.main()
