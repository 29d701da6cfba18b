import json
import os
import shutil
import tempfile
import unittest

from opsgate.config import (
    ChatClass,
    KrakenConfig,
    config_from_dict,
    load_config,
    normalize_chat_id,
)
from opsgate.errors import ConfigError

SAMPLE = {
    "gating": {
        "enabled": True,
        "admin_chats": [100, " 101 "],
        "public_chats": ["200"],
        "policies": [
            {
                "resource": "ledger:finance",
                "request": {"chat_classes": ["admin", "public"]},
                "approve": {"chat_classes": ["admin"], "users": ["@ops"]},
            },
            {"resource": "cron_proposal:*", "approve": {"chat_classes": ["admin"]}},
        ],
        "notify_execution_failures": True,
    },
    "budgets": {"max_daily_tokens": 50000, "max_single_run_cost_usd": 2.5},
    "trading": {
        "kraken": {
            "enabled": False,
            "allowed_symbols": ["BTC/USD"],
            "max_order_usd": 500,
            "max_order_asset": {"BTC": 0.1},
            "api_url": "https://api.kraken.com/",
        }
    },
}


class TestConfigParsing(unittest.TestCase):
    def test_full_document(self):
        cfg = config_from_dict(SAMPLE)
        self.assertEqual(cfg.gating.admin_chats, ["100", "101"])
        self.assertTrue(cfg.gating.notify_execution_failures)
        finance = cfg.gating.policies[0]
        self.assertEqual(finance.request.chat_classes, [ChatClass.ADMIN, ChatClass.PUBLIC])
        self.assertEqual(finance.approve.users, ["@ops"])
        self.assertIsNone(cfg.gating.policies[1].request)
        self.assertEqual(cfg.budgets.max_daily_tokens, 50000)
        self.assertEqual(cfg.kraken.max_order_asset, {"BTC": 0.1})
        self.assertEqual(cfg.kraken.api_url, "https://api.kraken.com")

    def test_empty_document_leaves_gating_unconfigured(self):
        cfg = config_from_dict({})
        self.assertIsNone(cfg.gating)
        self.assertIsNone(cfg.budgets)
        self.assertFalse(cfg.kraken.enabled)

    def test_rejections(self):
        cases = [
            {"gating": {"admins": []}},
            {"gating": {"policies": [{"resource": "ledger"}]}},
            {"gating": {"policies": [{"resource": "ledger:x", "approve": {"chat_classes": ["vip"]}}]}},
            {"gating": {"policies": [{"resource": "ledger:x", "approve": {"users": [1]}}]}},
            {"budgets": {"max_daily_tokens": -1}},
            {"budgets": {"max_daily_tokens": 1.5}},
            {"trading": {"binance": {}}},
            {"trading": {"kraken": {"max_order_asset": {"BTC": 0}}}},
            {"extra": 1},
        ]
        for data in cases:
            with self.subTest(data=data):
                with self.assertRaises(ConfigError):
                    config_from_dict(data)

    def test_normalize_chat_id(self):
        self.assertEqual(normalize_chat_id(-100123), "-100123")
        self.assertEqual(normalize_chat_id(" 42 "), "42")
        self.assertEqual(normalize_chat_id(True), "")
        self.assertEqual(normalize_chat_id(None), "")

    def test_kraken_repr_redacts_secrets(self):
        text = repr(KrakenConfig(api_key="pub-key", api_secret="c2VjcmV0"))
        self.assertNotIn("pub-key", text)
        self.assertNotIn("c2VjcmV0", text)


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="opsgate-config-")
        self.path = os.path.join(self.tmp, "config.json")

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_missing_file_uses_defaults(self):
        cfg = load_config(env={"OPSGATE_STATE_DIR": self.tmp})
        self.assertIsNone(cfg.gating)

    def test_file_from_state_dir(self):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(SAMPLE, f)
        cfg = load_config(env={"OPSGATE_STATE_DIR": self.tmp})
        self.assertEqual(len(cfg.gating.policies), 2)

    def test_invalid_json(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{")
        with self.assertRaises(ConfigError):
            load_config(self.path, env={})

    def test_env_overrides(self):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(SAMPLE, f)
        cfg = load_config(
            env={
                "OPSGATE_CONFIG_PATH": self.path,
                "OPSGATE_GATING_ENABLED": "false",
                "OPSGATE_GATING_ADMIN_CHATS": "1, 2",
                "OPSGATE_GATING_POLICIES": json.dumps(
                    [{"resource": "*:*", "approve": {"chat_classes": ["admin"]}}]
                ),
                "OPSGATE_BUDGET_MAX_DAILY_TOKENS": "1000",
                "OPSGATE_KRAKEN_ENABLED": "yes",
                "OPSGATE_KRAKEN_API_KEY": "k",
                "OPSGATE_KRAKEN_MAX_ORDER_USD": "250",
            }
        )
        self.assertFalse(cfg.gating.enabled)
        self.assertEqual(cfg.gating.admin_chats, ["1", "2"])
        self.assertEqual([p.resource for p in cfg.gating.policies], ["*:*"])
        self.assertEqual(cfg.budgets.max_daily_tokens, 1000)
        self.assertEqual(cfg.budgets.max_single_run_cost_usd, 2.5)
        self.assertTrue(cfg.kraken.enabled)
        self.assertEqual(cfg.kraken.api_key, "k")
        self.assertEqual(cfg.kraken.max_order_usd, 250.0)

    def test_env_creates_gating_section(self):
        cfg = load_config(
            env={"OPSGATE_STATE_DIR": self.tmp, "OPSGATE_GATING_ADMIN_CHATS": "100"}
        )
        self.assertTrue(cfg.gating.enabled)
        self.assertEqual(cfg.gating.policies, [])

    def test_bad_env_values(self):
        for env in (
            {"OPSGATE_GATING_POLICIES": "{"},
            {"OPSGATE_GATING_POLICIES": '{"resource": "*:*"}'},
            {"OPSGATE_BUDGET_MAX_DAILY_TOKENS": "lots"},
            {"OPSGATE_KRAKEN_MAX_ORDER_USD": "-5"},
        ):
            with self.subTest(env=env):
                with self.assertRaises(ConfigError):
                    load_config(env={"OPSGATE_STATE_DIR": self.tmp, **env})


if __name__ == "__main__":
    unittest.main()
