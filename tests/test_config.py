# tests/test_config.py
from decimal import Decimal

import pytest

from scalp_bot.config import build_channel_webhooks, load_settings, parse_env_list, parse_reload_timer
from scalp_bot.domain.errors import ConfigError
from scalp_bot.domain.strategy_request import Side


@pytest.mark.parametrize("raw, expected", [
    ('"111, 222;333"', ["111", "222", "333"]),
    ("'a;;b, '", ["a", "b"]),
    ("  single ", ["single"]),
    ("", []),
    (None, []),
])
def test_parse_env_list(raw, expected):
    assert parse_env_list(raw) == expected


def test_defaults():
    settings = load_settings({"DISCORD_TOKEN": "tkn"})

    assert settings.gateway.token == "tkn"
    assert settings.gateway.channels == []
    assert settings.scalp.side is Side.BUY
    assert settings.scalp.size_usd == Decimal("20")
    assert settings.scalp.dca_steps == (Decimal("2.5"), Decimal("5"), Decimal("7.5"))
    assert settings.venue.testnet is True
    assert settings.reload_timer_minutes is None
    assert settings.debug is False
    assert settings.log_dir == "logs"


def test_full_environment():
    settings = load_settings({
        "DISCORD_TOKEN": "tkn",
        "CHANNELS_ID": "1,2",
        "WEBHOOKS_URL": "https://hook/1;https://hook/2",
        "SCALP_REVERSALS_CHANNEL_ID": " 2 ",
        "SCALP_SIDE": "sell",
        "SCALP_SIZE_USD": "50",
        "SCALP_TP_PCT": "0.8",
        "SCALP_SL_PCT": "3",
        "SCALP_DCA_STEPS": "1;2",
        "USE_TESTNET": "no",
        "RELOAD_TIMER": "30",
        "DEBUG_MODE": "YES",
        "VENUE_CALL_TIMEOUT_SEC": "5",
    })

    assert settings.gateway.channel_webhooks == {"1": "https://hook/1", "2": "https://hook/2"}
    assert settings.scalp.channel_id == "2"
    assert settings.scalp.side is Side.SELL
    assert settings.scalp.tp_pct == Decimal("0.8")
    assert settings.scalp.dca_steps == (Decimal("1"), Decimal("2"))
    assert settings.venue.testnet is False
    assert settings.venue.call_timeout == 5.0
    assert settings.reload_timer_minutes == 30.0
    assert settings.debug is True


@pytest.mark.parametrize("env", [
    {"SCALP_SIZE_USD": "lots"},
    {"SCALP_TP_PCT": "-1"},
    {"SCALP_SIDE": "long"},
    {"SCALP_DCA_STEPS": "2.5,x"},
    {"SCALP_DCA_STEPS": "2.5,0"},
    {"RECONNECT_MAX_DELAY_SEC": "0"},
])
def test_invalid_values_raise(env):
    with pytest.raises(ConfigError):
        load_settings(env)


def test_webhook_pairing_by_index():
    assert build_channel_webhooks(["a", "b"], ["ha"]) == {"a": "ha"}
    assert build_channel_webhooks(["a"], ["ha", "hb"]) == {"a": "ha"}


@pytest.mark.parametrize("raw, expected", [
    (None, None),
    ("", None),
    ("abc", None),
    ("0", None),
    ("-5", None),
    ("1.5", 1.5),
])
def test_reload_timer(raw, expected):
    assert parse_reload_timer(raw) == expected
