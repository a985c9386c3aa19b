# scalp_bot/config.py
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Tuple

from scalp_bot.domain.errors import ConfigError
from scalp_bot.domain.strategy_request import Side

logger = logging.getLogger("CONFIG")

# ==========================================
# ⚙️ ПРОТОКОЛ ШЛЮЗА
# ==========================================

GATEWAY_URL = "wss://gateway.discord.gg/?v=10&encoding=json"
GATEWAY_QUERY = "?v=10&encoding=json"
GATEWAY_INTENTS = 37408
GATEWAY_PROPERTIES = {"os": "android", "browser": "dcm", "device": "dcm"}

_TRUE_VALUES = ("1", "true", "yes", "y")


def parse_env_list(raw: Optional[str]) -> List[str]:
    """'"a, b;c"' -> ['a', 'b', 'c']"""
    cleaned = (raw or "").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in ("'", '"'):
        cleaned = cleaned[1:-1]
    items = cleaned.replace(";", ",").split(",")
    return [x.strip() for x in items if x.strip()]


def _flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _decimal(env: Mapping[str, str], key: str, default: str) -> Decimal:
    raw = env.get(key) or default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if not value.is_finite():
        raise ConfigError(f"{key} must be finite, got {raw!r}")
    return value


def _positive(env: Mapping[str, str], key: str, default: str) -> Decimal:
    value = _decimal(env, key, default)
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


@dataclass
class GatewayConfig:
    token: str
    channels: List[str] = field(default_factory=list)
    # Канал -> webhook. Ретрансляция вынесена наружу, здесь только карта
    channel_webhooks: Dict[str, str] = field(default_factory=dict)
    url: str = GATEWAY_URL
    intents: int = GATEWAY_INTENTS
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 60.0


@dataclass
class ScalpConfig:
    channel_id: str
    side: Side = Side.BUY
    size_usd: Decimal = Decimal("20")
    tp_pct: Decimal = Decimal("1.0")
    sl_pct: Decimal = Decimal("5.0")
    dca_steps: Tuple[Decimal, ...] = (Decimal("2.5"), Decimal("5"), Decimal("7.5"))


@dataclass
class VenueConfig:
    api_key: str = ""
    api_secret: str = ""
    testnet: bool = True
    call_timeout: float = 15.0


@dataclass
class Settings:
    gateway: GatewayConfig
    scalp: ScalpConfig
    venue: VenueConfig
    reload_timer_minutes: Optional[float] = None
    debug: bool = False
    log_dir: str = "logs"


def build_channel_webhooks(channels: List[str], webhooks: List[str]) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for i, channel_id in enumerate(channels):
        if i >= len(webhooks):
            logger.warning(f"⚠️ Channel {channel_id} at index {i} has no matching webhook URL")
            continue
        mapping[channel_id] = webhooks[i]
    if len(webhooks) > len(channels):
        logger.warning(f"⚠️ {len(webhooks) - len(channels)} extra webhook URL(s) will not be used")
    return mapping


def parse_reload_timer(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw.strip() == "":
        logger.info("Watchdog disabled: RELOAD_TIMER not set")
        return None
    try:
        minutes = float(raw)
    except ValueError:
        minutes = -1.0
    if minutes != minutes or minutes <= 0 or minutes == float("inf"):
        logger.info(f'Watchdog disabled: invalid RELOAD_TIMER "{raw}"')
        return None
    return minutes


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Собирает настройки из окружения (по умолчанию os.environ после load_dotenv)."""
    if env is None:
        env = os.environ

    channels = parse_env_list(env.get("CHANNELS_ID"))
    webhooks = parse_env_list(env.get("WEBHOOKS_URL"))

    try:
        side = Side.parse(env.get("SCALP_SIDE") or "BUY")
    except ValueError as e:
        raise ConfigError(str(e))

    dca_steps = []
    for raw_step in parse_env_list(env.get("SCALP_DCA_STEPS") or "2.5,5,7.5"):
        try:
            step = Decimal(raw_step)
        except InvalidOperation:
            raise ConfigError(f"SCALP_DCA_STEPS contains a non-number: {raw_step!r}")
        if not step.is_finite() or step <= 0:
            raise ConfigError(f"SCALP_DCA_STEPS entries must be positive, got {raw_step!r}")
        dca_steps.append(step)

    gateway = GatewayConfig(
        token=env.get("DISCORD_TOKEN") or "",
        channels=channels,
        channel_webhooks=build_channel_webhooks(channels, webhooks),
        reconnect_base_delay=float(_positive(env, "RECONNECT_BASE_DELAY_SEC", "1")),
        reconnect_max_delay=float(_positive(env, "RECONNECT_MAX_DELAY_SEC", "60")),
    )

    scalp = ScalpConfig(
        channel_id=(env.get("SCALP_REVERSALS_CHANNEL_ID") or "").strip(),
        side=side,
        size_usd=_positive(env, "SCALP_SIZE_USD", "20"),
        tp_pct=_positive(env, "SCALP_TP_PCT", "1.0"),
        sl_pct=_positive(env, "SCALP_SL_PCT", "5.0"),
        dca_steps=tuple(dca_steps),
    )

    venue = VenueConfig(
        api_key=env.get("BYBIT_API_KEY") or "",
        api_secret=env.get("BYBIT_API_SECRET") or "",
        testnet=_flag(env, "USE_TESTNET", True),
        call_timeout=float(_positive(env, "VENUE_CALL_TIMEOUT_SEC", "15")),
    )

    return Settings(
        gateway=gateway,
        scalp=scalp,
        venue=venue,
        reload_timer_minutes=parse_reload_timer(env.get("RELOAD_TIMER")),
        debug=_flag(env, "DEBUG_MODE", False),
        log_dir=env.get("LOG_DIR") or "logs",
    )
