# scalp_bot/services/alert_detector.py
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from scalp_bot.config import ScalpConfig
from scalp_bot.domain.strategy_request import StrategyRequest

logger = logging.getLogger("ALERTS")

ASSET_LABEL_RE = re.compile(r"Asset:\s*([A-Z0-9_\-]+USDT)", re.IGNORECASE)
ASSET_BARE_RE = re.compile(r"\b([A-Z0-9_\-]+USDT)\b")
RSI_RE = re.compile(r"RSI:\s*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE)
FUNDING_RE = re.compile(r"Funding\s*Rate:\s*([-+]?\d*\.?\d+)%?", re.IGNORECASE)


def aggregate_message_text(message: Dict[str, Any]) -> str:
    """
    Склеивает тело сообщения и embeds (title, description, поля "name: value")
    в один текст, сохраняя исходный порядок.
    """
    parts: List[str] = []

    content = message.get("content")
    if isinstance(content, str) and content.strip():
        parts.append(content)

    embeds = message.get("embeds")
    if isinstance(embeds, list):
        for embed in embeds:
            if not isinstance(embed, dict):
                continue
            embed_parts: List[str] = []
            if isinstance(embed.get("title"), str):
                embed_parts.append(embed["title"])
            if isinstance(embed.get("description"), str):
                embed_parts.append(embed["description"])
            fields = embed.get("fields")
            if isinstance(fields, list):
                for f in fields:
                    if not isinstance(f, dict):
                        continue
                    name = f.get("name") if isinstance(f.get("name"), str) else ""
                    value = f.get("value") if isinstance(f.get("value"), str) else ""
                    if name and value:
                        embed_parts.append(f"{name}: {value}")
                    elif name or value:
                        embed_parts.append(name or value)
            if embed_parts:
                parts.append("\n".join(embed_parts))

    return "\n".join(parts)


class AlertDetector:
    """
    Ищет в тексте алерта символ, RSI и Funding Rate.
    Заявка строится только для канала scalp-разворотов и только если нашлись все три.
    Сторона, размер, TP/SL и лестница DCA берутся из конфига, а не из сообщения.
    """

    def __init__(self, cfg: ScalpConfig):
        self.cfg = cfg

    def detect(self, channel_id: str, text: str) -> Optional[StrategyRequest]:
        if not self.cfg.channel_id or channel_id != self.cfg.channel_id:
            return None

        asset_match = ASSET_LABEL_RE.search(text) or ASSET_BARE_RE.search(text)
        rsi_match = RSI_RE.search(text)
        fr_match = FUNDING_RE.search(text)

        if asset_match is None or rsi_match is None or fr_match is None:
            logger.debug(
                f"Scalp channel message without full alert data "
                f"(asset={asset_match is not None}, rsi={rsi_match is not None}, fr={fr_match is not None})"
            )
            return None

        symbol = asset_match.group(1).upper()
        rsi = Decimal(rsi_match.group(1))
        funding_rate = Decimal(fr_match.group(1))

        started_at = datetime.now(tz=timezone.utc).isoformat(timespec="seconds")
        logger.info(f"🧭 Alert detected @ {started_at} | symbol={symbol} rsi={rsi} fr={funding_rate}")

        return StrategyRequest(
            symbol=symbol,
            side=self.cfg.side,
            notional_usd=self.cfg.size_usd,
            dca_percents=tuple(self.cfg.dca_steps),
            take_profit_pct=self.cfg.tp_pct,
            stop_loss_pct=self.cfg.sl_pct,
            rsi=rsi,
            funding_rate=funding_rate,
        )

    def detect_message(self, message: Dict[str, Any]) -> Optional[StrategyRequest]:
        channel_id = str(message.get("channel_id", ""))
        return self.detect(channel_id, aggregate_message_text(message))
