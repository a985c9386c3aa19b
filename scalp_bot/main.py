# scalp_bot/main.py
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional, Set

from dotenv import load_dotenv

from scalp_bot.config import Settings, load_settings
from scalp_bot.domain.errors import ConfigError, ProtocolFault, VenueError
from scalp_bot.domain.strategy_request import StrategyRequest
from scalp_bot.infrastructure.execution import BybitExecutionHandler
from scalp_bot.infrastructure.gateway_connection import AiohttpConnector
from scalp_bot.services.alert_detector import AlertDetector
from scalp_bot.services.gateway_client import GatewayClient
from scalp_bot.services.instrument_provider import InstrumentFilterResolver
from scalp_bot.strategies.dca_ladder import DcaLadderEngine

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

logger = logging.getLogger("ORCHESTRATOR")


def setup_logging(debug: bool = False, log_dir: str = "logs"):
    """stdout + logs/debug.log + logs/error.log (их читает внешний просмотрщик логов)."""
    level = logging.DEBUG if debug else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = [logging.StreamHandler(sys.stdout)]
    os.makedirs(log_dir, exist_ok=True)
    debug_file = RotatingFileHandler(os.path.join(log_dir, "debug.log"), maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    error_file = RotatingFileHandler(os.path.join(log_dir, "error.log"), maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    error_file.setLevel(logging.ERROR)
    handlers.extend([debug_file, error_file])

    for h in handlers:
        h.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # Уменьшаем шум от библиотек
    for noisy in ("asyncio", "aiohttp", "pybit", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class BotOrchestrator:
    """
    Связывает шлюз событий, детектор алертов и DCA-движок.
    Каждый алерт запускается отдельной задачей, чтобы цикл чтения шлюза не ждал биржу;
    сериализацию по символу обеспечивает сам движок.
    """

    def __init__(self, settings: Settings, gateway: GatewayClient, detector: AlertDetector, engine: DcaLadderEngine):
        self.settings = settings
        self.gateway = gateway
        self.detector = detector
        self.engine = engine
        self.gateway.on_message = self.on_message
        self._tasks: Set[asyncio.Task] = set()
        self._watchdog_task: Optional[asyncio.Task] = None

    async def on_message(self, message: Dict[str, Any]):
        req = self.detector.detect_message(message)
        if req is None:
            return
        task = asyncio.create_task(self.run_strategy(req))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_strategy(self, req: StrategyRequest):
        try:
            report = await self.engine.execute(req)
            logger.info(f"Executed DCA strategy for {req.symbol} ({req.side.value}, ${req.notional_usd}), orders={len(report.orders)}")
        except VenueError as e:
            logger.error(f"Failed to execute strategy for {req.symbol}: {e}")
        except Exception as e:
            logger.error(f"💥 Unexpected failure in strategy for {req.symbol}: {e!r}", exc_info=True)

    async def _watchdog_loop(self, minutes: float):
        while True:
            await asyncio.sleep(minutes * 60)
            await self.gateway.restart()

    async def run(self):
        minutes = self.settings.reload_timer_minutes
        if minutes:
            logger.info(f"Watchdog enabled: restart every {minutes} min")
            self._watchdog_task = asyncio.create_task(self._watchdog_loop(minutes))
        try:
            await self.gateway.run()
        finally:
            if self._watchdog_task:
                self._watchdog_task.cancel()
            await self.gateway.stop()
            if self._tasks:
                logger.info(f"Waiting for {len(self._tasks)} running strategy task(s)...")
                await asyncio.gather(*self._tasks, return_exceptions=True)


async def main() -> int:
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.critical(f"Invalid configuration: {e}")
        return 2

    setup_logging(settings.debug, settings.log_dir)

    if not settings.gateway.token:
        logger.critical("DISCORD_TOKEN is missing!")
        return 2
    if not settings.scalp.channel_id:
        logger.warning("⚠️ SCALP_REVERSALS_CHANNEL_ID not set, alerts will never trigger orders")

    executor = BybitExecutionHandler(
        settings.venue.api_key,
        settings.venue.api_secret,
        testnet=settings.venue.testnet,
        call_timeout=settings.venue.call_timeout,
    )
    engine = DcaLadderEngine(executor, InstrumentFilterResolver(executor), testnet=settings.venue.testnet)
    connector = AiohttpConnector()
    gateway = GatewayClient(settings.gateway, connector)
    bot = BotOrchestrator(settings, gateway, AlertDetector(settings.scalp), engine)

    logger.info(f"🚀 Listening on {len(settings.gateway.channels)} channel(s), scalp channel={settings.scalp.channel_id or '-'}")
    try:
        await bot.run()
    except ProtocolFault as e:
        logger.critical(f"Gateway session is unrecoverable: {e}")
        return 1
    finally:
        await connector.close()
    return 0


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
