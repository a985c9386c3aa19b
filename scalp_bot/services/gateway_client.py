# scalp_bot/services/gateway_client.py
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Optional

from scalp_bot.config import GATEWAY_PROPERTIES, GATEWAY_QUERY, GatewayConfig
from scalp_bot.domain.errors import ProtocolFault, TransportFailure
from scalp_bot.domain.events import (
    ConnectionPhase,
    Dispatch,
    DispatchEvent,
    Frame,
    Hello,
    HeartbeatAck,
    HeartbeatRequest,
    InvalidSession,
    Reconnect,
    SessionState,
    UnknownFrame,
)
from scalp_bot.domain.interfaces import IConnector, IGatewayConnection
from scalp_bot.infrastructure.serializers import GatewayFrameSerializer

logger = logging.getLogger("GATEWAY")

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]

# Что делать циклу после обработки фрейма / закрытия сокета
RECONNECT_NOW = "reconnect_now"
CONNECTION_LOST = "connection_lost"


class GatewayClient:
    """
    Менеджер соединения со шлюзом событий.

    Машина состояний: DISCONNECTED -> CONNECTING -> AWAITING_HELLO -> IDENTIFYING | RESUMING
    -> AUTHENTICATED, плюс терминальное FATAL_CLOSED (невозобновляемая сессия).
    SessionState принадлежит только этому объекту и переживает реконнекты.
    """

    def __init__(self, cfg: GatewayConfig, connector: IConnector, on_message: Optional[MessageHandler] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rand: Callable[[], float] = random.random):
        self.cfg = cfg
        self.connector = connector
        self.on_message = on_message
        self.watch_channels = set(cfg.channels)
        self.codec = GatewayFrameSerializer

        self.session = SessionState()
        self.phase = ConnectionPhase.DISCONNECTED

        self._conn: Optional[IGatewayConnection] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()
        self._attempting_resume = False
        self._identified = False
        # Соединение, закрытое watchdog-ом: его None из receive() - не обрыв
        self._restart_conn: Optional[IGatewayConnection] = None

        self._sleep = sleep
        self._rand = rand
        self.reconnect_attempt = 0

    # --- LIFECYCLE ---
    async def start(self):
        """
        Новая попытка соединения. Если есть sessionId и resumeUrl - идем по пути resume,
        иначе свежий identify. Предыдущее соединение предварительно гасится.
        """
        await self._teardown()
        self._identified = False
        self._restart_conn = None

        if self.session.can_resume():
            logger.info("Resuming session...")
            logger.debug(f"Session ID: {self.session.session_id}")
            logger.debug(f"Resume Gateway URL: {self.session.resume_url}")
            logger.debug(f"Sequence: {self.session.last_sequence}")
            self._attempting_resume = True
            url = self.session.resume_url
        else:
            self._attempting_resume = False
            url = self.cfg.url

        self.phase = ConnectionPhase.CONNECTING
        try:
            self._conn = await self.connector.connect(url)
        except TransportFailure:
            self.phase = ConnectionPhase.DISCONNECTED
            raise
        self.phase = ConnectionPhase.AWAITING_HELLO
        logger.info(f"🔌 Connected to {url}, awaiting Hello")

    async def run(self):
        """
        Держит соединение до фатальной ошибки протокола.
        Обрыв сокета -> реконнект с экспоненциальной задержкой и jitter;
        Reconnect/resumable InvalidSession/watchdog -> реконнект сразу.
        """
        while True:
            try:
                await self.start()
                outcome = await self._read_loop()
            except TransportFailure as e:
                logger.warning(f"⚠️ Transport failure: {e}")
                outcome = CONNECTION_LOST
            except ProtocolFault:
                await self._teardown()
                self.phase = ConnectionPhase.FATAL_CLOSED
                raise

            if outcome == CONNECTION_LOST:
                await self._teardown()
                delay = self.next_backoff()
                logger.info(f"🔄 Reconnecting in {delay:.2f}s (attempt {self.reconnect_attempt})")
                await self._sleep(delay)

    async def restart(self):
        """Принудительный перезапуск (watchdog). Сессия сохраняется, значит пойдет resume."""
        conn = self._conn
        if conn is None:
            # Соединение как раз устанавливается заново
            logger.info("Watchdog: no active connection, restart skipped")
            return
        logger.info("Watchdog: restarting gateway listener...")
        self._restart_conn = conn
        try:
            await conn.close()
        except Exception as e:
            logger.debug(f"Failed to close WebSocket on restart: {e!r}")

    async def stop(self):
        await self._teardown()

    def next_backoff(self) -> float:
        ceiling = min(self.cfg.reconnect_max_delay, self.cfg.reconnect_base_delay * (2 ** self.reconnect_attempt))
        self.reconnect_attempt += 1
        return self._rand() * ceiling

    async def _teardown(self):
        self._stop_heartbeat()
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close()
            except Exception as e:
                logger.debug(f"Failed to close previous WebSocket: {e!r}")
        if self.phase is not ConnectionPhase.FATAL_CLOSED:
            self.phase = ConnectionPhase.DISCONNECTED

    # --- READ LOOP ---
    async def _read_loop(self) -> str:
        conn = self._conn
        while True:
            raw = await conn.receive()
            if raw is None:
                self._stop_heartbeat()
                if self._restart_conn is conn:
                    self._restart_conn = None
                    return RECONNECT_NOW
                logger.warning("WebSocket closed by remote side")
                return CONNECTION_LOST

            outcome = await self.handle_frame(self.codec.decode(raw))
            if outcome is not None:
                return outcome

    async def handle_frame(self, frame: Frame) -> Optional[str]:
        if frame.seq is not None:
            self.session.last_sequence = frame.seq

        if isinstance(frame, Hello):
            await self._on_hello(frame)

        elif isinstance(frame, HeartbeatRequest):
            logger.debug("Gateway requested an immediate heartbeat.")
            await self._send_heartbeat()

        elif isinstance(frame, HeartbeatAck):
            # identify только на свежем соединении, не во время resume
            if not self._identified and not self._attempting_resume:
                await self._send(self.codec.identify(self.cfg.token, GATEWAY_PROPERTIES, self.cfg.intents))
                self._identified = True
                logger.info("Authenticating...")

        elif isinstance(frame, Dispatch):
            await self._on_dispatch(frame)

        elif isinstance(frame, Reconnect):
            logger.info("Reconnecting...")
            return RECONNECT_NOW

        elif isinstance(frame, InvalidSession):
            logger.warning("Invalid session.")
            if frame.resumable:
                logger.info("Can retry, reconnecting...")
                return RECONNECT_NOW
            logger.error("Cannot retry, exiting...")
            self.session.reset()
            self.phase = ConnectionPhase.FATAL_CLOSED
            raise ProtocolFault("gateway reported a non-resumable invalid session")

        elif isinstance(frame, UnknownFrame):
            logger.warning(f"Unhandled opcode: {frame.op} ({frame.reason})")

        return None

    async def _on_hello(self, frame: Hello):
        logger.info("Hello event received. Starting heartbeat...")
        self._stop_heartbeat()
        await self._send_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(frame.heartbeat_interval_ms / 1000.0))
        logger.info("Heartbeat started.")

        if self._attempting_resume:
            self.phase = ConnectionPhase.RESUMING
            await self._send(self.codec.resume(self.cfg.token, self.session.session_id, self.session.last_sequence))
            logger.info("Attempting to resume session...")
        else:
            self.phase = ConnectionPhase.IDENTIFYING

    async def _on_dispatch(self, frame: Dispatch):
        d = frame.data

        if frame.event == DispatchEvent.READY:
            resume_base = d.get("resume_gateway_url") or ""
            self.session.session_id = str(d.get("session_id") or "")
            self.session.resume_url = f"{resume_base}{GATEWAY_QUERY}" if resume_base else ""
            self._mark_authenticated()
            user = d.get("user") if isinstance(d.get("user"), dict) else {}
            discriminator = user.get("discriminator")
            tag = f"#{discriminator}" if discriminator not in (None, "", "0") else ""
            logger.info(f"Logged in as {user.get('username', '?')}{tag}")

        elif frame.event == DispatchEvent.RESUMED:
            self._mark_authenticated()
            logger.info(f"Session resumed at seq={self.session.last_sequence}")

        elif frame.event == DispatchEvent.MESSAGE_CREATE:
            channel_id = str(d.get("channel_id", ""))
            if channel_id not in self.watch_channels or self.on_message is None:
                return
            try:
                await self.on_message(d)
            except Exception as e:
                # Ошибка обработчика не должна ронять соединение
                logger.error(f"💥 Message handler failed for channel {channel_id}: {e!r}", exc_info=True)

    def _mark_authenticated(self):
        self.phase = ConnectionPhase.AUTHENTICATED
        self._attempting_resume = False
        self._identified = True
        self.reconnect_attempt = 0

    # --- HEARTBEAT ---
    async def _heartbeat_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                # last_sequence читается в момент отправки, а не при запуске таймера
                await self._send_heartbeat()
                logger.debug("Heartbeat sent.")
            except TransportFailure as e:
                logger.warning(f"Heartbeat failed: {e}")
                return

    def _stop_heartbeat(self):
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _send_heartbeat(self):
        await self._send(self.codec.heartbeat(self.session.last_sequence))

    async def _send(self, data: str):
        async with self._send_lock:
            conn = self._conn
            if conn is None:
                raise TransportFailure("no active connection")
            await conn.send_str(data)
