# scalp_bot/infrastructure/gateway_connection.py
import asyncio
import logging
from typing import Optional

import aiohttp

from scalp_bot.domain.errors import TransportFailure

logger = logging.getLogger("WS_TRANSPORT")


class AiohttpGatewayConnection:
    """
    Тонкая обертка над aiohttp websocket.
    Отдает наружу только текст: закрытие и ошибки превращаются в None / TransportFailure.
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws

    async def send_str(self, data: str) -> None:
        if self._ws.closed:
            raise TransportFailure("send on closed websocket")
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise TransportFailure(f"send failed: {e}") from e

    async def receive(self) -> Optional[str]:
        while True:
            msg = await self._ws.receive()

            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")

            if msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"❌ WebSocket error: {self._ws.exception()}")
                return None
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.warning(f"🔌 WebSocket closed: code={self._ws.close_code} reason={msg.extra}")
                return None
            # PING/PONG aiohttp обрабатывает сам

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class AiohttpConnector:
    """Фабрика соединений. Одна ClientSession на весь процесс."""

    def __init__(self, connect_timeout: float = 30.0):
        self.connect_timeout = connect_timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self, url: str) -> AiohttpGatewayConnection:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()

        try:
            ws = await asyncio.wait_for(
                self.session.ws_connect(url, max_msg_size=0, autoping=True),
                timeout=self.connect_timeout,
            )
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"connect to {url} failed: {e}") from e

        logger.info("✅ Connected to the gateway WSS.")
        return AiohttpGatewayConnection(ws)

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
