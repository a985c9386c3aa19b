# scalp_bot/infrastructure/serializers.py
import orjson
from typing import Any, Dict, Optional, Union

from scalp_bot.domain.events import (
    Dispatch,
    Frame,
    GatewayOpcode,
    Hello,
    HeartbeatAck,
    HeartbeatRequest,
    InvalidSession,
    Reconnect,
    UnknownFrame,
)


class GatewayFrameSerializer:
    """
    Отвечает за преобразование сырых JSON-фреймов шлюза в типизированные варианты и обратно.
    Соблюдает принцип SRP: менеджер соединения ничего не знает про JSON.
    """

    @staticmethod
    def decode(raw: Union[str, bytes]) -> Frame:
        """
        Никогда не бросает: битый или неожиданный фрейм превращается в UnknownFrame,
        чтобы цикл чтения его просто залогировал.
        """
        try:
            payload = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            return UnknownFrame(op=None, reason=f"bad json: {e}")

        if not isinstance(payload, dict):
            return UnknownFrame(op=None, reason="payload is not an object")

        op = payload.get("op")
        seq = payload.get("s")
        if not isinstance(seq, int) or isinstance(seq, bool):
            seq = None
        d = payload.get("d")

        if op == GatewayOpcode.HELLO:
            interval = d.get("heartbeat_interval") if isinstance(d, dict) else None
            if not isinstance(interval, (int, float)) or interval <= 0:
                return UnknownFrame(op=op, reason="hello without heartbeat_interval", seq=seq)
            return Hello(heartbeat_interval_ms=int(interval), seq=seq)

        if op == GatewayOpcode.HEARTBEAT:
            return HeartbeatRequest(seq=seq)

        if op == GatewayOpcode.HEARTBEAT_ACK:
            return HeartbeatAck(seq=seq)

        if op == GatewayOpcode.DISPATCH:
            event = payload.get("t")
            if not isinstance(event, str):
                return UnknownFrame(op=op, reason="dispatch without event name", seq=seq)
            return Dispatch(event=event, data=d if isinstance(d, dict) else {}, seq=seq)

        if op == GatewayOpcode.RECONNECT:
            return Reconnect(seq=seq)

        if op == GatewayOpcode.INVALID_SESSION:
            return InvalidSession(resumable=d is True, seq=seq)

        return UnknownFrame(op=op, reason="unhandled opcode", seq=seq)

    @staticmethod
    def _dump(op: GatewayOpcode, d: Any) -> str:
        # orjson.dumps возвращает bytes, а aiohttp.send_str ждет str
        return orjson.dumps({"op": int(op), "d": d}).decode("utf-8")

    @classmethod
    def heartbeat(cls, seq: Optional[int]) -> str:
        return cls._dump(GatewayOpcode.HEARTBEAT, seq)

    @classmethod
    def identify(cls, token: str, properties: Dict[str, str], intents: int) -> str:
        return cls._dump(GatewayOpcode.IDENTIFY, {
            "token": token,
            "properties": properties,
            "intents": intents,
        })

    @classmethod
    def resume(cls, token: str, session_id: str, seq: Optional[int]) -> str:
        return cls._dump(GatewayOpcode.RESUME, {
            "token": token,
            "session_id": session_id,
            "seq": seq,
        })
