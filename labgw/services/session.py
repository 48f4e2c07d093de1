import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from labgw.commons.control import ACK, NAK, describe_byte
from labgw.commons.hl7_ack import generate_ack, wrap_mllp
from labgw.commons.logger import hexdump, logger
from labgw.commons.types import ListenerCfg, Settings
from labgw.framers.base import (
    CompletedFrame,
    CompletedMessage,
    Framer,
    FramerEvent,
    SendAck,
    SendNak,
)
from labgw.framers.combined import make_framer
from labgw.parsers.astm import parse_astm
from labgw.parsers.hl7 import parse_hl7
from labgw.services.sink import Record, ResultSink

Writer = Callable[[bytes], Awaitable[None]]


def decode_payload(payload: bytes) -> str:
    # UTF-8 por defecto; algunos equipos envían latin-1
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return payload.decode("latin-1")


@dataclass
class SessionStats:
    bytes_in: int = 0
    messages: int = 0
    frames: int = 0
    records: int = 0
    acks_sent: int = 0
    naks_sent: int = 0
    forward_failures: int = 0


class GatewaySession:
    """
    Orquesta una conexión: un framer propio, parsers, ACKs y envío al sink.

    Los eventos se procesan en orden de llegada; el ACK HL7 se escribe antes de
    reenviar los resultados y los ACK/NAK ASTM se escriben en cuanto el framer
    los emite. Ningún fallo de escritura o del sink se propaga.
    """

    def __init__(
        self,
        framer: Framer,
        sink: ResultSink,
        writer: Writer,
        settings: Settings,
        peer: str = "",
    ):
        self.framer = framer
        self.sink = sink
        self.writer = writer
        self.settings = settings
        self.peer = peer
        self.debug = settings.app.debug
        self.stats = SessionStats()

    @classmethod
    def for_listener(
        cls, listener: ListenerCfg, settings: Settings, sink: ResultSink, writer: Writer, peer: str = ""
    ) -> "GatewaySession":
        label = f"{listener.name} {peer}".strip()
        framer = make_framer(listener.protocol, label, verify_checksum=listener.verify_checksum)
        return cls(framer, sink, writer, settings, peer=label)

    async def feed(self, data: bytes) -> None:
        for b in data:
            self.stats.bytes_in += 1
            if self.debug:
                logger.debug(f"[{self.peer}] byte {self.stats.bytes_in}: 0x{b:02X} ({describe_byte(b)})")
            for event in self.framer.feed_byte(b):
                await self._dispatch(event)

    async def _dispatch(self, event: FramerEvent) -> None:
        if isinstance(event, SendAck):
            if await self._write(bytes([ACK])):
                self.stats.acks_sent += 1
        elif isinstance(event, SendNak):
            if await self._write(bytes([NAK])):
                self.stats.naks_sent += 1
        elif isinstance(event, CompletedMessage):
            await self._on_hl7(event.payload)
        elif isinstance(event, CompletedFrame):
            await self._on_astm(event.payload)

    async def _on_hl7(self, payload: bytes) -> None:
        self.stats.messages += 1
        text = decode_payload(payload)
        logger.info(f"[{self.peer}] [HL7] mensaje recibido ({len(payload)} bytes)")
        if self.debug:
            logger.debug(f"[{self.peer}] mensaje crudo:\n{text}\n{hexdump(payload)}")

        observations = parse_hl7(text)

        ack = generate_ack(text)
        if ack is None:
            logger.warning(f"[{self.peer}] no se pudo generar ACK: formato de mensaje inválido")
        elif await self._write(wrap_mllp(ack)):
            self.stats.acks_sent += 1
            logger.info(f"[{self.peer}] [HL7] ACK enviado")
            if self.debug:
                logger.debug(f"[{self.peer}] ACK:\n{ack}")

        if observations:
            logger.info(f"[{self.peer}] {len(observations)} resultado(s) OBX")
            await self._forward(observations)
        else:
            logger.warning(f"[{self.peer}] mensaje sin segmentos OBX")

    async def _on_astm(self, payload: bytes) -> None:
        self.stats.frames += 1
        text = decode_payload(payload)
        logger.info(f"[{self.peer}] [ASTM] frame recibido ({len(payload)} bytes)")
        if self.debug:
            logger.debug(f"[{self.peer}] frame crudo:\n{text}\n{hexdump(payload)}")

        results = parse_astm(text)
        if results:
            logger.info(f"[{self.peer}] {len(results)} resultado(s) R")
            await self._forward(results)

    async def _write(self, data: bytes) -> bool:
        try:
            await self.writer(data)
            return True
        except OSError as ex:
            logger.error(f"[{self.peer}] error escribiendo {len(data)} byte(s): {ex}")
            return False

    async def _forward(self, records: Sequence[Record]) -> None:
        self.stats.records += len(records)
        try:
            # Tope duro: un sink colgado no puede bloquear la sesión
            ok = await asyncio.wait_for(
                self.sink.send(list(records)), timeout=self.settings.sink.timeout_sec
            )
        except asyncio.TimeoutError:
            logger.error(f"[{self.peer}] el sink no respondió en {self.settings.sink.timeout_sec}s")
            ok = False
        except Exception as ex:
            logger.exception(f"[{self.peer}] fallo inesperado del sink: {ex}")
            ok = False
        if not ok:
            self.stats.forward_failures += 1
            logger.warning(f"[{self.peer}] lote de {len(records)} registro(s) descartado")

    def close(self) -> None:
        self.framer.reset()
        s = self.stats
        logger.info(
            f"[{self.peer}] sesión cerrada: {s.bytes_in} bytes, {s.messages} mensaje(s) HL7, "
            f"{s.frames} frame(s) ASTM, {s.records} registro(s), {s.acks_sent} ACK, "
            f"{s.naks_sent} NAK, {s.forward_failures} envío(s) fallido(s)"
        )

