import asyncio
from typing import AsyncIterator, Optional

from labgw.commons.hl7_ack import wrap_mllp
from labgw.commons.logger import logger
from labgw.commons.types import ListenerCfg, Settings
from labgw.framers.base import CompletedMessage
from labgw.framers.mllp import MLLPFramer
from labgw.services.session import GatewaySession, decode_payload
from labgw.services.sink import ResultSink

READ_SIZE = 4096


async def read_mllp_messages(reader: asyncio.StreamReader) -> AsyncIterator[str]:
    """
    Lee un stream MLLP y produce mensajes HL7 (str) delimitados por VT ... FS CR.
    Permite múltiples mensajes en una sola conexión.
    """
    framer = MLLPFramer("reader")
    while True:
        chunk = await reader.read(READ_SIZE)
        if not chunk:
            break
        for event in framer.feed(chunk):
            if isinstance(event, CompletedMessage):
                yield decode_payload(event.payload)


def _peer_label(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer or "unknown")


async def run_stream_session(
    listener: ListenerCfg,
    settings: Settings,
    sink: ResultSink,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
) -> GatewaySession:
    """Bombea bytes del stream a una sesión hasta EOF o error de lectura."""
    peer = _peer_label(writer)

    async def _write(data: bytes) -> None:
        writer.write(data)
        await writer.drain()

    session = GatewaySession.for_listener(listener, settings, sink, _write, peer=peer)
    try:
        while True:
            try:
                chunk = await reader.read(READ_SIZE)
            except (ConnectionError, OSError) as ex:
                logger.error(f"[{session.peer}] error de lectura: {ex}")
                break
            if not chunk:
                logger.info(f"[{session.peer}] conexión cerrada por el remoto")
                break
            await session.feed(chunk)
    finally:
        session.close()
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass
    return session


class TcpServer:
    def __init__(self, listener: ListenerCfg, settings: Settings, sink: ResultSink):
        self.listener = listener
        self.settings = settings
        self.sink = sink
        self._server: Optional[asyncio.AbstractServer] = None

    async def _handle(self, reader, writer):
        logger.info(f"[{self.listener.name}] nueva conexión desde {_peer_label(writer)}")
        try:
            await run_stream_session(self.listener, self.settings, self.sink, reader, writer)
        except Exception as ex:
            # Un fallo en una conexión no tumba el servidor
            logger.exception(f"[{self.listener.name}] error en la sesión: {ex}")

    async def open(self) -> asyncio.AbstractServer:
        self._server = await asyncio.start_server(
            self._handle, self.listener.host, self.listener.port
        )
        logger.info(f"[{self.listener.name}] servidor escuchando en {self.listener.address}")
        return self._server

    async def start(self):
        if self._server is None:
            await self.open()
        async with self._server:
            await self._server.serve_forever()

    @property
    def sockets(self):
        return self._server.sockets if self._server else ()

    async def stop(self):
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None


class TcpClient:
    """Modo cliente: el gateway se conecta al equipo/LIS y reconecta al perder la conexión."""

    def __init__(self, listener: ListenerCfg, settings: Settings, sink: ResultSink):
        self.listener = listener
        self.settings = settings
        self.sink = sink
        self._stop = asyncio.Event()

    async def stop(self):
        self._stop.set()

    async def start(self):
        retry = self.settings.client.retry_sec
        reconnect = self.settings.client.reconnect_sec
        while not self._stop.is_set():
            logger.info(f"[{self.listener.name}] conectando a {self.listener.address}...")
            try:
                reader, writer = await asyncio.open_connection(
                    self.listener.host, self.listener.port
                )
            except OSError as ex:
                logger.error(f"[{self.listener.name}] conexión fallida: {ex}; reintento en {retry}s")
                await self._sleep(retry)
                continue

            logger.info(f"[{self.listener.name}] conectado a {_peer_label(writer)}")
            try:
                await run_stream_session(self.listener, self.settings, self.sink, reader, writer)
            except Exception as ex:
                logger.exception(f"[{self.listener.name}] error en la sesión: {ex}")
            logger.warning(f"[{self.listener.name}] conexión cerrada, reconectando en {reconnect}s")
            await self._sleep(reconnect)

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class MllpSender:
    """Cliente de prueba: envía un mensaje HL7 envuelto en MLLP y espera el ACK."""

    def __init__(self, host: str, port: int, timeout: float = 5.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    async def send(self, hl7_text: str) -> Optional[str]:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port), timeout=self.timeout
        )
        try:
            writer.write(wrap_mllp(hl7_text))
            await writer.drain()
            try:
                return await asyncio.wait_for(_first_message(reader), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Sin ACK de {self.host}:{self.port} en {self.timeout}s")
                return None
        finally:
            writer.close()
            await writer.wait_closed()


async def _first_message(reader: asyncio.StreamReader) -> Optional[str]:
    async for msg in read_mllp_messages(reader):
        return msg
    return None
