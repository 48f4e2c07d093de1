# labgw/services/gateway_service.py
import asyncio
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

from labgw.commons.logger import logger
from labgw.commons.types import ListenerCfg, Settings
from labgw.helpers.file_transport import FileWatcher, read_capture
from labgw.helpers.serial_transport import SerialPort
from labgw.helpers.tcp_transport import TcpClient, TcpServer
from labgw.services.session import GatewaySession
from labgw.services.sink import CollectingSink, ResultSink, make_sink


async def replay_capture(
    data: bytes, listener: ListenerCfg, settings: Settings, sink: Optional[ResultSink] = None
) -> GatewaySession:
    """Pasa una captura cruda por una sesión sin transporte; las respuestas solo se registran."""

    async def _write(reply: bytes) -> None:
        logger.debug(f"[{listener.name}] respuesta (sin transporte): {reply!r}")

    session = GatewaySession.for_listener(
        listener, settings, sink or CollectingSink(), _write, peer="replay"
    )
    try:
        await session.feed(data)
    finally:
        session.close()
    return session


class CaptureInbox:
    """Capturas crudas en carpeta: backlog al arrancar y luego watchdog."""

    def __init__(self, listener: ListenerCfg, settings: Settings, sink: ResultSink):
        self.listener = listener
        self.settings = settings
        self.sink = sink
        self.inbox = Path(listener.inbox)
        self.processed = self.inbox / "processed"
        self._stop = asyncio.Event()

    async def stop(self):
        self._stop.set()

    async def process(self, data: bytes, src: str):
        try:
            await replay_capture(data, self.listener, self.settings, self.sink)
        except Exception as ex:
            # Una captura mala no detiene el resto
            logger.exception(f"[{self.listener.name}] fallo procesando {src}: {ex}")
            return
        p = Path(src)
        if p.exists():
            self.processed.mkdir(parents=True, exist_ok=True)
            shutil.move(str(p), str(self.processed / p.name))
            logger.info(f"[{self.listener.name}] captura procesada y archivada: {p.name}")

    async def process_backlog(self):
        files = sorted(self.inbox.glob(self.listener.glob))
        if not files:
            return
        logger.info(f"[{self.listener.name}] backlog detectado: {len(files)} archivo(s) en {self.inbox}")
        for f in files:
            try:
                data = read_capture(f)
            except FileNotFoundError:
                continue
            await self.process(data, str(f))

    async def start(self):
        self.inbox.mkdir(parents=True, exist_ok=True)
        await self.process_backlog()
        watcher = FileWatcher(str(self.inbox), self.listener.glob, self.process, asyncio.get_running_loop())
        watcher.start()
        logger.info(f"[{self.listener.name}] escuchando carpeta {self.inbox}")
        try:
            await self._stop.wait()
        finally:
            watcher.stop()


class GatewayService:
    """Arranca un worker por listener; comparten solo settings y sink."""

    def __init__(self, settings: Settings, sink: Optional[ResultSink] = None):
        self.settings = settings
        self.sink = sink or make_sink(settings.sink)
        self.runners: List = []

    def build(self, listener: ListenerCfg):
        if listener.transport == "serial":
            return SerialPort(listener, self.settings, self.sink)
        if listener.transport == "file":
            return CaptureInbox(listener, self.settings, self.sink)
        if listener.mode == "client":
            return TcpClient(listener, self.settings, self.sink)
        return TcpServer(listener, self.settings, self.sink)

    def select(self, names: Optional[Iterable[str]] = None) -> List[ListenerCfg]:
        wanted = set(names or [])
        listeners = [lst for lst in self.settings.listeners if not wanted or lst.name in wanted]
        unknown = wanted - {lst.name for lst in listeners}
        if unknown:
            raise ValueError(f"Listener(s) no configurado(s): {', '.join(sorted(unknown))}")
        return listeners

    async def run(self, names: Optional[Iterable[str]] = None):
        listeners = self.select(names)
        if not listeners:
            raise ValueError("No hay listeners configurados")
        for lst in listeners:
            logger.info(f"Listener {lst.name}: {lst.protocol.upper()} / {lst.transport} {lst.mode} en {lst.address}")
        self.runners = [self.build(lst) for lst in listeners]
        try:
            await asyncio.gather(*(r.start() for r in self.runners))
        finally:
            # Cancelado (Ctrl+C) o caído un listener: se detienen todos antes de cerrar el sink
            for r in self.runners:
                try:
                    await r.stop()
                except Exception as ex:
                    logger.exception(f"Error deteniendo {type(r).__name__}: {ex}")
            await self.sink.aclose()
            logger.info("Gateway detenido")
