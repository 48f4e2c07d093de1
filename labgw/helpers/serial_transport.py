import asyncio
from typing import Optional

import serial

from labgw.commons.logger import logger
from labgw.commons.types import ListenerCfg, Settings
from labgw.services.session import GatewaySession
from labgw.services.sink import ResultSink


class SerialPort:
    """
    Equipo por RS-232 (8N1). pyserial es bloqueante: lecturas y escrituras van a
    un hilo con asyncio.to_thread. Una lectura vacía es timeout, no EOF.
    """

    def __init__(self, listener: ListenerCfg, settings: Settings, sink: ResultSink):
        self.listener = listener
        self.settings = settings
        self.sink = sink
        self._stop = asyncio.Event()
        self.ser: Optional[serial.Serial] = None

    async def stop(self):
        self._stop.set()

    def _open(self) -> serial.Serial:
        return serial.Serial(
            self.listener.device,
            baudrate=self.listener.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=1.0,
        )

    def _read(self) -> bytes:
        return self.ser.read(self.ser.in_waiting or 1)

    async def _write(self, data: bytes) -> None:
        await asyncio.to_thread(self.ser.write, data)

    async def start(self):
        retry = self.settings.client.retry_sec
        while not self._stop.is_set():
            try:
                self.ser = await asyncio.to_thread(self._open)
            except (serial.SerialException, ValueError) as ex:
                logger.error(f"[{self.listener.name}] no se pudo abrir {self.listener.address}: {ex}")
                await self._sleep(retry)
                continue

            logger.info(f"[{self.listener.name}] puerto serie abierto: {self.listener.address}")
            session = GatewaySession.for_listener(
                self.listener, self.settings, self.sink, self._write, peer=self.listener.device
            )
            try:
                while not self._stop.is_set():
                    chunk = await asyncio.to_thread(self._read)
                    if chunk:
                        await session.feed(chunk)
            except serial.SerialException as ex:
                logger.error(f"[{self.listener.name}] error de lectura serie: {ex}")
            except Exception as ex:
                # Un fallo inesperado no tumba al resto de listeners; se reabre el puerto
                logger.exception(f"[{self.listener.name}] error en la sesión serie: {ex}")
            finally:
                session.close()
                await asyncio.to_thread(self.ser.close)
            if not self._stop.is_set():
                await self._sleep(retry)

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
