from typing import List

from labgw.commons.control import FS, LF, VT
from labgw.commons.logger import logger

from .base import CompletedMessage, Framer, FramerEvent

IDLE = "idle"
IN_MESSAGE = "in-message"


class MLLPFramer(Framer):
    """
    Máquina de estados MLLP: VT abre el mensaje, FS lo cierra.
    - CR dentro del mensaje es separador de segmentos: se conserva.
    - LF se descarta (ruido de CRLF).
    - El CR que sigue a FS llega en IDLE y se ignora.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self.state = IDLE
        self.buffer = bytearray()

    @property
    def in_message(self) -> bool:
        return self.state == IN_MESSAGE

    def reset(self) -> None:
        self.state = IDLE
        self.buffer.clear()

    def feed_byte(self, b: int) -> List[FramerEvent]:
        if b == VT:
            if self.state == IN_MESSAGE and self.buffer:
                # Se reinicia la acumulación: el parcial se pierde
                logger.warning(
                    f"[{self.label}] VT dentro de mensaje: se descartan {len(self.buffer)} bytes parciales"
                )
            self.state = IN_MESSAGE
            self.buffer.clear()
            return []

        if b == FS:
            if self.state != IN_MESSAGE:
                logger.debug(f"[{self.label}] FS sin mensaje abierto, ignorado")
                return []
            payload = bytes(self.buffer)
            self.reset()
            return [CompletedMessage(payload)]

        if self.state == IN_MESSAGE and b != LF:
            self.buffer.append(b)
        return []
