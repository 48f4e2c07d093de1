from typing import List

from labgw.commons.control import ENQ, EOT, ETB, ETX, STX
from labgw.commons.logger import logger

from .base import CompletedFrame, Framer, FramerEvent, SendAck, SendNak

IDLE = "idle"
IN_FRAME = "in-frame"
CHECKSUM = "checksum"

_HEX = set(b"0123456789ABCDEFabcdef")


def frame_checksum(body: bytes, terminator: int) -> str:
    """
    Checksum ASTM E1381: 8 bits bajos de la suma desde el número de frame
    hasta ETX/ETB inclusive (STX excluido), en 2 dígitos hex.
    """
    return f"{(sum(body) + terminator) & 0xFF:02X}"


class ASTMFramer(Framer):
    """
    Framer ASTM E1381. El handshake (ENQ/EOT) se atiende en cualquier estado;
    STX ... ETX|ETB delimita el frame. ETX/ETB sin STX previo entrega un frame
    vacío (y su ACK), que no produce resultados.

    ETB se trata igual que ETX: cada bloque se entrega por separado, sin
    reensamblar la continuación (STX siguiente).

    Con verify_checksum=True se leen los 2 caracteres de checksum que siguen a
    ETX/ETB antes de responder: ACK + frame si coincide, NAK si no.
    """

    def __init__(self, label: str = "", verify_checksum: bool = False):
        self.label = label
        self.verify_checksum = verify_checksum
        self.state = IDLE
        self.buffer = bytearray()
        self.handshake_pending = False
        self._terminator = 0
        self._checksum = bytearray()

    def reset(self) -> None:
        self.state = IDLE
        self.buffer.clear()
        self._checksum.clear()
        self._terminator = 0

    def feed_byte(self, b: int) -> List[FramerEvent]:
        if b == ENQ:
            # El equipo pide la línea: siempre se concede
            self.handshake_pending = True
            return [SendAck()]

        if b == STX:
            if self.state == IN_FRAME and self.buffer:
                logger.warning(
                    f"[{self.label}] STX dentro de frame: se descartan {len(self.buffer)} bytes"
                )
            self.reset()
            self.state = IN_FRAME
            return []

        if b == EOT:
            if self.state != IDLE:
                logger.warning(f"[{self.label}] EOT con frame abierto ({self.state}), descartado")
            self.reset()
            self.handshake_pending = False
            return []

        if b in (ETX, ETB):
            # En cualquier estado: ACK y se entrega lo acumulado (vacío si no hubo STX)
            if self.state == IDLE:
                logger.debug(f"[{self.label}] fin de frame sin STX: se entrega frame vacío")
            if self.verify_checksum:
                self._terminator = b
                self._checksum.clear()
                self.state = CHECKSUM
                return []
            return self._complete()

        if self.state == IN_FRAME:
            self.buffer.append(b)
        elif self.state == CHECKSUM:
            return self._feed_checksum(b)
        return []

    def _complete(self) -> List[FramerEvent]:
        payload = bytes(self.buffer)
        self.reset()
        return [SendAck(), CompletedFrame(payload)]

    def _feed_checksum(self, b: int) -> List[FramerEvent]:
        self._checksum.append(b)
        if len(self._checksum) < 2:
            return []
        received = bytes(self._checksum)
        expected = frame_checksum(bytes(self.buffer), self._terminator)
        if all(c in _HEX for c in received) and received.decode("ascii").upper() == expected:
            return self._complete()
        logger.warning(
            f"[{self.label}] checksum inválido: recibido {received!r}, esperado {expected}; NAK"
        )
        self.reset()
        return [SendNak()]
