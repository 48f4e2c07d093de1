from dataclasses import dataclass
from typing import List, Union


@dataclass(frozen=True)
class CompletedMessage:
    """Mensaje HL7 completo (sin VT/FS)."""

    payload: bytes


@dataclass(frozen=True)
class CompletedFrame:
    """Frame ASTM completo (contenido entre STX y ETX/ETB)."""

    payload: bytes


@dataclass(frozen=True)
class SendAck:
    pass


@dataclass(frozen=True)
class SendNak:
    pass


FramerEvent = Union[CompletedMessage, CompletedFrame, SendAck, SendNak]


class Framer:
    """Contrato común: se alimenta por byte o por bloque, la salida es la misma."""

    def feed_byte(self, b: int) -> List[FramerEvent]:
        raise NotImplementedError

    def feed(self, data: bytes) -> List[FramerEvent]:
        events: List[FramerEvent] = []
        for b in data:
            events.extend(self.feed_byte(b))
        return events

    def reset(self) -> None:
        raise NotImplementedError
