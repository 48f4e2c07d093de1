from typing import List

from labgw.commons.control import VT

from .astm import ASTMFramer
from .base import Framer, FramerEvent
from .mllp import MLLPFramer


class CombinedFramer(Framer):
    """Un puerto para ambos protocolos: VT (o un mensaje MLLP abierto) va a MLLP, el resto a ASTM."""

    def __init__(self, label: str = "", verify_checksum: bool = False):
        self.mllp = MLLPFramer(label)
        self.astm = ASTMFramer(label, verify_checksum=verify_checksum)

    def reset(self) -> None:
        self.mllp.reset()
        self.astm.reset()

    def feed_byte(self, b: int) -> List[FramerEvent]:
        if b == VT or self.mllp.in_message:
            return self.mllp.feed_byte(b)
        return self.astm.feed_byte(b)


def make_framer(protocol: str, label: str = "", verify_checksum: bool = False) -> Framer:
    protocol = (protocol or "auto").lower()
    if protocol == "hl7":
        return MLLPFramer(label)
    if protocol == "astm":
        return ASTMFramer(label, verify_checksum=verify_checksum)
    if protocol == "auto":
        return CombinedFramer(label, verify_checksum=verify_checksum)
    raise ValueError(f"Protocolo no soportado: {protocol}")
