from datetime import datetime
from typing import List, Optional, Tuple

from labgw.commons.control import CR, FS, VT
from labgw.commons.logger import logger
from labgw.parsers.base import _field, _split_segments

MIN_MSH_FIELDS = 10  # sin MSH-10 (control ID) no hay ACK posible


def _msh_fields(hl7_text: str) -> Tuple[str, List[str]]:
    msh = next((s for s in _split_segments(hl7_text) if s.startswith("MSH")), "")
    if len(msh) < 4:
        return "|", []
    # Separador de campo real = carácter siguiente a "MSH"
    sep = msh[3]
    return sep, msh.split(sep)


def generate_ack(hl7_text: str) -> Optional[str]:
    """
    Construye el ACK (MSH + MSA) para un mensaje HL7.

    Emisor y receptor se intercambian respecto al original; tipo ACK,
    MSH-11 = AL, MSA-1 = AA y MSA-2 = control ID original.
    Devuelve None si no hay MSH o tiene menos de 10 campos.
    """
    sep, f = _msh_fields(hl7_text)
    if len(f) < MIN_MSH_FIELDS:
        logger.warning(f"MSH inválido ({len(f)} campos): no se genera ACK")
        return None

    control_id = _field(f, 9)
    fields = [
        "MSH",
        f[1],  # caracteres de codificación, tal cual
        _field(f, 4),  # receiving app -> sending app
        _field(f, 5),
        _field(f, 2),
        _field(f, 3),
        datetime.now().strftime("%Y%m%d%H%M%S"),
        "",
        "ACK",
        control_id,
        "AL",
    ]
    version = _field(f, 11)
    if version:
        fields.append(version)

    msa = sep.join(["MSA", "AA", control_id])
    return sep.join(fields) + chr(CR) + msa


def wrap_mllp(text: str, encoding: str = "utf-8") -> bytes:
    return bytes([VT]) + text.encode(encoding) + bytes([FS, CR])
