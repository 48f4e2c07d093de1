from datetime import datetime
from typing import List

from labgw.commons.logger import logger

from .base import _component, _field, _split_fields, _split_segments, now_iso, to_iso
from .models import Observation


def parse_hl7_datetime(value: str) -> str:
    """
    Normaliza un TS HL7 a ISO 8601 con offset local.
    - < 8 caracteres => ahora
    - >= 14 => YYYYMMDDHHMMSS sobre los primeros 14
    - si no, YYYYMMDD sobre los primeros 8
    - si nada parsea => ahora (un TS malo no tumba el mensaje)
    """
    value = (value or "").strip()
    if len(value) < 8:
        return now_iso()
    if len(value) >= 14:
        try:
            return to_iso(datetime.strptime(value[:14], "%Y%m%d%H%M%S"))
        except (ValueError, OverflowError, OSError):
            pass
    try:
        return to_iso(datetime.strptime(value[:8], "%Y%m%d"))
    except (ValueError, OverflowError, OSError):
        return now_iso()


def parse_hl7(hl7: str) -> List[Observation]:
    """Una Observation por OBX, con el contexto MSH/PID/OBR más reciente."""
    patient_id = patient_name = accession_number = message_control_id = ""
    observations: List[Observation] = []

    segments = _split_segments(hl7)
    logger.debug(f"HL7: {len(segments)} segmento(s)")

    for seg in segments:
        f = _split_fields(seg)
        seg_type = f[0]

        if seg_type == "MSH":
            message_control_id = _field(f, 9)
        elif seg_type == "PID":
            patient_id = _field(f, 3)
            patient_name = _field(f, 5)
        elif seg_type == "OBR":
            # OBR-2 placer order; varios equipos solo llenan OBR-3 (filler order)
            accession_number = _field(f, 2) or _field(f, 3)
        elif seg_type == "OBX":
            # OBX-3: code^text
            obx3 = _field(f, 3)
            observations.append(
                Observation(
                    patient_id=patient_id,
                    patient_name=patient_name,
                    accession_number=accession_number,
                    message_control_id=message_control_id,
                    observation_id=_field(f, 1),
                    value_type=_field(f, 2),
                    test_code=_component(obx3, 0),
                    test_name=_component(obx3, 1),
                    value=_field(f, 5),
                    units=_field(f, 6),
                    reference_range=_field(f, 7),
                    abnormal_flags=_field(f, 8),
                    result_status=_field(f, 11),
                    timestamp=parse_hl7_datetime(_field(f, 14)),
                )
            )
    return observations
