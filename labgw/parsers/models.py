# ===============================
# File: labgw/parsers/models.py
# ===============================
from dataclasses import dataclass


@dataclass(frozen=True)
class Observation:
    """Una fila por segmento OBX."""

    patient_id: str = ""
    patient_name: str = ""
    accession_number: str = ""
    message_control_id: str = ""
    observation_id: str = ""
    value_type: str = ""
    test_code: str = ""
    test_name: str = ""
    value: str = ""
    units: str = ""
    reference_range: str = ""
    abnormal_flags: str = ""
    result_status: str = ""
    timestamp: str = ""  # ISO 8601, OBX-14 o ahora
    protocol: str = "HL7"


@dataclass(frozen=True)
class Result:
    """Una fila por registro R (ASTM)."""

    patient_id: str = ""
    sample_id: str = ""
    test_code: str = ""
    value: str = ""
    units: str = ""
    flags: str = ""
    timestamp: str = ""  # hora de captura, no del equipo
    protocol: str = "ASTM"
