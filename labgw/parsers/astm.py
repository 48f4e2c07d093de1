from typing import List

from .base import _field, _split_fields, _split_segments, now_iso
from .models import Result


def _record_type(token: str) -> str:
    # "1H", "2P": el número de frame E1381 viene pegado al tipo de registro
    token = token.strip()
    if len(token) > 1 and token[0].isdigit():
        return token[1:]
    return token


def parse_astm(frame: str) -> List[Result]:
    """Un Result por registro R; paciente/muestra del último P/O del frame."""
    patient_id = sample_id = ""
    captured_at = now_iso()
    results: List[Result] = []

    for rec in _split_segments(frame):
        f = _split_fields(rec)
        rtype = _record_type(f[0])

        if rtype == "P":
            # P-3 practice-assigned ID; si viene vacío, P-4 (laboratory-assigned)
            patient_id = _field(f, 2) or _field(f, 3)
        elif rtype == "O":
            sample_id = _field(f, 2)
        elif rtype == "R":
            results.append(
                Result(
                    patient_id=patient_id,
                    sample_id=sample_id,
                    test_code=_field(f, 2),
                    value=_field(f, 3),
                    units=_field(f, 4),
                    flags=_field(f, 6),
                    timestamp=captured_at,
                )
            )
    return results
