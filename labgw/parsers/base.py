import re
from datetime import datetime
from typing import List

_LINE_BREAK = re.compile(r"\r\n|\n|\r")


def _split_segments(text: str) -> List[str]:
    """Divide en segmentos (CR, CRLF o LF), recorta y omite vacíos."""
    return [s.strip() for s in _LINE_BREAK.split(text) if s.strip()]


def _split_fields(seg: str, sep: str = "|") -> List[str]:
    return seg.split(sep)


def _field(fields: List[str], index: int) -> str:
    # Índice fuera de rango => "", nunca error
    if index < 0 or index >= len(fields):
        return ""
    return fields[index].strip()


def _component(val: str, index: int, sep: str = "^") -> str:
    comps = val.split(sep) if val else []
    if index < 0 or index >= len(comps):
        return ""
    return comps[index].strip()


def to_iso(dt: datetime) -> str:
    # Hora del equipo sin zona => se asume hora local; siempre con offset (RFC 3339)
    return dt.astimezone().isoformat(timespec="seconds")


def now_iso() -> str:
    return to_iso(datetime.now())
